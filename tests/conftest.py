"""Pytest fixtures for sanctionsync tests."""

import pytest
import pytest_asyncio

from sanctionsync.config import reset_settings
from sanctionsync.db.session import create_test_engine


@pytest.fixture(autouse=True)
def reset_config():
    """Reset cached settings before each test."""
    reset_settings()
    yield
    reset_settings()


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    """Session factory over a per-test database file."""
    engine, factory = await create_test_engine(tmp_path)
    yield factory
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(session_factory):
    """Create a test database session."""
    async with session_factory() as session:
        yield session

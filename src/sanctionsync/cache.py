"""Freshness cache for sanctionsync.

A small key/value store with TTL semantics kept in the cache_entries
table. It gates re-ingestion: the scheduler asks is_fresh() before
fetching a feed and writes an ingestion marker after a successful run.

The cache is advisory. When the backing store is unreachable every read
degrades to "absent" / "not fresh" and writes become no-ops, so callers
may do redundant work but never incorrect work.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Any

import structlog
from sqlalchemy import delete, select
from sqlalchemy.dialects.sqlite import insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from sanctionsync.db.models import CacheEntryModel
from sanctionsync.models.cache import CacheEntry
from sanctionsync.utils.datetime import ensure_utc, utc_now

log = structlog.get_logger(__name__)

MARKER_SUFFIX = "ingestion-marker"


def marker_key(source: str) -> str:
    """Cache key of the ingestion marker for a source."""
    return f"{source}:{MARKER_SUFFIX}"


class FreshnessCache:
    """Cache with absolute expiry and age-based freshness checks.

    Operations are isolated per key and last-write-wins; there are no
    cross-key transactions.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def _load(self, key: str) -> CacheEntry | None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(CacheEntryModel).where(CacheEntryModel.key == key)
            )
            model = result.scalar_one_or_none()
        if model is None:
            return None

        entry = CacheEntry(
            key=model.key,
            value=model.value,
            written_at=ensure_utc(model.written_at),
            expires_at=ensure_utc(model.expires_at),
        )
        if entry.is_expired():
            return None
        return entry

    async def put(self, key: str, value: Any, ttl_seconds: int) -> bool:
        """Store value under key, replacing any previous entry.

        Returns:
            True if the entry was written, False if the store failed.
        """
        now = utc_now()
        expires_at = now + timedelta(seconds=ttl_seconds)
        stmt = insert(CacheEntryModel).values(
            key=key, value=value, written_at=now, expires_at=expires_at
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[CacheEntryModel.key],
            set_={
                "value": stmt.excluded.value,
                "written_at": stmt.excluded.written_at,
                "expires_at": stmt.excluded.expires_at,
            },
        )
        try:
            async with self._session_factory() as session:
                await session.execute(stmt)
                await session.commit()
        except (SQLAlchemyError, OSError) as e:
            log.warning("Cache write failed", key=key, error=str(e))
            return False

        log.debug("Cache entry written", key=key, ttl_seconds=ttl_seconds)
        return True

    async def get(self, key: str) -> Any | None:
        """Return the cached value, or None when absent, expired or unreachable."""
        try:
            entry = await self._load(key)
        except (SQLAlchemyError, OSError) as e:
            log.warning("Cache read failed", key=key, error=str(e))
            return None
        return entry.value if entry else None

    async def is_fresh(self, key: str, max_age_seconds: int) -> bool:
        """Check whether key was written less than max_age_seconds ago.

        Independent of the entry's own TTL, except that an expired entry
        no longer exists.
        """
        try:
            entry = await self._load(key)
        except (SQLAlchemyError, OSError) as e:
            log.warning("Cache freshness check failed", key=key, error=str(e))
            return False
        if entry is None:
            return False
        return entry.age_seconds() < max_age_seconds

    async def ttl(self, key: str) -> int:
        """Seconds until key expires, or -2 if it does not exist."""
        try:
            entry = await self._load(key)
        except (SQLAlchemyError, OSError) as e:
            log.warning("Cache TTL lookup failed", key=key, error=str(e))
            return -2
        if entry is None:
            return -2
        return int((entry.expires_at - utc_now()).total_seconds())

    async def invalidate(self, key: str) -> bool:
        """Remove key unconditionally.

        Returns:
            True if the delete was issued, False if the store failed.
        """
        try:
            async with self._session_factory() as session:
                await session.execute(delete(CacheEntryModel).where(CacheEntryModel.key == key))
                await session.commit()
        except (SQLAlchemyError, OSError) as e:
            log.warning("Cache invalidate failed", key=key, error=str(e))
            return False

        log.debug("Cache entry invalidated", key=key)
        return True

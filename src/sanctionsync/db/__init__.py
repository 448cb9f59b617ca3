"""Database module for sanctionsync."""

from sanctionsync.db.models import (
    Base,
    CacheEntryModel,
    EntityModel,
    SanctionRecordModel,
)
from sanctionsync.db.repositories import SQLiteEntityRepository
from sanctionsync.db.session import (
    create_all_tables,
    create_session_factory,
    init_db,
    session_scope,
)

__all__ = [
    "Base",
    "CacheEntryModel",
    "EntityModel",
    "SanctionRecordModel",
    "SQLiteEntityRepository",
    "create_all_tables",
    "create_session_factory",
    "init_db",
    "session_scope",
]

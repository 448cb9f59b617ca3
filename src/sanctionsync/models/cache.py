"""Cache models for the freshness cache."""

from datetime import datetime
from typing import Annotated, Any

from pydantic import BaseModel, Field

from sanctionsync.utils.datetime import utc_now


class CacheEntry(BaseModel):
    """A cached value with an absolute expiry.

    written_at drives freshness checks; expires_at only bounds storage.
    """

    key: str
    value: Any = None
    written_at: Annotated[datetime, Field(default_factory=utc_now)]
    expires_at: datetime

    def is_expired(self, now: datetime | None = None) -> bool:
        return (now or utc_now()) >= self.expires_at

    def age_seconds(self, now: datetime | None = None) -> float:
        return ((now or utc_now()) - self.written_at).total_seconds()


class IngestionMarker(BaseModel):
    """Payload written to the cache after a successful ingestion run."""

    source: str
    timestamp: Annotated[datetime, Field(default_factory=utc_now)]
    count: int = 0
    created: int = 0
    updated: int = 0
    failed: int = 0

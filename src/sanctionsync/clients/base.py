"""Base protocols for sanctionsync source implementations.

Defines the interfaces a sanctions source plugs into. A source is
supported by supplying a parser/normalizer pair:
- OFAC SDN / Consolidated (sdnList XML) - clients.ofac
- Future: EU, UN, UK lists with their own document formats
"""

from datetime import date
from typing import TYPE_CHECKING, Any, Protocol

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from datetime import datetime

    from sanctionsync.models.entity import Entity


class FeedDocument(BaseModel):
    """Intermediate tree produced by a FeedParser.

    entries hold one dict per source record, with every repeatable
    element already expanded to a list.
    """

    publish_date: date | None = None
    record_count: int | None = None
    entries: list[dict[str, Any]] = Field(default_factory=list)


class FeedParser(Protocol):
    """Protocol for feed parsers.

    Parsers are pure: no network or storage access.
    """

    def parse(self, raw: bytes) -> FeedDocument:
        """Parse a raw feed document.

        Args:
            raw: Document bytes exactly as fetched

        Returns:
            FeedDocument with one intermediate record per entry

        Raises:
            MalformedFeedError: If the document is not well-formed
        """
        ...


class RecordNormalizer(Protocol):
    """Protocol for mapping intermediate records onto Entity."""

    list_source: str
    list_name: str

    def normalize(self, record: dict[str, Any], now: "datetime | None" = None) -> "Entity":
        """Map one intermediate record to an unsaved Entity.

        Args:
            record: Intermediate record from FeedDocument.entries
            now: Timestamp used for date_added/created_at

        Returns:
            Entity carrying exactly one SanctionRecord

        Raises:
            RecordNormalizationError: If the record is unusable
        """
        ...

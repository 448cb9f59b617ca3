"""Ingestion service for sanctionsync.

One run fetches a source feed, parses it, normalizes every entry and
reconciles the result against the store. Transport and parse failures
are fatal to the run and propagate; per-entry normalization and
persistence failures are counted and skipped.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

import structlog
from pydantic import BaseModel, Field

from sanctionsync.clients.base import FeedParser, RecordNormalizer
from sanctionsync.clients.fetcher import FeedFetcher
from sanctionsync.exceptions import RecordNormalizationError
from sanctionsync.models.entity import Entity
from sanctionsync.sync.reconcile import ReconciliationEngine
from sanctionsync.utils.datetime import utc_now

log = structlog.get_logger(__name__)


class SourceConfig(BaseModel):
    """A sanctions source the service knows how to ingest."""

    name: str = Field(description="Logical source name, used for cache keys and job ids")
    url: str
    list_source: str = "OFAC"
    list_name: str = "SDN"
    enabled: bool = True


class IngestionResult(BaseModel):
    """Result of one ingestion run."""

    source: str
    started_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    completed_at: datetime | None = None
    entries_found: int = 0
    normalization_failed: int = 0
    created: int = 0
    updated: int = 0
    failed: int = 0
    removed: int = 0
    errors: list[str] = Field(default_factory=list)

    @property
    def duration_seconds(self) -> float | None:
        if self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None


class NormalizedBatch(BaseModel):
    """Entities produced from a batch of intermediate records."""

    entities: list[Entity] = Field(default_factory=list)
    failed: int = 0
    errors: list[str] = Field(default_factory=list)


def normalize_records(
    normalizer: RecordNormalizer,
    records: list[dict[str, Any]],
    now: datetime | None = None,
) -> NormalizedBatch:
    """Normalize records one by one, skipping the ones that fail."""
    now = now or utc_now()
    batch = NormalizedBatch()

    for record in records:
        try:
            batch.entities.append(normalizer.normalize(record, now))
        except RecordNormalizationError as e:
            log.warning("Skipping unusable entry", error=str(e))
            batch.failed += 1
            batch.errors.append(str(e))
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            log.warning(
                "Skipping entry after unexpected mapping error",
                list_source=normalizer.list_source,
                error=str(e),
            )
            batch.failed += 1
            batch.errors.append(f"{type(e).__name__}: {e}")

    return batch


class IngestionService:
    """Runs fetch -> parse -> normalize -> reconcile for one source.

    Collaborators are passed in explicitly; the service owns none of them.
    """

    def __init__(
        self,
        source: SourceConfig,
        fetcher: FeedFetcher,
        parser: FeedParser,
        normalizer: RecordNormalizer,
        engine: ReconciliationEngine,
        concurrency: int = 1,
        mark_missing_removed: bool = False,
    ) -> None:
        self.source = source
        self.fetcher = fetcher
        self.parser = parser
        self.normalizer = normalizer
        self.engine = engine
        self.concurrency = concurrency
        self.mark_missing_removed = mark_missing_removed

    async def run(self) -> IngestionResult:
        """Run one full ingestion.

        Returns:
            IngestionResult with per-stage counts

        Raises:
            TransportError: If the feed cannot be fetched
            MalformedFeedError: If the feed cannot be parsed
        """
        result = IngestionResult(source=self.source.name)
        now = utc_now()

        log.info("Starting ingestion", source=self.source.name, url=self.source.url)

        raw = await self.fetcher.fetch(self.source.url)
        document = self.parser.parse(raw)
        result.entries_found = len(document.entries)

        if document.record_count is not None and document.record_count != len(document.entries):
            log.warning(
                "Feed record count mismatch",
                source=self.source.name,
                declared=document.record_count,
                parsed=len(document.entries),
            )

        batch = normalize_records(self.normalizer, document.entries, now)
        result.normalization_failed = batch.failed
        result.errors.extend(batch.errors)

        reconciled = await self.engine.reconcile_batch(
            batch.entities, concurrency=self.concurrency, now=now
        )
        result.created = reconciled.created
        result.updated = reconciled.updated
        result.failed = reconciled.failed
        result.errors.extend(reconciled.errors)

        # Only a clean pass over the whole feed is trusted to detect delistings
        if self.mark_missing_removed and batch.failed == 0 and reconciled.failed == 0:
            seen = {entity.natural_key[1] for entity in batch.entities}
            result.removed = await self.engine.mark_removed(
                self.normalizer.list_source, self.normalizer.list_name, seen, now
            )

        result.completed_at = datetime.now(UTC)

        log.info(
            "Ingestion complete",
            source=self.source.name,
            entries_found=result.entries_found,
            normalization_failed=result.normalization_failed,
            created=result.created,
            updated=result.updated,
            failed=result.failed,
            removed=result.removed,
            duration_seconds=result.duration_seconds,
        )
        return result

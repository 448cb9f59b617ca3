"""Ingestion jobs for the scheduler.

Each SourceJob wraps one source's ingestion with the Idle/Running state
machine, the freshness gate and error handling. Jobs catch exceptions
so a failed run never takes the scheduler down or blocks later runs.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from enum import Enum

import structlog
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from sanctionsync.cache import FreshnessCache, marker_key
from sanctionsync.clients.fetcher import FeedFetcher, FetcherConfig
from sanctionsync.clients.ofac import OFACNormalizer, OFACParser
from sanctionsync.config import Settings
from sanctionsync.exceptions import ConfigurationError
from sanctionsync.models.cache import IngestionMarker
from sanctionsync.sync.ingest import IngestionResult, IngestionService, SourceConfig
from sanctionsync.sync.reconcile import ReconciliationEngine

log = structlog.get_logger(__name__)

ServiceFactory = Callable[[], AbstractAsyncContextManager[IngestionService]]


class JobState(str, Enum):
    """Per-source run state."""

    IDLE = "idle"
    RUNNING = "running"


class RunStatus(str, Enum):
    """How a run attempt ended."""

    COMPLETED = "completed"
    SKIPPED_FRESH = "skipped_fresh"
    SKIPPED_RUNNING = "skipped_running"
    FAILED = "failed"


class RunOutcome(BaseModel):
    """Outcome of one run attempt for a source."""

    source: str
    status: RunStatus
    result: IngestionResult | None = None
    error: str | None = None


class SourceJob:
    """Non-overlapping, freshness-gated ingestion for a single source.

    State moves Idle -> Running -> Idle. A run only starts from Idle, so a
    slow fetch can never cause a second concurrent ingestion of the same
    source. The check-and-set in try_begin() has no await inside it,
    which makes it atomic on the event loop.
    """

    def __init__(
        self,
        source: SourceConfig,
        service_factory: ServiceFactory,
        cache: FreshnessCache,
        max_age_seconds: int = 24 * 60 * 60,
        marker_ttl_seconds: int = 7 * 24 * 60 * 60,
    ) -> None:
        self.source = source
        self.service_factory = service_factory
        self.cache = cache
        self.max_age_seconds = max_age_seconds
        self.marker_ttl_seconds = marker_ttl_seconds
        self.state = JobState.IDLE
        self.last_outcome: RunOutcome | None = None

    @property
    def name(self) -> str:
        return self.source.name

    @property
    def is_running(self) -> bool:
        return self.state is JobState.RUNNING

    def try_begin(self) -> bool:
        """Move Idle -> Running. Returns False if a run is already in progress."""
        if self.state is JobState.RUNNING:
            return False
        self.state = JobState.RUNNING
        return True

    async def run(self, force: bool = False) -> RunOutcome:
        """Run an ingestion unless one is in progress.

        Args:
            force: Ignore the freshness gate

        Returns:
            RunOutcome describing what happened.
        """
        if not self.try_begin():
            log.info("Ingestion already running, skipping", source=self.name)
            return RunOutcome(source=self.name, status=RunStatus.SKIPPED_RUNNING)
        return await self.execute(force=force)

    async def execute(self, force: bool = False) -> RunOutcome:
        """Body of a run. The caller must have moved the job to Running."""
        try:
            outcome = await self._attempt(force)
        finally:
            self.state = JobState.IDLE
        self.last_outcome = outcome
        return outcome

    async def _attempt(self, force: bool) -> RunOutcome:
        key = marker_key(self.name)

        try:
            if not force and await self.cache.is_fresh(key, self.max_age_seconds):
                log.info(
                    "Source is fresh, skipping ingestion",
                    source=self.name,
                    max_age_seconds=self.max_age_seconds,
                )
                return RunOutcome(source=self.name, status=RunStatus.SKIPPED_FRESH)

            async with self.service_factory() as service:
                result = await service.run()

        except Exception as e:
            log.error("Ingestion failed", source=self.name, error=str(e))
            return RunOutcome(source=self.name, status=RunStatus.FAILED, error=str(e))

        marker = IngestionMarker(
            source=self.name,
            count=result.entries_found,
            created=result.created,
            updated=result.updated,
            failed=result.failed + result.normalization_failed,
        )
        await self.cache.put(key, marker.model_dump(mode="json"), self.marker_ttl_seconds)

        return RunOutcome(source=self.name, status=RunStatus.COMPLETED, result=result)


# --- Factory Functions ---


def default_sources(settings: Settings) -> list[SourceConfig]:
    """Sources configured in settings."""
    return [
        SourceConfig(
            name="ofac-sdn",
            url=settings.ofac_sdn_url,
            list_source="OFAC",
            list_name="SDN",
            enabled=settings.ofac_sdn_enabled,
        ),
        SourceConfig(
            name="ofac-consolidated",
            url=settings.ofac_consolidated_url,
            list_source="OFAC",
            list_name="Consolidated",
            enabled=settings.ofac_consolidated_enabled,
        ),
    ]


def create_service_factory(
    source: SourceConfig,
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
) -> ServiceFactory:
    """Build a factory yielding a fully wired IngestionService for source."""

    @asynccontextmanager
    async def factory() -> AsyncIterator[IngestionService]:
        fetcher_config = FetcherConfig(
            timeout=settings.fetch_timeout,
            user_agent=settings.user_agent,
        )
        async with FeedFetcher(fetcher_config) as fetcher:
            yield IngestionService(
                source=source,
                fetcher=fetcher,
                parser=OFACParser(),
                normalizer=OFACNormalizer(
                    list_name=source.list_name,
                    list_source=source.list_source,
                    entry_url_template=settings.ofac_entry_url_template,
                ),
                engine=ReconciliationEngine(session_factory),
                concurrency=settings.reconcile_concurrency,
                mark_missing_removed=settings.mark_missing_removed,
            )

    return factory


def create_jobs(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    cache: FreshnessCache | None = None,
) -> dict[str, SourceJob]:
    """Create one SourceJob per enabled source.

    Raises:
        ConfigurationError: If no source is enabled
    """
    cache = cache or FreshnessCache(session_factory)
    jobs: dict[str, SourceJob] = {}
    for source in default_sources(settings):
        if not source.enabled:
            log.debug("Source disabled, skipping", source=source.name)
            continue
        jobs[source.name] = SourceJob(
            source=source,
            service_factory=create_service_factory(source, settings, session_factory),
            cache=cache,
            max_age_seconds=settings.freshness_max_age_seconds,
            marker_ttl_seconds=settings.marker_ttl_seconds,
        )
    if not jobs:
        raise ConfigurationError("No sanctions source is enabled")
    return jobs

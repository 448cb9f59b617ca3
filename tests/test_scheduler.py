"""Tests for scheduler jobs and the scheduler service."""

import asyncio
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger

from feeds import individual_entry, sdn_document
from sanctionsync.cache import FreshnessCache, marker_key
from sanctionsync.clients.fetcher import FeedFetcher
from sanctionsync.clients.ofac import OFACNormalizer, OFACParser
from sanctionsync.config import Settings
from sanctionsync.exceptions import ConfigurationError, TransportError
from sanctionsync.scheduler.jobs import (
    JobState,
    RunStatus,
    SourceJob,
    create_jobs,
    default_sources,
)
from sanctionsync.scheduler.service import SchedulerService
from sanctionsync.sync.ingest import IngestionResult, IngestionService, SourceConfig
from sanctionsync.sync.reconcile import ReconciliationEngine

SOURCE = SourceConfig(name="ofac-sdn", url="https://example.test/sdn.xml")


def service_factory_for(service):
    @asynccontextmanager
    async def factory():
        yield service

    return factory


def fake_service(result: IngestionResult | None = None, error: Exception | None = None):
    service = MagicMock(spec=IngestionService)
    if error is not None:
        service.run = AsyncMock(side_effect=error)
    else:
        service.run = AsyncMock(return_value=result or IngestionResult(source=SOURCE.name))
    return service


class TestSourceJob:
    """Tests for SourceJob."""

    @pytest.mark.asyncio
    async def test_successful_run_writes_marker(self, session_factory):
        cache = FreshnessCache(session_factory)
        result = IngestionResult(source=SOURCE.name, entries_found=3, created=2, updated=1)
        job = SourceJob(SOURCE, service_factory_for(fake_service(result)), cache)

        outcome = await job.run()

        assert outcome.status == RunStatus.COMPLETED
        assert outcome.result.created == 2
        assert job.state == JobState.IDLE
        assert job.last_outcome == outcome

        marker = await cache.get(marker_key(SOURCE.name))
        assert marker["source"] == SOURCE.name
        assert marker["count"] == 3
        assert await cache.is_fresh(marker_key(SOURCE.name), job.max_age_seconds)
        assert 0 < await cache.ttl(marker_key(SOURCE.name)) <= job.marker_ttl_seconds

    @pytest.mark.asyncio
    async def test_fresh_source_is_not_fetched(self, session_factory):
        """A second run within the freshness window never fetches."""
        cache = FreshnessCache(session_factory)
        fetcher = MagicMock(spec=FeedFetcher)
        fetcher.fetch = AsyncMock(return_value=sdn_document(individual_entry()))
        service = IngestionService(
            source=SOURCE,
            fetcher=fetcher,
            parser=OFACParser(),
            normalizer=OFACNormalizer(),
            engine=ReconciliationEngine(session_factory),
        )
        job = SourceJob(SOURCE, service_factory_for(service), cache)

        first = await job.run()
        second = await job.run()

        assert first.status == RunStatus.COMPLETED
        assert second.status == RunStatus.SKIPPED_FRESH
        assert second.result is None
        fetcher.fetch.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_force_ignores_freshness(self, session_factory):
        cache = FreshnessCache(session_factory)
        service = fake_service()
        job = SourceJob(SOURCE, service_factory_for(service), cache)

        await job.run()
        outcome = await job.run(force=True)

        assert outcome.status == RunStatus.COMPLETED
        assert service.run.await_count == 2

    @pytest.mark.asyncio
    async def test_transport_failure_returns_to_idle(self, session_factory):
        """A failed fetch is logged, the job goes back to Idle and the next run proceeds."""
        cache = FreshnessCache(session_factory)
        service = fake_service()
        service.run = AsyncMock(
            side_effect=[
                TransportError("Failed to connect to feed", url=SOURCE.url),
                IngestionResult(source=SOURCE.name, entries_found=1, created=1),
            ]
        )
        job = SourceJob(SOURCE, service_factory_for(service), cache)

        with patch("sanctionsync.scheduler.jobs.log") as mock_log:
            failed = await job.run()
            mock_log.error.assert_called_once()

        assert failed.status == RunStatus.FAILED
        assert "Failed to connect" in failed.error
        assert job.state == JobState.IDLE
        assert await cache.get(marker_key(SOURCE.name)) is None

        retried = await job.run()
        assert retried.status == RunStatus.COMPLETED
        assert service.run.await_count == 2

    @pytest.mark.asyncio
    async def test_overlapping_run_is_skipped(self, session_factory):
        cache = FreshnessCache(session_factory)
        started = asyncio.Event()
        release = asyncio.Event()

        async def slow_run():
            started.set()
            await release.wait()
            return IngestionResult(source=SOURCE.name)

        service = fake_service()
        service.run = AsyncMock(side_effect=slow_run)
        job = SourceJob(SOURCE, service_factory_for(service), cache)

        first = asyncio.create_task(job.run())
        await started.wait()
        assert job.is_running

        second = await job.run()
        assert second.status == RunStatus.SKIPPED_RUNNING

        release.set()
        assert (await first).status == RunStatus.COMPLETED
        assert job.state == JobState.IDLE
        assert service.run.await_count == 1

    @pytest.mark.asyncio
    async def test_cache_unavailable_still_ingests(self):
        cache = MagicMock(spec=FreshnessCache)
        cache.is_fresh = AsyncMock(return_value=False)
        cache.put = AsyncMock(return_value=False)
        service = fake_service()
        job = SourceJob(SOURCE, service_factory_for(service), cache)

        outcome = await job.run()

        assert outcome.status == RunStatus.COMPLETED
        cache.put.assert_awaited_once()


class TestJobFactories:
    """Tests for source and job construction."""

    def test_default_sources(self):
        sources = default_sources(Settings())
        by_name = {s.name: s for s in sources}
        assert by_name["ofac-sdn"].enabled is True
        assert by_name["ofac-sdn"].list_name == "SDN"
        assert by_name["ofac-consolidated"].enabled is False
        assert by_name["ofac-consolidated"].list_name == "Consolidated"

    def test_create_jobs_skips_disabled(self, session_factory):
        jobs = create_jobs(Settings(), session_factory)
        assert list(jobs) == ["ofac-sdn"]

        jobs = create_jobs(Settings(ofac_consolidated_enabled=True), session_factory)
        assert set(jobs) == {"ofac-sdn", "ofac-consolidated"}

    def test_create_jobs_requires_a_source(self, session_factory):
        with pytest.raises(ConfigurationError):
            create_jobs(Settings(ofac_sdn_enabled=False), session_factory)

    def test_create_jobs_uses_settings(self, session_factory):
        settings = Settings(freshness_max_age_seconds=60, marker_ttl_seconds=120)
        job = create_jobs(settings, session_factory)["ofac-sdn"]
        assert job.max_age_seconds == 60
        assert job.marker_ttl_seconds == 120

    @pytest.mark.asyncio
    async def test_service_factory_wires_service(self, session_factory):
        settings = Settings(ofac_consolidated_enabled=True, reconcile_concurrency=2)
        job = create_jobs(settings, session_factory)["ofac-consolidated"]

        async with job.service_factory() as service:
            assert isinstance(service, IngestionService)
            assert service.normalizer.list_name == "Consolidated"
            assert service.concurrency == 2
            assert service.source.url == settings.ofac_consolidated_url


class TestSchedulerService:
    """Tests for SchedulerService."""

    @pytest.fixture
    def settings(self):
        return Settings(ingestion_hour=2, ingestion_minute=0, startup_delay_seconds=30)

    @pytest.fixture
    def jobs(self):
        job = SourceJob(SOURCE, service_factory_for(fake_service()), MagicMock(spec=FreshnessCache))
        return {"ofac-sdn": job}

    def test_scheduler_creates_expected_jobs(self, settings, jobs, tmp_path):
        service = SchedulerService(settings, jobs, state_file=tmp_path / "state")
        scheduler = service._setup_scheduler()

        job_ids = sorted(j.id for j in scheduler.get_jobs())
        assert job_ids == ["ofac-sdn:daily", "ofac-sdn:startup"]

        daily = scheduler.get_job("ofac-sdn:daily")
        assert isinstance(daily.trigger, CronTrigger)
        assert str(daily.trigger.fields[5]) == "2"  # hour
        assert str(daily.trigger.fields[6]) == "0"  # minute
        assert daily.max_instances == 1

        startup = scheduler.get_job("ofac-sdn:startup")
        assert isinstance(startup.trigger, DateTrigger)
        delay = (startup.trigger.run_date - datetime.now(UTC)).total_seconds()
        assert 0 < delay <= 30

    @pytest.mark.asyncio
    async def test_run_once_executes_all_jobs(self, settings, jobs, tmp_path):
        """--once runs every source and exits."""
        jobs["ofac-sdn"].run = AsyncMock(
            return_value=MagicMock(status=RunStatus.COMPLETED)
        )
        state_file = tmp_path / "state"
        service = SchedulerService(settings, jobs, state_file=state_file)

        await service.run(run_once=True)

        jobs["ofac-sdn"].run.assert_awaited_once()
        assert "completed" in state_file.read_text()

    @pytest.mark.asyncio
    async def test_run_job(self, settings, jobs, tmp_path):
        jobs["ofac-sdn"].run = AsyncMock(return_value="outcome")
        service = SchedulerService(settings, jobs, state_file=tmp_path / "state")

        assert await service.run_job("ofac-sdn", force=True) == "outcome"
        jobs["ofac-sdn"].run.assert_awaited_once_with(force=True)
        assert await service.run_job("unknown") is None

    @pytest.mark.asyncio
    async def test_trigger_acknowledges_immediately(self, session_factory, settings, tmp_path):
        release = asyncio.Event()

        async def slow_run():
            await release.wait()
            return IngestionResult(source=SOURCE.name)

        ingestion = fake_service()
        ingestion.run = AsyncMock(side_effect=slow_run)
        job = SourceJob(SOURCE, service_factory_for(ingestion), FreshnessCache(session_factory))
        service = SchedulerService(settings, {SOURCE.name: job}, state_file=tmp_path / "state")

        ack = service.trigger(SOURCE.name)
        assert ack.accepted is True
        assert job.is_running

        rejected = service.trigger(SOURCE.name)
        assert rejected.accepted is False
        assert "already running" in rejected.message

        release.set()
        await service.wait_for_background()
        assert job.state == JobState.IDLE
        assert job.last_outcome.status == RunStatus.COMPLETED

        # Idle again, so a new trigger is accepted
        assert service.trigger(SOURCE.name, force=True).accepted is True
        await service.wait_for_background()

    def test_trigger_unknown_source(self, settings, jobs, tmp_path):
        service = SchedulerService(settings, jobs, state_file=tmp_path / "state")
        ack = service.trigger("eu-consolidated")
        assert ack.accepted is False
        assert ack.message == "Unknown source"

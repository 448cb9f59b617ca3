"""Scheduler service for sanctionsync.

Runs source ingestion daily at a configured time of day and once shortly
after startup, using APScheduler. Also exposes the "run ingestion now"
trigger used by front ends.
"""

import asyncio
import signal
from datetime import UTC, datetime, timedelta
from pathlib import Path

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger
from pydantic import BaseModel

from sanctionsync.config import Settings
from sanctionsync.scheduler.jobs import RunOutcome, SourceJob

log = structlog.get_logger(__name__)

# State file for monitoring (relative to working directory)
STATE_FILE = Path("data/.scheduler_state")


class TriggerAck(BaseModel):
    """Immediate answer to a trigger request; the outcome is only logged."""

    source: str
    accepted: bool
    message: str


class SchedulerService:
    """APScheduler-based service for automated ingestion.

    For every configured source it schedules:
    - a daily run at settings.ingestion_hour:ingestion_minute (UTC)
    - one run settings.startup_delay_seconds after start
    Jobs never overlap per source (SourceJob state machine), and the
    freshness gate turns redundant runs into logged no-ops.
    """

    def __init__(
        self,
        settings: Settings,
        jobs: dict[str, SourceJob],
        state_file: Path = STATE_FILE,
    ) -> None:
        self.settings = settings
        self.jobs = jobs
        self.state_file = state_file
        self.scheduler: AsyncIOScheduler | None = None
        self._shutdown_event = asyncio.Event()
        self._background: set[asyncio.Task[RunOutcome]] = set()

    def _update_state(self, status: str, details: str = "") -> None:
        """Update state file for monitoring."""
        self.state_file.parent.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now().isoformat()
        self.state_file.write_text(f"{timestamp}|{status}|{details}")

    def _setup_scheduler(self) -> AsyncIOScheduler:
        """Create and configure the scheduler with all jobs."""
        scheduler = AsyncIOScheduler(timezone=UTC)
        startup_at = datetime.now(UTC) + timedelta(seconds=self.settings.startup_delay_seconds)

        for name, job in self.jobs.items():
            # Daily ingestion
            scheduler.add_job(
                job.run,
                CronTrigger(
                    hour=self.settings.ingestion_hour,
                    minute=self.settings.ingestion_minute,
                    timezone=UTC,
                ),
                id=f"{name}:daily",
                name=f"{name} daily ingestion",
                max_instances=1,
                coalesce=True,
            )

            # Initial run once surrounding infrastructure is up
            scheduler.add_job(
                job.run,
                DateTrigger(run_date=startup_at),
                id=f"{name}:startup",
                name=f"{name} startup ingestion",
                max_instances=1,
            )

        return scheduler

    def _signal_handler(self, signum: int, frame) -> None:
        """Handle shutdown signals."""
        log.info("Received shutdown signal", signal=signum)
        self._shutdown_event.set()

    def trigger(self, source: str, force: bool = False) -> TriggerAck:
        """Start an ingestion for source in the background and return at once.

        The request is rejected (no-op) when the source is unknown or a run
        for it is already in progress. Must be called from the event loop.
        """
        job = self.jobs.get(source)
        if job is None:
            log.warning("Trigger for unknown source", source=source)
            return TriggerAck(source=source, accepted=False, message="Unknown source")

        if not job.try_begin():
            log.info("Trigger rejected, ingestion already running", source=source)
            return TriggerAck(source=source, accepted=False, message="Ingestion already running")

        task = asyncio.get_running_loop().create_task(job.execute(force=force))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

        log.info("Ingestion triggered", source=source, force=force)
        return TriggerAck(source=source, accepted=True, message="Ingestion started")

    async def wait_for_background(self) -> None:
        """Wait for triggered runs still in flight."""
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

    async def run(self, run_once: bool = False) -> None:
        """Run the scheduler.

        Args:
            run_once: If True, run every source once and exit
        """
        # Set up signal handlers
        signal.signal(signal.SIGTERM, self._signal_handler)
        signal.signal(signal.SIGINT, self._signal_handler)

        log.info("Starting sanctionsync scheduler", sources=list(self.jobs))
        self._update_state("starting")

        if run_once:
            log.info("Running all sources once (--once mode)")
            await self._run_all_jobs()
            self._update_state("completed", "once mode")
            return

        # Set up and start scheduler
        self.scheduler = self._setup_scheduler()
        self.scheduler.start()

        jobs = self.scheduler.get_jobs()
        log.info(
            "Scheduler started",
            jobs=len(jobs),
            daily_at=f"{self.settings.ingestion_hour:02d}:{self.settings.ingestion_minute:02d}",
            startup_delay=f"{self.settings.startup_delay_seconds}s",
        )
        self._update_state("running", f"jobs={len(jobs)}")

        # Wait for shutdown signal
        await self._shutdown_event.wait()

        log.info("Shutting down scheduler")
        self.scheduler.shutdown(wait=True)
        await self.wait_for_background()
        self._update_state("stopped", "clean shutdown")

    async def _run_all_jobs(self) -> list[RunOutcome]:
        """Run every source once (for --once mode)."""
        outcomes = []
        for name, job in self.jobs.items():
            log.info("Running ingestion", source=name)
            outcome = await job.run()
            log.info("Ingestion finished", source=name, status=outcome.status.value)
            outcomes.append(outcome)
        return outcomes

    async def run_job(self, source: str, force: bool = False) -> RunOutcome | None:
        """Run a specific source immediately and wait for it.

        Returns:
            The RunOutcome, or None if source is not configured.
        """
        job = self.jobs.get(source)
        if job is None:
            log.error("Unknown source", source=source)
            return None

        return await job.run(force=force)

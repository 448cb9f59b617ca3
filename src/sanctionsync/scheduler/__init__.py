"""Scheduler for automated ingestion."""

from sanctionsync.scheduler.jobs import (
    JobState,
    RunOutcome,
    RunStatus,
    SourceJob,
    create_jobs,
    default_sources,
)
from sanctionsync.scheduler.service import SchedulerService, TriggerAck

__all__ = [
    "JobState",
    "RunOutcome",
    "RunStatus",
    "SchedulerService",
    "SourceJob",
    "TriggerAck",
    "create_jobs",
    "default_sources",
]

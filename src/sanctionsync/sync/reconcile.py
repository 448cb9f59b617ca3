"""Reconciliation engine for sanctionsync.

Maps normalized entities onto stored ones by natural key
(list_source, entry_id) and performs an idempotent create-or-merge.

The store enforces UNIQUE(list_source, entry_id) on sanction records.
Two workers racing on an unseen key may both decide to create; the
loser's insert violates the constraint, is rolled back, and is retried
as an update of the winner's entity. An update whose row disappeared
after lookup is retried the same way and lands as a create.
Find-then-create is never trusted on its own.
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from enum import Enum
from uuid import uuid4

import structlog
from pydantic import BaseModel, Field
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from sanctionsync.db.repositories import SQLiteEntityRepository
from sanctionsync.exceptions import ReconciliationConflict
from sanctionsync.models.entity import Entity, Relationship, SanctionRecord
from sanctionsync.utils.datetime import utc_now

log = structlog.get_logger(__name__)


class ReconcileOutcome(str, Enum):
    """Result of reconciling a single entity."""

    CREATED = "created"
    UPDATED = "updated"
    FAILED = "failed"


class ReconcileResult(BaseModel):
    """Counts for a reconciled batch."""

    started_at: datetime = Field(default_factory=utc_now)
    completed_at: datetime | None = None
    created: int = 0
    updated: int = 0
    failed: int = 0
    errors: list[str] = Field(default_factory=list)

    @property
    def total(self) -> int:
        return self.created + self.updated + self.failed

    @property
    def duration_seconds(self) -> float | None:
        if self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    def record(self, outcome: ReconcileOutcome, error: str | None = None) -> None:
        if outcome is ReconcileOutcome.CREATED:
            self.created += 1
        elif outcome is ReconcileOutcome.UPDATED:
            self.updated += 1
        else:
            self.failed += 1
            if error:
                self.errors.append(error)


def merge_entities(existing: Entity, incoming: Entity, now: datetime) -> Entity:
    """Merge an incoming entity into a stored one.

    Fields published by the feed are overwritten by the incoming values.
    Sanction records are unioned by natural key with the incoming record
    taking precedence, except that a stored date_added is kept. Stored
    relationships survive unless the incoming entity restates them.
    id and created_at never change. risk_score is recomputed.
    """
    sanctions: dict[tuple[str, str], SanctionRecord] = {
        record.natural_key: record for record in existing.sanctions
    }
    for record in incoming.sanctions:
        previous = sanctions.get(record.natural_key)
        if previous is not None:
            record = record.model_copy(update={"date_added": previous.date_added})
        sanctions[record.natural_key] = record

    relationships: dict[tuple[str, str], Relationship] = {
        rel.key: rel for rel in existing.relationships
    }
    for rel in incoming.relationships:
        relationships[rel.key] = rel

    merged = existing.model_copy(
        update={
            "name": incoming.name,
            "type": incoming.type,
            "alternate_names": list(incoming.alternate_names),
            "identifiers": list(incoming.identifiers),
            "addresses": list(incoming.addresses),
            "biographic": incoming.biographic,
            "sanctions": list(sanctions.values()),
            "relationships": list(relationships.values()),
            "last_updated": now,
        }
    )
    merged.recompute_risk_score()
    return merged


class ReconciliationEngine:
    """Create-or-merge writer for normalized entities.

    The only component that writes entities. Each reconcile runs in its
    own session so concurrent workers never share a transaction.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        max_conflict_retries: int = 1,
    ) -> None:
        """Initialize the engine.

        Args:
            session_factory: Factory for per-record sessions
            max_conflict_retries: Retries after a natural-key conflict
        """
        self._session_factory = session_factory
        self.max_conflict_retries = max_conflict_retries

    async def _reconcile_once(self, entity: Entity, now: datetime) -> ReconcileOutcome:
        list_source, entry_id = entity.natural_key

        async with self._session_factory() as session:
            repo = SQLiteEntityRepository(session)
            existing = await repo.get_by_natural_key(list_source, entry_id)

            try:
                if existing is not None:
                    if await repo.update(merge_entities(existing, entity, now)) is None:
                        raise ReconciliationConflict(
                            "Entity vanished before update",
                            list_source=list_source,
                            entry_id=entry_id,
                        )
                    return ReconcileOutcome.UPDATED

                new_entity = entity.model_copy(
                    update={"id": uuid4(), "created_at": now, "last_updated": now}
                )
                new_entity.recompute_risk_score()
                await repo.create(new_entity)
                return ReconcileOutcome.CREATED

            except IntegrityError as e:
                await session.rollback()
                raise ReconciliationConflict(
                    "Natural key already stored",
                    list_source=list_source,
                    entry_id=entry_id,
                ) from e

    async def _reconcile(
        self, entity: Entity, now: datetime
    ) -> tuple[ReconcileOutcome, str | None]:
        list_source, entry_id = entity.natural_key
        retries = 0

        while True:
            try:
                return await self._reconcile_once(entity, now), None

            except ReconciliationConflict as e:
                if retries >= self.max_conflict_retries:
                    log.error(
                        "Reconciliation conflict persisted",
                        list_source=list_source,
                        entry_id=entry_id,
                        retries=retries,
                    )
                    return ReconcileOutcome.FAILED, str(e)
                retries += 1
                log.info(
                    "Natural key conflict, retrying",
                    list_source=list_source,
                    entry_id=entry_id,
                )

            except (SQLAlchemyError, OSError) as e:
                log.error(
                    "Failed to persist entity",
                    list_source=list_source,
                    entry_id=entry_id,
                    error=str(e),
                )
                return ReconcileOutcome.FAILED, f"{list_source}:{entry_id}: {e}"

    async def reconcile(self, entity: Entity, now: datetime | None = None) -> ReconcileOutcome:
        """Create or merge a single normalized entity.

        Persistence failures are logged and reported as FAILED rather
        than raised.
        """
        outcome, _ = await self._reconcile(entity, now or utc_now())
        return outcome

    async def reconcile_batch(
        self,
        entities: list[Entity],
        concurrency: int = 1,
        now: datetime | None = None,
    ) -> ReconcileResult:
        """Reconcile a batch, continuing past per-record failures.

        Entities sharing a natural key are applied in input order by a
        single worker; distinct keys run concurrently up to concurrency.
        """
        now = now or utc_now()
        result = ReconcileResult()

        groups: dict[tuple[str, str], list[Entity]] = {}
        for entity in entities:
            groups.setdefault(entity.natural_key, []).append(entity)

        if len(groups) < len(entities):
            log.warning(
                "Duplicate natural keys in batch",
                entries=len(entities),
                distinct_keys=len(groups),
            )

        semaphore = asyncio.Semaphore(max(1, concurrency))

        async def reconcile_group(group: list[Entity]) -> None:
            async with semaphore:
                for entity in group:
                    outcome, error = await self._reconcile(entity, now)
                    result.record(outcome, error)

        await asyncio.gather(*[reconcile_group(g) for g in groups.values()])

        result.completed_at = utc_now()

        log.info(
            "Reconciliation complete",
            created=result.created,
            updated=result.updated,
            failed=result.failed,
            duration_seconds=result.duration_seconds,
        )
        return result

    async def mark_removed(
        self,
        list_source: str,
        list_name: str,
        seen_entry_ids: set[str],
        now: datetime | None = None,
    ) -> int:
        """Mark stored records missing from the latest full feed as Removed."""
        async with self._session_factory() as session:
            repo = SQLiteEntityRepository(session)
            removed = await repo.mark_removed(list_source, list_name, seen_entry_ids, now or utc_now())

        if removed:
            log.info("Marked delisted entries", list_source=list_source, removed=removed)
        return removed

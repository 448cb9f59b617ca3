"""SQLite repository implementations for sanctionsync.

Provides the data access layer for Entity records: natural-key lookup,
create/update for the reconciliation engine, and the count/aggregate
read path used by reporting front ends.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import String, cast, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from sanctionsync.db.models import EntityModel, SanctionRecordModel
from sanctionsync.models.entity import (
    Address,
    Biographic,
    Entity,
    EntityType,
    Identifier,
    Relationship,
    SanctionRecord,
    SanctionStatus,
)
from sanctionsync.utils.datetime import ensure_utc

# Rows per UPDATE when flagging removed entries (SQLite bind-parameter limit)
REMOVAL_CHUNK_SIZE = 500


# --- Converters: SQLAlchemy Model <-> Pydantic Model ---


def sanction_to_model(record: SanctionRecord) -> SanctionRecordModel:
    """Convert Pydantic SanctionRecord to SQLAlchemy SanctionRecordModel."""
    model = SanctionRecordModel(list_source=record.list_source, entry_id=record.entry_id)
    apply_sanction(model, record)
    return model


def apply_sanction(model: SanctionRecordModel, record: SanctionRecord) -> None:
    """Copy mutable SanctionRecord fields onto an existing row."""
    model.list_name = record.list_name
    model.entry_url = record.entry_url
    model.date_added = record.date_added
    model.date_removed = record.date_removed
    model.status = record.status.value
    model.reason = record.reason
    model.programs = list(record.programs)


def model_to_sanction(model: SanctionRecordModel) -> SanctionRecord:
    """Convert SQLAlchemy SanctionRecordModel to Pydantic SanctionRecord."""
    return SanctionRecord(
        list_source=model.list_source,
        list_name=model.list_name,
        entry_id=model.entry_id,
        entry_url=model.entry_url,
        date_added=ensure_utc(model.date_added),
        date_removed=ensure_utc(model.date_removed) if model.date_removed else None,
        status=SanctionStatus(model.status),
        reason=model.reason,
        programs=model.programs or [],
    )


def _dump_all(items: Iterable[Any]) -> list[dict[str, Any]]:
    return [item.model_dump(mode="json") for item in items]


def entity_to_model(entity: Entity) -> EntityModel:
    """Convert Pydantic Entity to SQLAlchemy EntityModel."""
    model = EntityModel(id=str(entity.id), created_at=entity.created_at)
    apply_entity(model, entity)
    model.sanctions = [sanction_to_model(s) for s in entity.sanctions]
    return model


def apply_entity(model: EntityModel, entity: Entity) -> None:
    """Copy mutable Entity scalar and JSON fields onto an existing row.

    Sanction rows are synchronized separately by the repository.
    """
    model.name = entity.name
    model.entity_type = entity.type.value
    model.alternate_names = list(entity.alternate_names)
    model.identifiers = _dump_all(entity.identifiers)
    model.addresses = _dump_all(entity.addresses)
    model.biographic = entity.biographic.model_dump(mode="json") if entity.biographic else None
    model.relationships = _dump_all(entity.relationships)
    model.risk_score = entity.risk_score
    model.last_updated = entity.last_updated


def model_to_entity(model: EntityModel) -> Entity:
    """Convert SQLAlchemy EntityModel to Pydantic Entity."""
    return Entity(
        id=UUID(model.id),
        name=model.name,
        type=EntityType(model.entity_type),
        alternate_names=model.alternate_names or [],
        identifiers=[Identifier.model_validate(i) for i in model.identifiers or []],
        addresses=[Address.model_validate(a) for a in model.addresses or []],
        biographic=Biographic.model_validate(model.biographic) if model.biographic else None,
        sanctions=[model_to_sanction(s) for s in model.sanctions],
        relationships=[Relationship.model_validate(r) for r in model.relationships or []],
        risk_score=model.risk_score,
        created_at=ensure_utc(model.created_at),
        last_updated=ensure_utc(model.last_updated),
    )


# --- SQLite Repository Implementations ---


class SQLiteEntityRepository:
    """SQLite implementation of EntityRepository."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, entity_id: UUID) -> Entity | None:
        result = await self._session.execute(
            select(EntityModel).where(EntityModel.id == str(entity_id))
        )
        model = result.scalar_one_or_none()
        return model_to_entity(model) if model else None

    async def get_by_natural_key(self, list_source: str, entry_id: str) -> Entity | None:
        """Look up the entity owning the (list_source, entry_id) sanction record."""
        result = await self._session.execute(
            select(EntityModel)
            .join(SanctionRecordModel)
            .where(
                SanctionRecordModel.list_source == list_source,
                SanctionRecordModel.entry_id == entry_id,
            )
        )
        model = result.scalars().unique().one_or_none()
        return model_to_entity(model) if model else None

    def _filtered(
        self,
        query,
        entity_type: str | None = None,
        list_source: str | None = None,
        status: str | None = None,
        min_risk_score: int | None = None,
    ):
        if entity_type:
            query = query.where(EntityModel.entity_type == entity_type)
        if min_risk_score is not None:
            query = query.where(EntityModel.risk_score >= min_risk_score)
        if list_source or status:
            sub = select(SanctionRecordModel.entity_id)
            if list_source:
                sub = sub.where(SanctionRecordModel.list_source == list_source)
            if status:
                sub = sub.where(SanctionRecordModel.status == status)
            query = query.where(EntityModel.id.in_(sub))
        return query

    async def list(
        self,
        skip: int = 0,
        limit: int = 100,
        entity_type: str | None = None,
        list_source: str | None = None,
        status: str | None = None,
        min_risk_score: int | None = None,
    ) -> list[Entity]:
        query = select(EntityModel).order_by(EntityModel.last_updated.desc())
        query = self._filtered(query, entity_type, list_source, status, min_risk_score)
        query = query.offset(skip).limit(limit)

        result = await self._session.execute(query)
        return [model_to_entity(m) for m in result.scalars().all()]

    async def create(self, entity: Entity) -> Entity:
        """Insert a new entity with its sanction records.

        Raises:
            sqlalchemy.exc.IntegrityError: if a sanction natural key
                already belongs to another entity.
        """
        model = entity_to_model(entity)
        self._session.add(model)
        await self._session.flush()
        await self._session.commit()
        return entity

    async def update(self, entity: Entity) -> Entity | None:
        """Write the full state of an existing entity.

        Sanction rows are matched by natural key; rows for keys the entity
        no longer lists are dropped.
        """
        result = await self._session.execute(
            select(EntityModel).where(EntityModel.id == str(entity.id))
        )
        model = result.scalar_one_or_none()
        if not model:
            return None

        apply_entity(model, entity)

        existing = {(s.list_source, s.entry_id): s for s in model.sanctions}
        rows = []
        for record in entity.sanctions:
            row = existing.get(record.natural_key)
            if row is None:
                row = sanction_to_model(record)
            else:
                apply_sanction(row, record)
            rows.append(row)
        model.sanctions = rows

        await self._session.flush()
        await self._session.commit()
        return entity

    async def mark_removed(
        self,
        list_source: str,
        list_name: str,
        seen_entry_ids: set[str],
        removed_at: datetime,
    ) -> int:
        """Flag records of a list that are missing from its latest full feed.

        Returns:
            Number of sanction records newly marked Removed.
        """
        result = await self._session.execute(
            select(
                SanctionRecordModel.id,
                SanctionRecordModel.entity_id,
                SanctionRecordModel.entry_id,
            ).where(
                SanctionRecordModel.list_source == list_source,
                SanctionRecordModel.list_name == list_name,
                SanctionRecordModel.status != SanctionStatus.REMOVED.value,
            )
        )
        stale = [
            (row_id, entity_id)
            for row_id, entity_id, entry_id in result.all()
            if entry_id not in seen_entry_ids
        ]

        for start in range(0, len(stale), REMOVAL_CHUNK_SIZE):
            chunk = stale[start : start + REMOVAL_CHUNK_SIZE]
            await self._session.execute(
                update(SanctionRecordModel)
                .where(SanctionRecordModel.id.in_([row_id for row_id, _ in chunk]))
                .values(status=SanctionStatus.REMOVED.value, date_removed=removed_at)
            )
            await self._session.execute(
                update(EntityModel)
                .where(EntityModel.id.in_(list({entity_id for _, entity_id in chunk})))
                .values(last_updated=removed_at)
            )
        await self._session.commit()
        return len(stale)

    async def search(self, query: str, limit: int = 10) -> list[Entity]:
        # SQLite JSON search is limited, so alternate names are matched as text
        search_pattern = f"%{query}%"
        stmt = (
            select(EntityModel)
            .where(
                or_(
                    EntityModel.name.ilike(search_pattern),
                    cast(EntityModel.alternate_names, String).ilike(search_pattern),
                )
            )
            .limit(limit)
        )
        result = await self._session.execute(stmt)
        return [model_to_entity(m) for m in result.scalars().all()]

    async def count(
        self,
        entity_type: str | None = None,
        list_source: str | None = None,
        status: str | None = None,
        min_risk_score: int | None = None,
    ) -> int:
        query = select(func.count()).select_from(EntityModel)
        query = self._filtered(query, entity_type, list_source, status, min_risk_score)
        result = await self._session.execute(query)
        return result.scalar() or 0

    async def stats(self) -> dict[str, Any]:
        """Aggregate totals by entity type and sanction status."""
        total = await self.count()

        by_type_rows = await self._session.execute(
            select(EntityModel.entity_type, func.count()).group_by(EntityModel.entity_type)
        )
        by_status_rows = await self._session.execute(
            select(SanctionRecordModel.status, func.count()).group_by(
                SanctionRecordModel.status
            )
        )
        by_source_rows = await self._session.execute(
            select(SanctionRecordModel.list_source, func.count()).group_by(
                SanctionRecordModel.list_source
            )
        )
        avg_risk = await self._session.execute(select(func.avg(EntityModel.risk_score)))

        average = avg_risk.scalar()
        return {
            "total_entities": total,
            "by_type": dict(by_type_rows.all()),
            "by_status": dict(by_status_rows.all()),
            "by_source": dict(by_source_rows.all()),
            "average_risk_score": round(float(average), 2) if average is not None else None,
        }

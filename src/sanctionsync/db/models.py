"""SQLAlchemy 2.0 ORM models for sanctionsync.

These models mirror the Pydantic models but are designed for SQLite persistence.
We keep them separate to maintain clear boundaries. Nested entity collections
(aliases, identifiers, addresses, relationships) live in JSON columns; sanction
records get their own table so the natural key can carry a UNIQUE constraint.
"""

from datetime import datetime
from typing import Any

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.types import JSON


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    type_annotation_map = {
        dict[str, Any]: JSON,
        list[str]: JSON,
        list[dict[str, Any]]: JSON,
        list[Any]: JSON,
    }


class EntityModel(Base):
    """SQLAlchemy model for Entity."""

    __tablename__ = "entities"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    name: Mapped[str] = mapped_column(String(512), nullable=False, index=True)
    entity_type: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    alternate_names: Mapped[list[str]] = mapped_column(JSON, default=list)
    identifiers: Mapped[list[dict[str, Any]]] = mapped_column(JSON, default=list)
    addresses: Mapped[list[dict[str, Any]]] = mapped_column(JSON, default=list)
    biographic: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    relationships: Mapped[list[dict[str, Any]]] = mapped_column(JSON, default=list)
    risk_score: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    last_updated: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)

    # Relationships
    sanctions: Mapped[list["SanctionRecordModel"]] = relationship(
        "SanctionRecordModel",
        back_populates="entity",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="SanctionRecordModel.id",
    )

    def __repr__(self) -> str:
        return f"<EntityModel(id={self.id}, name={self.name}, type={self.entity_type})>"


class SanctionRecordModel(Base):
    """SQLAlchemy model for SanctionRecord.

    UNIQUE(list_source, entry_id) is the store-level guarantee that a
    natural key maps to exactly one entity.
    """

    __tablename__ = "sanction_records"
    __table_args__ = (
        UniqueConstraint("list_source", "entry_id", name="uq_sanction_natural_key"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    entity_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("entities.id"), nullable=False, index=True
    )
    list_source: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    list_name: Mapped[str] = mapped_column(String(100), nullable=False)
    entry_id: Mapped[str] = mapped_column(String(100), nullable=False)
    entry_url: Mapped[str | None] = mapped_column(String(512), nullable=True)
    date_added: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    date_removed: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    programs: Mapped[list[str]] = mapped_column(JSON, default=list)

    # Relationships
    entity: Mapped["EntityModel"] = relationship("EntityModel", back_populates="sanctions")

    def __repr__(self) -> str:
        return (
            f"<SanctionRecordModel(source={self.list_source}, entry_id={self.entry_id}, "
            f"status={self.status})>"
        )


class CacheEntryModel(Base):
    """SQLAlchemy model for freshness cache entries."""

    __tablename__ = "cache_entries"

    key: Mapped[str] = mapped_column(String(255), primary_key=True)
    value: Mapped[Any] = mapped_column(JSON, nullable=True)
    written_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)

    def __repr__(self) -> str:
        return f"<CacheEntryModel(key={self.key}, expires_at={self.expires_at})>"

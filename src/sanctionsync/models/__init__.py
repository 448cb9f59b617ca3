"""Pydantic models for sanctionsync."""

from sanctionsync.models.cache import CacheEntry, IngestionMarker
from sanctionsync.models.entity import (
    Address,
    Biographic,
    Entity,
    EntityType,
    Identifier,
    Relationship,
    SanctionRecord,
    SanctionStatus,
    compute_risk_score,
)

__all__ = [
    "Address",
    "Biographic",
    "CacheEntry",
    "Entity",
    "EntityType",
    "Identifier",
    "IngestionMarker",
    "Relationship",
    "SanctionRecord",
    "SanctionStatus",
    "compute_risk_score",
]

"""sanctionsync ingestion and reconciliation services."""

from sanctionsync.sync.ingest import (
    IngestionResult,
    IngestionService,
    SourceConfig,
    normalize_records,
)
from sanctionsync.sync.reconcile import (
    ReconcileOutcome,
    ReconcileResult,
    ReconciliationEngine,
    merge_entities,
)

__all__ = [
    # Ingestion
    "IngestionResult",
    "IngestionService",
    "SourceConfig",
    "normalize_records",
    # Reconciliation
    "ReconcileOutcome",
    "ReconcileResult",
    "ReconciliationEngine",
    "merge_entities",
]

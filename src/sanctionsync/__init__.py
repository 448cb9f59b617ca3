"""sanctionsync: sanctions-list ingestion and reconciliation.

Fetches public sanctions feeds, normalizes entries into canonical
entities, scores them and merges them idempotently into a local store.
"""

__version__ = "0.1.0"

from sanctionsync.exceptions import SanctionSyncError

__all__ = ["__version__", "SanctionSyncError"]

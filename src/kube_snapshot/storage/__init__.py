"""Storage layer: relational schema and transactional snapshot store."""

from kube_snapshot.storage.database import Database, make_engine
from kube_snapshot.storage.store import (
    RESOURCE_TABLES,
    SnapshotStore,
    SnapshotSummary,
    StoredSnapshot,
    StoreStats,
)

__all__ = [
    "Database",
    "RESOURCE_TABLES",
    "SnapshotStore",
    "SnapshotSummary",
    "StoreStats",
    "StoredSnapshot",
    "make_engine",
]

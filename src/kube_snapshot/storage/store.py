"""Transactional snapshot persistence and read-side queries."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from types import MappingProxyType
from typing import Any

from pydantic import BaseModel, Field
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from kube_snapshot.errors import StoreError
from kube_snapshot.hooks import NO_HOOKS, PipelineHooks
from kube_snapshot.observation.models import ResourceKind, Snapshot, to_utc
from kube_snapshot.storage.database import Database
from kube_snapshot.storage.schema import (
    ConfigMapRow,
    DeploymentRow,
    IngressRow,
    NodeRow,
    PersistentVolumeClaimRow,
    PersistentVolumeRow,
    PodRow,
    SecretRow,
    ServiceRow,
    SnapshotRow,
)

logger = logging.getLogger(__name__)

DEFAULT_SNAPSHOT_LIMIT = 50
DEFAULT_RESOURCE_LIMIT = 100
MAX_LIMIT = 1000


@dataclass(frozen=True)
class ResourceTable:
    """Fixed mapping from a resource kind to its table and listed columns."""

    model: Any
    list_columns: tuple[str, ...]
    cluster_scoped: bool = False


RESOURCE_TABLES: MappingProxyType[ResourceKind, ResourceTable] = MappingProxyType(
    {
        ResourceKind.DEPLOYMENTS: ResourceTable(
            DeploymentRow, ("name", "namespace", "replicas", "ready_replicas", "created_time")
        ),
        ResourceKind.PODS: ResourceTable(
            PodRow, ("name", "namespace", "phase", "node_name", "restart_count", "created_time")
        ),
        ResourceKind.NODES: ResourceTable(
            NodeRow, ("name", "ready", "cpu_capacity", "memory_capacity", "created_time"), cluster_scoped=True
        ),
        ResourceKind.SERVICES: ResourceTable(
            ServiceRow, ("name", "namespace", "type", "cluster_ip", "created_time")
        ),
        ResourceKind.INGRESSES: ResourceTable(IngressRow, ("name", "namespace", "hosts", "created_time")),
        ResourceKind.CONFIGMAPS: ResourceTable(ConfigMapRow, ("name", "namespace", "data_keys", "created_time")),
        ResourceKind.SECRETS: ResourceTable(
            SecretRow, ("name", "namespace", "type", "data_keys", "created_time")
        ),
        ResourceKind.PERSISTENT_VOLUMES: ResourceTable(
            PersistentVolumeRow,
            ("name", "capacity", "access_modes", "status", "storage_class", "created_time"),
            cluster_scoped=True,
        ),
        ResourceKind.PERSISTENT_VOLUME_CLAIMS: ResourceTable(
            PersistentVolumeClaimRow,
            ("name", "namespace", "requested_size", "access_modes", "status", "created_time"),
        ),
    }
)


class SnapshotSummary(BaseModel):
    id: int
    timestamp: datetime
    counts: dict[ResourceKind, int] = Field(default_factory=dict)


class StoredSnapshot(BaseModel):
    id: int
    timestamp: datetime
    snapshot: Snapshot


class StoreStats(BaseModel):
    total_snapshots: int
    latest_snapshot_id: int | None = None
    latest_counts: dict[ResourceKind, int] = Field(default_factory=dict)


def as_utc(ts: datetime | None) -> datetime | None:
    """UTC view of a timestamp read back; naive values from backends without time zones are UTC."""
    return to_utc(ts) if ts is not None else None


def _clamp(limit: int, default: int) -> int:
    if limit <= 0:
        return default
    return min(limit, MAX_LIMIT)


class SnapshotStore:
    """Persists snapshots all-or-nothing and serves them back."""

    def __init__(self, db: Database, hooks: PipelineHooks | None = None) -> None:
        self.db = db
        self.hooks = hooks or NO_HOOKS

    def persist(self, snapshot: Snapshot) -> int:
        """Insert the parent row and every child row in one transaction; return the new id."""
        try:
            with self.db.sessions.begin() as session:
                parent = SnapshotRow(timestamp=snapshot.timestamp, data=snapshot.model_dump(mode="json"))
                session.add(parent)
                session.flush()
                snapshot_id = parent.id
                for kind, table in RESOURCE_TABLES.items():
                    session.add_all(table.model.from_record(snapshot_id, r) for r in snapshot.records(kind))
        except SQLAlchemyError as e:
            logger.error("Failed to store cluster snapshot: %s", e)
            raise StoreError(f"failed to store snapshot captured at {snapshot.timestamp}: {e}") from e

        counts = snapshot.counts()
        logger.info(
            "Stored cluster snapshot %d: %s",
            snapshot_id,
            ", ".join(f"{k.value}={v}" for k, v in counts.items()),
        )
        self.hooks.snapshot_stored(snapshot_id)
        return snapshot_id

    def list_snapshots(self, limit: int = DEFAULT_SNAPSHOT_LIMIT) -> list[SnapshotSummary]:
        """Newest snapshots first, each with its per-kind row counts."""
        stmt = (
            select(SnapshotRow.id, SnapshotRow.timestamp)
            .order_by(SnapshotRow.timestamp.desc(), SnapshotRow.id.desc())
            .limit(_clamp(limit, DEFAULT_SNAPSHOT_LIMIT))
        )
        try:
            with self.db.sessions() as session:
                rows = session.execute(stmt).all()
                ids = [r.id for r in rows]
                counts = self._counts(session, ids)
        except SQLAlchemyError as e:
            raise StoreError(f"failed to list snapshots: {e}") from e
        return [
            SnapshotSummary(id=r.id, timestamp=as_utc(r.timestamp), counts=counts.get(r.id, {}))
            for r in rows
        ]

    def get_snapshot(self, snapshot_id: int) -> StoredSnapshot | None:
        """Stored blob for snapshot_id, or None when it does not exist."""
        try:
            with self.db.sessions() as session:
                row = session.get(SnapshotRow, snapshot_id)
                if row is None:
                    return None
                timestamp, data = row.timestamp, row.data
        except SQLAlchemyError as e:
            raise StoreError(f"failed to fetch snapshot {snapshot_id}: {e}") from e
        return StoredSnapshot(id=snapshot_id, timestamp=as_utc(timestamp), snapshot=Snapshot.model_validate(data))

    def latest_snapshot_id(self) -> int | None:
        """Id of the most recently captured snapshot, or None for an empty store."""
        stmt = select(SnapshotRow.id).order_by(SnapshotRow.timestamp.desc(), SnapshotRow.id.desc()).limit(1)
        try:
            with self.db.sessions() as session:
                return session.scalar(stmt)
        except SQLAlchemyError as e:
            raise StoreError(f"failed to fetch latest snapshot: {e}") from e

    def count_resources(self, snapshot_id: int) -> dict[ResourceKind, int]:
        """Child row counts per kind for one snapshot."""
        try:
            with self.db.sessions() as session:
                return self._counts(session, [snapshot_id]).get(snapshot_id, {})
        except SQLAlchemyError as e:
            raise StoreError(f"failed to count resources for snapshot {snapshot_id}: {e}") from e

    def list_resources(
        self,
        kind: ResourceKind | str,
        snapshot_id: int | None = None,
        namespace: str | None = None,
        limit: int = DEFAULT_RESOURCE_LIMIT,
    ) -> list[dict[str, Any]]:
        """Listed columns of one kind for a snapshot (latest by default), newest first."""
        table = RESOURCE_TABLES[ResourceKind(kind)]
        model = table.model
        if snapshot_id is None:
            snapshot_id = self.latest_snapshot_id()
            if snapshot_id is None:
                return []

        stmt = select(*(getattr(model, c) for c in table.list_columns)).where(model.snapshot_id == snapshot_id)
        if namespace and not table.cluster_scoped:
            stmt = stmt.where(model.namespace == namespace)
        stmt = stmt.order_by(model.created_time.desc(), model.id).limit(_clamp(limit, DEFAULT_RESOURCE_LIMIT))
        try:
            with self.db.sessions() as session:
                rows = session.execute(stmt).all()
        except SQLAlchemyError as e:
            raise StoreError(f"failed to list {ResourceKind(kind).value}: {e}") from e

        results = []
        for row in rows:
            item = dict(row._mapping)
            item["created_time"] = as_utc(item.get("created_time"))
            results.append(item)
        return results

    def stats(self) -> StoreStats:
        try:
            with self.db.sessions() as session:
                total = session.scalar(select(func.count()).select_from(SnapshotRow)) or 0
        except SQLAlchemyError as e:
            raise StoreError(f"failed to count snapshots: {e}") from e
        latest = self.latest_snapshot_id()
        return StoreStats(
            total_snapshots=total,
            latest_snapshot_id=latest,
            latest_counts=self.count_resources(latest) if latest is not None else {},
        )

    def _counts(self, session: Any, snapshot_ids: list[int]) -> dict[int, dict[ResourceKind, int]]:
        counts: dict[int, dict[ResourceKind, int]] = {sid: {k: 0 for k in ResourceKind} for sid in snapshot_ids}
        if not snapshot_ids:
            return counts
        for kind, table in RESOURCE_TABLES.items():
            model = table.model
            stmt = (
                select(model.snapshot_id, func.count())
                .where(model.snapshot_id.in_(snapshot_ids))
                .group_by(model.snapshot_id)
            )
            for sid, n in session.execute(stmt):
                counts[sid][kind] = n
        return counts

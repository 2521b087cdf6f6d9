"""Shared fixtures: SQLite-backed database, store and snapshot factory."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from kube_snapshot.config import Settings
from kube_snapshot.observation.models import (
    ConfigMapInfo,
    DeploymentInfo,
    NodeInfo,
    PersistentVolumeInfo,
    PodInfo,
    SecretInfo,
    ServiceInfo,
    Snapshot,
)
from kube_snapshot.storage import Database, SnapshotStore

BASE_TIME = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def _make_snapshot(timestamp: datetime = BASE_TIME, pods: int = 2, namespace: str = "default") -> Snapshot:
    """A small but realistic snapshot touching most kinds."""
    return Snapshot(
        timestamp=timestamp,
        deployments=[
            DeploymentInfo(
                name="web",
                namespace=namespace,
                created_time=timestamp - timedelta(days=1),
                replicas=pods,
                ready_replicas=pods,
                updated_replicas=pods,
            )
        ],
        pods=[
            PodInfo(
                name=f"web-7d9f8b6c5d-{i}",
                namespace=namespace,
                deployment_name="web",
                created_time=timestamp - timedelta(minutes=i),
                phase="Running",
                node_name="node-1",
                cpu_request="100m",
                memory_limit="256Mi",
            )
            for i in range(pods)
        ],
        nodes=[NodeInfo(name="node-1", ready=True, cpu_capacity="4", memory_capacity="16Gi")],
        services=[ServiceInfo(name="web", namespace=namespace, type="ClusterIP", cluster_ip="10.0.0.10")],
        configmaps=[ConfigMapInfo(name="web-config", namespace=namespace, data={"b": "2", "a": "1"})],
        secrets=[SecretInfo(name="web-tls", namespace=namespace, type="kubernetes.io/tls", data_keys=["tls.crt", "tls.key"])],
        persistent_volumes=[PersistentVolumeInfo(name="pv-1", capacity="10Gi", status="Bound", volume_source="hostPath")],
    )


@pytest.fixture
def make_snapshot():
    return _make_snapshot


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None)


@pytest.fixture
def db(tmp_path):
    database = Database.connect(f"sqlite:///{tmp_path / 'snapshots.db'}")
    yield database
    database.close()


@pytest.fixture
def store(db) -> SnapshotStore:
    return SnapshotStore(db)

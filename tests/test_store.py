from datetime import datetime, timedelta, timezone

import pytest

from kube_snapshot.errors import StoreError
from kube_snapshot.hooks import CountingHooks
from kube_snapshot.observation.models import ResourceKind
from kube_snapshot.storage import SnapshotStore
from kube_snapshot.storage.schema import PodRow, SnapshotRow

from fakes import row_count


def test_persist_writes_parent_and_child_rows(db, make_snapshot):
    hooks = CountingHooks()
    store = SnapshotStore(db, hooks=hooks)
    snapshot = make_snapshot(pods=3)

    snapshot_id = store.persist(snapshot)

    assert store.count_resources(snapshot_id) == snapshot.counts()
    assert row_count(db, PodRow) == 3
    assert hooks.snapshot()["snapshots_stored"] == 1


def test_persist_is_all_or_nothing(db, store, make_snapshot, monkeypatch):
    def broken_row(cls, snapshot_id, record):
        return cls(snapshot_id=snapshot_id, name=None, namespace=record.namespace, data={})

    monkeypatch.setattr(PodRow, "from_record", classmethod(broken_row))

    with pytest.raises(StoreError):
        store.persist(make_snapshot())

    assert row_count(db, SnapshotRow) == 0
    assert row_count(db, PodRow) == 0


def test_get_snapshot_returns_stored_blob(store, make_snapshot):
    snapshot = make_snapshot()
    snapshot_id = store.persist(snapshot)

    stored = store.get_snapshot(snapshot_id)

    assert stored.id == snapshot_id
    assert stored.timestamp == snapshot.timestamp
    assert stored.snapshot == snapshot
    assert store.get_snapshot(snapshot_id + 100) is None


def test_list_snapshots_newest_first_with_counts(store, make_snapshot):
    base = make_snapshot().timestamp
    ids = [store.persist(make_snapshot(timestamp=base + timedelta(hours=i), pods=i + 1)) for i in range(3)]

    summaries = store.list_snapshots(limit=2)

    assert [s.id for s in summaries] == [ids[2], ids[1]]
    assert summaries[0].counts[ResourceKind.PODS] == 3
    assert summaries[1].counts[ResourceKind.PODS] == 2
    assert store.latest_snapshot_id() == ids[2]


def test_list_resources_filters_namespace_and_caps_limit(store, make_snapshot):
    base = make_snapshot().timestamp
    store.persist(make_snapshot(timestamp=base, pods=2, namespace="prod"))
    latest = store.persist(make_snapshot(timestamp=base + timedelta(minutes=5), pods=4, namespace="staging"))

    pods = store.list_resources(ResourceKind.PODS)
    assert len(pods) == 4
    assert {p["namespace"] for p in pods} == {"staging"}
    assert pods[0]["name"] == "web-7d9f8b6c5d-0"
    assert pods[0]["created_time"].tzinfo is not None

    assert store.list_resources("pods", snapshot_id=latest, namespace="prod") == []
    assert len(store.list_resources("pods", limit=3)) == 3
    assert len(store.list_resources("pods", limit=0)) == 4


def test_list_resources_ignores_namespace_for_cluster_scoped_kinds(store, make_snapshot):
    store.persist(make_snapshot(namespace="prod"))

    nodes = store.list_resources(ResourceKind.NODES, namespace="prod")

    assert [n["name"] for n in nodes] == ["node-1"]
    assert nodes[0]["ready"] is True


def test_configmap_rows_record_sorted_keys(store, make_snapshot):
    store.persist(make_snapshot())

    configmaps = store.list_resources(ResourceKind.CONFIGMAPS)

    assert configmaps[0]["data_keys"] == ["a", "b"]


def test_list_resources_empty_store(store):
    assert store.list_resources(ResourceKind.PODS) == []
    assert store.latest_snapshot_id() is None


def test_stats(store, make_snapshot):
    assert store.stats().total_snapshots == 0

    store.persist(make_snapshot(pods=1))
    latest = store.persist(make_snapshot(pods=5))

    stats = store.stats()
    assert stats.total_snapshots == 2
    assert stats.latest_snapshot_id == latest
    assert stats.latest_counts[ResourceKind.PODS] == 5


def test_offset_timestamps_stored_and_ordered_as_utc(store, make_snapshot):
    plus_five = timezone(timedelta(hours=5))
    earlier_id = store.persist(make_snapshot(timestamp=datetime(2024, 5, 1, 12, 0, tzinfo=plus_five)))
    later_id = store.persist(make_snapshot(timestamp=datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)))

    stored = store.get_snapshot(earlier_id)

    assert stored.timestamp == datetime(2024, 5, 1, 7, 0, tzinfo=timezone.utc)
    assert stored.snapshot.timestamp == stored.timestamp
    assert [s.id for s in store.list_snapshots()] == [later_id, earlier_id]
    assert store.latest_snapshot_id() == later_id

import threading
from datetime import timedelta

import pytest
from rich.console import Console

from kube_snapshot.config import Settings
from kube_snapshot.errors import CollectionError
from kube_snapshot.pipeline import print_result, run_collection, run_consumer, run_retention
from kube_snapshot.storage import SnapshotStore
from kube_snapshot.transport import SnapshotPublisher, SnapshotSubscriber

from fakes import FakeConsumer, FakeMessage, FakeProducer


class StubCollector:
    def __init__(self, snapshot=None, error=None):
        self.snapshot = snapshot
        self.error = error
        self.calls = 0

    def collect(self, cancel=None):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.snapshot


def test_direct_mode_persists_snapshot(settings, store, make_snapshot):
    snapshot = make_snapshot()

    result = run_collection(settings, collector=StubCollector(snapshot), store=store)

    assert result.mode == "direct"
    assert result.ack is None
    assert store.get_snapshot(result.snapshot_id).snapshot == snapshot
    assert f"snapshot **{result.snapshot_id}**" in result.report


def test_kafka_mode_publishes_and_skips_store(store, make_snapshot):
    settings = Settings(_env_file=None, kafka_enabled=True)
    producer = FakeProducer()
    publisher = SnapshotPublisher(settings, producer=producer)

    result = run_collection(settings, collector=StubCollector(make_snapshot()), publisher=publisher, store=store)

    assert result.mode == "kafka"
    assert result.ack.topic == "cluster-info"
    assert len(producer.produced) == 1
    assert store.stats().total_snapshots == 0


@pytest.mark.parametrize("kafka_enabled", [True, False])
def test_failed_collection_publishes_and_stores_nothing(kafka_enabled, store):
    settings = Settings(_env_file=None, kafka_enabled=kafka_enabled)
    producer = FakeProducer()
    publisher = SnapshotPublisher(settings, producer=producer)

    with pytest.raises(CollectionError):
        run_collection(
            settings,
            collector=StubCollector(error=CollectionError("services", "503 Service Unavailable")),
            publisher=publisher,
            store=store,
        )

    assert producer.produced == []
    assert store.stats().total_snapshots == 0


def test_run_consumer_stores_until_stopped(settings, db, make_snapshot):
    stop = threading.Event()
    consumer = FakeConsumer([FakeMessage(make_snapshot().to_json(), offset=0)], stop)
    subscriber = SnapshotSubscriber(settings, SnapshotStore(db), consumer=consumer)

    run_consumer(stop, settings=settings, db=db, subscriber=subscriber)

    assert consumer.closed
    assert SnapshotStore(db).stats().total_snapshots == 1


def test_run_retention_applies_count_policy(db, store, make_snapshot):
    base = make_snapshot().timestamp
    for i in range(4):
        store.persist(make_snapshot(timestamp=base + timedelta(hours=i)))
    settings = Settings(_env_file=None, retention_max_age=timedelta(0), retention_max_snapshots=1)

    result = run_retention(settings, db=db)

    assert result.deleted == 3
    assert result.stats.total_snapshots == 1
    assert "Deleted 3 snapshots" in result.report


def test_print_result_renders_panel_and_counts(settings, store, make_snapshot):
    result = run_collection(settings, collector=StubCollector(make_snapshot(pods=3)), store=store)
    console = Console(record=True, width=100)

    print_result(result, console)

    text = console.export_text()
    assert "Collection Cycle" in text
    assert "persistent_volume_claims" in text

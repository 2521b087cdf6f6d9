import threading
import time

import pytest
from confluent_kafka import KafkaError, KafkaException, TopicPartition

from kube_snapshot.errors import StoreError
from kube_snapshot.hooks import CountingHooks
from kube_snapshot.transport.subscriber import SnapshotSubscriber, consumer_config

from fakes import FakeConsumer, FakeMessage


def _run(settings, store, results, hooks=None):
    stop = threading.Event()
    consumer = FakeConsumer(results, stop)
    SnapshotSubscriber(settings, store, consumer=consumer, hooks=hooks).run(stop)
    return consumer


def test_consumer_config_commits_manually(settings):
    cfg = consumer_config(settings)

    assert cfg["enable.auto.commit"] is False
    assert cfg["group.id"] == "cluster-info-consumer"
    assert cfg["auto.offset.reset"] == "earliest"
    assert cfg["session.timeout.ms"] == 30000
    assert cfg["heartbeat.interval.ms"] == 3000
    assert cfg["partition.assignment.strategy"] == "roundrobin"


def test_malformed_message_is_skipped_and_offset_advances(settings, store, make_snapshot):
    hooks = CountingHooks()
    messages = [
        FakeMessage(make_snapshot(pods=1).to_json(), offset=0),
        FakeMessage(b'{"timestamp": "not-a-time"}', offset=1),
        FakeMessage(make_snapshot(pods=2).to_json(), offset=2),
    ]

    consumer = _run(settings, store, messages, hooks=hooks)

    assert store.stats().total_snapshots == 2
    assert consumer.committed_offset(0) == 3
    assert consumer.subscribed == ["cluster-info"]
    assert consumer.closed
    counts = hooks.snapshot()
    assert counts["messages_processed"] == 2
    assert counts["messages_failed"] == 1


def test_partitions_commit_independently(settings, store, make_snapshot):
    messages = [
        FakeMessage(make_snapshot().to_json(), offset=10, partition=0),
        FakeMessage(make_snapshot().to_json(), offset=4, partition=1),
        FakeMessage(make_snapshot().to_json(), offset=11, partition=0),
    ]

    consumer = _run(settings, store, messages)

    assert consumer.committed_offset(0) == 12
    assert consumer.committed_offset(1) == 5
    assert store.stats().total_snapshots == 3


def test_partition_eof_is_ignored(settings, store, make_snapshot):
    messages = [
        FakeMessage(None, offset=0, error=KafkaError(KafkaError._PARTITION_EOF)),
        FakeMessage(make_snapshot().to_json(), offset=0),
    ]

    consumer = _run(settings, store, messages)

    assert store.stats().total_snapshots == 1
    assert consumer.committed_offset(0) == 1


def test_transient_broker_error_is_retried(settings, store, make_snapshot):
    results = [
        KafkaException(KafkaError(KafkaError._TRANSPORT)),
        FakeMessage(make_snapshot().to_json(), offset=0),
    ]

    consumer = _run(settings, store, results)

    assert store.stats().total_snapshots == 1
    assert consumer.committed_offset(0) == 1


def test_fatal_broker_error_propagates(settings, store):
    fatal = KafkaException(KafkaError(KafkaError._FATAL, "fenced", fatal=True))

    with pytest.raises(KafkaException):
        _run(settings, store, [fatal])


def test_store_failure_is_logged_not_retried(settings, store, make_snapshot, monkeypatch):
    def unavailable(snapshot):
        raise StoreError("database is gone")

    monkeypatch.setattr(store, "persist", unavailable)
    hooks = CountingHooks()

    consumer = _run(settings, store, [FakeMessage(make_snapshot().to_json(), offset=7)], hooks=hooks)

    assert consumer.committed_offset(0) == 8
    assert hooks.snapshot()["messages_failed"] == 1


def test_revoke_drains_and_commits_revoked_partition(settings, store, make_snapshot):
    stop = threading.Event()
    consumer = FakeConsumer([], stop)
    subscriber = SnapshotSubscriber(settings, store, consumer=consumer)
    subscriber._dispatch(FakeMessage(make_snapshot().to_json(), offset=41, partition=3))

    subscriber._on_revoke(consumer, [TopicPartition("cluster-info", 3)])

    assert consumer.committed_offset(3) == 42
    assert store.stats().total_snapshots == 1
    assert subscriber._workers == {}


def test_full_partition_backlog_pauses_then_resumes_fetch(settings, store, make_snapshot, monkeypatch):
    release = threading.Event()
    persist = store.persist

    def slow_persist(snapshot):
        release.wait(5)
        return persist(snapshot)

    monkeypatch.setattr(store, "persist", slow_persist)
    consumer = FakeConsumer([], threading.Event())
    subscriber = SnapshotSubscriber(settings, store, consumer=consumer, queue_size=2)

    for offset in range(3):
        subscriber._dispatch(FakeMessage(make_snapshot().to_json(), offset=offset, partition=2))

    assert consumer.paused == [2]
    assert consumer.resumed == []

    release.set()
    deadline = time.monotonic() + 5
    while subscriber._paused and time.monotonic() < deadline:
        subscriber._resume_drained()
        time.sleep(0.01)

    assert consumer.resumed == [2]
    subscriber._shutdown()
    assert consumer.committed_offset(2) == 3
    assert store.stats().total_snapshots == 3

"""Consumes snapshots from Kafka and persists them, one worker thread per partition.

Offsets are committed manually and only after the message they point past
has been handled. Messages on the same partition are handled strictly in
order by that partition's worker; different partitions run concurrently.
Each worker buffers a bounded backlog; a partition whose backlog fills is
paused at the consumer and resumed once its worker catches up.
"""

from __future__ import annotations

import logging
import queue
import threading
from typing import Any

from confluent_kafka import Consumer, KafkaError, KafkaException, Message, TopicPartition
from pydantic import ValidationError
from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception,
    stop_when_event_set,
    wait_exponential,
)

from kube_snapshot.config import Settings
from kube_snapshot.errors import ProcessingError, StoreError
from kube_snapshot.hooks import NO_HOOKS, PipelineHooks
from kube_snapshot.observation.models import Snapshot
from kube_snapshot.storage.store import SnapshotStore

logger = logging.getLogger(__name__)

POLL_TIMEOUT_SECONDS = 1.0
# Messages buffered per partition before its fetching is paused.
WORKER_QUEUE_SIZE = 16

_STOP = object()


def consumer_config(settings: Settings) -> dict[str, Any]:
    return {
        "bootstrap.servers": ",".join(settings.broker_list),
        "group.id": settings.kafka_group_id,
        "enable.auto.commit": False,
        "auto.offset.reset": "earliest",
        "session.timeout.ms": settings.kafka_session_timeout_ms,
        "heartbeat.interval.ms": settings.kafka_heartbeat_interval_ms,
        "partition.assignment.strategy": "roundrobin",
    }


def _is_retriable(exc: BaseException) -> bool:
    if not isinstance(exc, KafkaException):
        return False
    err = exc.args[0] if exc.args else None
    return not (isinstance(err, KafkaError) and err.fatal())


class _PartitionWorker:
    """Handles one partition's messages in arrival order on a dedicated thread."""

    def __init__(
        self,
        partition: int,
        handler: Any,
        completed: queue.Queue,
        maxsize: int = WORKER_QUEUE_SIZE,
    ) -> None:
        self.partition = partition
        self._handler = handler
        self._completed = completed
        self._maxsize = maxsize
        self._inbox: queue.Queue = queue.Queue(maxsize=maxsize)
        self._thread = threading.Thread(target=self._run, name=f"partition-{partition}", daemon=True)
        self._thread.start()

    def submit(self, msg: Message) -> bool:
        """Queue a message, blocking while the inbox is full. Returns True once the inbox is full."""
        self._inbox.put(msg)
        return self._inbox.full()

    def drained(self) -> bool:
        """True once at most half of the inbox is in use."""
        return self._inbox.qsize() <= self._maxsize // 2

    def stop(self) -> None:
        """Finish every queued message, then exit."""
        self._inbox.put(_STOP)
        self._thread.join()

    def _run(self) -> None:
        while True:
            msg = self._inbox.get()
            if msg is _STOP:
                return
            try:
                self._handler(msg)
            except Exception:
                logger.exception(
                    "Unexpected error handling message (partition=%d, offset=%d)",
                    msg.partition(),
                    msg.offset(),
                )
            self._completed.put((msg.partition(), msg.offset()))


class SnapshotSubscriber:
    """Consumer-group member that stores every received snapshot."""

    def __init__(
        self,
        settings: Settings,
        store: SnapshotStore,
        consumer: Any | None = None,
        hooks: PipelineHooks | None = None,
        queue_size: int = WORKER_QUEUE_SIZE,
    ) -> None:
        self.topic = settings.kafka_topic
        self.group_id = settings.kafka_group_id
        self.store = store
        self.hooks = hooks or NO_HOOKS
        self._consumer = consumer if consumer is not None else Consumer(consumer_config(settings))
        self._workers: dict[int, _PartitionWorker] = {}
        self._queue_size = queue_size
        # partitions whose fetching is paused until their worker catches up
        self._paused: set[int] = set()
        self._completed: queue.Queue = queue.Queue()
        # partition -> highest handled offset not yet committed
        self._uncommitted: dict[int, int] = {}

    def handle(self, msg: Message) -> int | None:
        """Deserialize and persist one message. Failures are logged and skipped."""
        try:
            raw = msg.value()
            if raw is None:
                raise ValueError("message has no value")
            snapshot = Snapshot.from_json(raw)
            snapshot_id = self.store.persist(snapshot)
        except (ValidationError, UnicodeDecodeError, ValueError, StoreError) as e:
            err = ProcessingError(str(e), msg.topic(), msg.partition(), msg.offset())
            logger.error("Failed to process message: %s", err)
            self.hooks.message_failed(err)
            return None

        logger.info(
            "Stored snapshot %d from partition %d offset %d (%d resources)",
            snapshot_id,
            msg.partition(),
            msg.offset(),
            snapshot.total_resources(),
        )
        self.hooks.message_processed()
        return snapshot_id

    def run(self, stop_event: threading.Event) -> None:
        """Poll until stop_event is set, retrying broker errors with capped backoff."""
        self._consumer.subscribe([self.topic], on_assign=self._on_assign, on_revoke=self._on_revoke)
        logger.info("Consuming topic %s as group %s", self.topic, self.group_id)

        retryer = Retrying(
            retry=retry_if_exception(_is_retriable),
            wait=wait_exponential(multiplier=0.5, max=30),
            stop=stop_when_event_set(stop_event),
            sleep=stop_event.wait,
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        try:
            while not stop_event.is_set():
                try:
                    retryer(self._poll_once)
                except KafkaException as e:
                    if not stop_event.is_set():
                        raise
                    logger.warning("Kafka error during shutdown: %s", e)
        finally:
            self._shutdown()

    def _poll_once(self) -> None:
        msg = self._consumer.poll(POLL_TIMEOUT_SECONDS)
        if msg is not None:
            err = msg.error()
            if err is None:
                self._dispatch(msg)
            elif err.code() != KafkaError._PARTITION_EOF:
                raise KafkaException(err)
        self._commit_completed()
        self._resume_drained()

    def _dispatch(self, msg: Message) -> None:
        partition = msg.partition()
        worker = self._workers.get(partition)
        if worker is None:
            worker = _PartitionWorker(partition, self.handle, self._completed, self._queue_size)
            self._workers[partition] = worker
        if worker.submit(msg) and partition not in self._paused:
            self._consumer.pause([TopicPartition(self.topic, partition)])
            self._paused.add(partition)
            logger.info("Partition %d backlog full, pausing fetch", partition)

    def _resume_drained(self) -> None:
        """Resume paused partitions whose worker has worked through half its backlog."""
        ready = sorted(p for p in self._paused if p not in self._workers or self._workers[p].drained())
        if not ready:
            return
        self._consumer.resume([TopicPartition(self.topic, p) for p in ready])
        self._paused.difference_update(ready)
        logger.info("Resumed fetching partitions %s", ready)

    def _drain_completed(self) -> None:
        while True:
            try:
                partition, offset = self._completed.get_nowait()
            except queue.Empty:
                return
            if offset > self._uncommitted.get(partition, -1):
                self._uncommitted[partition] = offset

    def _commit_completed(self, partitions: set[int] | None = None) -> None:
        """Commit offset+1 for every handled message, synchronously."""
        self._drain_completed()
        ready = {
            p: off for p, off in self._uncommitted.items() if partitions is None or p in partitions
        }
        if not ready:
            return
        offsets = [TopicPartition(self.topic, p, off + 1) for p, off in sorted(ready.items())]
        self._consumer.commit(offsets=offsets, asynchronous=False)
        for p, off in ready.items():
            if self._uncommitted.get(p) == off:
                del self._uncommitted[p]
        logger.debug("Committed offsets %s", {p: off + 1 for p, off in ready.items()})

    def _on_assign(self, consumer: Any, partitions: list[TopicPartition]) -> None:
        logger.info("Partitions assigned: %s", [p.partition for p in partitions])

    def _on_revoke(self, consumer: Any, partitions: list[TopicPartition]) -> None:
        """Let workers of revoked partitions finish, then commit what they handled."""
        revoked = {p.partition for p in partitions}
        logger.info("Partitions revoked: %s", sorted(revoked))
        for partition in revoked:
            worker = self._workers.pop(partition, None)
            if worker is not None:
                worker.stop()
        try:
            self._commit_completed(revoked)
        except KafkaException as e:
            logger.error("Failed to commit offsets for revoked partitions %s: %s", sorted(revoked), e)
        for partition in revoked:
            self._uncommitted.pop(partition, None)
            self._paused.discard(partition)

    def _shutdown(self) -> None:
        logger.info("Stopping %d partition workers", len(self._workers))
        for worker in self._workers.values():
            worker.stop()
        self._workers.clear()
        self._paused.clear()
        try:
            self._commit_completed()
        except KafkaException as e:
            logger.error("Failed to commit final offsets: %s", e)
        self._consumer.close()
        logger.info("Kafka consumer closed")

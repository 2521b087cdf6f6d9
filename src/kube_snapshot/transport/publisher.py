"""Publishes serialized snapshots to Kafka and waits for the broker ack."""

from __future__ import annotations

import logging
import threading
from typing import Any

from confluent_kafka import KafkaError, KafkaException, Message, Producer
from pydantic import BaseModel

from kube_snapshot.config import Settings
from kube_snapshot.errors import PublishError
from kube_snapshot.hooks import NO_HOOKS, PipelineHooks
from kube_snapshot.observation.models import Snapshot

logger = logging.getLogger(__name__)

FLUSH_POLL_SECONDS = 0.5


class PublishAck(BaseModel):
    """Where the broker placed a published snapshot."""

    topic: str
    partition: int
    offset: int
    timestamp: int
    size: int


def producer_config(settings: Settings) -> dict[str, Any]:
    """Producer settings: full-ISR acks, bounded retries, configured compression."""
    return {
        "bootstrap.servers": ",".join(settings.broker_list),
        "acks": "all",
        "retries": settings.kafka_send_retries,
        "compression.type": settings.kafka_compression,
    }


class SnapshotPublisher:
    """Single-flight publisher: each call blocks until the snapshot is acked or fails."""

    def __init__(
        self,
        settings: Settings,
        producer: Any | None = None,
        hooks: PipelineHooks | None = None,
    ) -> None:
        self.topic = settings.kafka_topic
        self.partition = settings.kafka_partition
        self.hooks = hooks or NO_HOOKS
        self._producer = producer if producer is not None else Producer(producer_config(settings))
        logger.info(
            "Kafka producer ready (brokers=%s, topic=%s, compression=%s)",
            settings.kafka_brokers,
            self.topic,
            settings.kafka_compression,
        )

    def publish(self, snapshot: Snapshot, cancel: threading.Event | None = None) -> PublishAck:
        """Send one snapshot and block for its delivery report."""
        payload = snapshot.to_json()
        result: dict[str, Any] = {}

        def on_delivery(err: KafkaError | None, msg: Message) -> None:
            result["err"] = err
            result["msg"] = msg

        kwargs: dict[str, Any] = {}
        if self.partition is not None:
            kwargs["partition"] = self.partition
            kwargs["key"] = str(self.partition)

        try:
            self._producer.produce(
                self.topic,
                value=payload,
                timestamp=int(snapshot.timestamp.timestamp() * 1000),
                on_delivery=on_delivery,
                **kwargs,
            )
        except (BufferError, KafkaException) as e:
            raise PublishError(f"failed to enqueue snapshot for topic {self.topic}: {e}") from e

        while "msg" not in result:
            if cancel is not None and cancel.is_set():
                raise PublishError("publish cancelled before delivery was confirmed")
            self._producer.flush(FLUSH_POLL_SECONDS)

        err = result["err"]
        if err is not None:
            raise PublishError(f"failed to deliver snapshot to {self.topic}: {err}")

        msg = result["msg"]
        _, ts = msg.timestamp()
        ack = PublishAck(
            topic=msg.topic(),
            partition=msg.partition(),
            offset=msg.offset(),
            timestamp=ts,
            size=len(payload),
        )
        logger.info(
            "Published snapshot to %s (partition=%d, offset=%d, size=%d bytes)",
            ack.topic,
            ack.partition,
            ack.offset,
            ack.size,
        )
        self.hooks.snapshot_published(ack.size)
        return ack

    def close(self) -> None:
        remaining = self._producer.flush(10)
        if remaining:
            logger.warning("%d messages still undelivered at producer shutdown", remaining)
        logger.info("Kafka producer closed")

"""Transport layer: Kafka publisher and consumer-group subscriber."""

from kube_snapshot.transport.publisher import PublishAck, SnapshotPublisher
from kube_snapshot.transport.subscriber import SnapshotSubscriber

__all__ = [
    "PublishAck",
    "SnapshotPublisher",
    "SnapshotSubscriber",
]

"""Error taxonomy for the snapshot pipeline."""

from __future__ import annotations


class SnapshotError(Exception):
    """Base class for all pipeline errors."""


class CollectionError(SnapshotError):
    """A resource kind could not be listed or converted; the whole cycle is discarded."""

    def __init__(self, kind: str, message: str) -> None:
        super().__init__(f"failed to list {kind}: {message}")
        self.kind = kind


class PublishError(SnapshotError):
    """The broker rejected the snapshot or could not be reached."""


class ProcessingError(SnapshotError):
    """A received message could not be deserialized or persisted."""

    def __init__(self, message: str, topic: str, partition: int, offset: int) -> None:
        super().__init__(f"{message} (topic={topic}, partition={partition}, offset={offset})")
        self.topic = topic
        self.partition = partition
        self.offset = offset


class StoreError(SnapshotError):
    """A persistence transaction failed and was rolled back."""


class RetentionError(SnapshotError):
    """A cleanup batch failed; the next tick retries from current state."""

"""Capability hooks passed into pipeline components at construction.

Components never check whether an observer exists: they always hold a
``PipelineHooks`` instance, which is the no-op implementation unless the
caller wires in something else.
"""

from __future__ import annotations

import threading
from collections import Counter


class PipelineHooks:
    """No-op observer for pipeline events."""

    def collection_started(self) -> None:
        pass

    def collection_succeeded(self, resources: int) -> None:
        pass

    def collection_failed(self, error: Exception) -> None:
        pass

    def snapshot_published(self, size: int) -> None:
        pass

    def snapshot_stored(self, snapshot_id: int) -> None:
        pass

    def message_processed(self) -> None:
        pass

    def message_failed(self, error: Exception) -> None:
        pass

    def retention_deleted(self, count: int) -> None:
        pass


class CountingHooks(PipelineHooks):
    """Thread-safe event counters."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counts: Counter[str] = Counter()

    def _incr(self, name: str, amount: int = 1) -> None:
        with self._lock:
            self._counts[name] += amount

    def collection_started(self) -> None:
        self._incr("collections_started")

    def collection_succeeded(self, resources: int) -> None:
        self._incr("collections_succeeded")
        self._incr("resources_collected", resources)

    def collection_failed(self, error: Exception) -> None:
        self._incr("collections_failed")

    def snapshot_published(self, size: int) -> None:
        self._incr("snapshots_published")
        self._incr("bytes_published", size)

    def snapshot_stored(self, snapshot_id: int) -> None:
        self._incr("snapshots_stored")

    def message_processed(self) -> None:
        self._incr("messages_processed")

    def message_failed(self, error: Exception) -> None:
        self._incr("messages_failed")

    def retention_deleted(self, count: int) -> None:
        self._incr("snapshots_deleted", count)

    def snapshot(self) -> dict[str, int]:
        """Copy of the current counters."""
        with self._lock:
            return dict(self._counts)


NO_HOOKS = PipelineHooks()

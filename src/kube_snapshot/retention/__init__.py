"""Retention layer: bounded cleanup of old snapshots."""

from kube_snapshot.retention.manager import RetentionConfig, RetentionManager, RetentionStats

__all__ = [
    "RetentionConfig",
    "RetentionManager",
    "RetentionStats",
]

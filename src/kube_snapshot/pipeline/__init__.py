"""Pipeline layer: wires collection, transport, storage and retention together."""

from kube_snapshot.pipeline.orchestrator import (
    CycleResult,
    RetentionResult,
    print_result,
    run_collection,
    run_consumer,
    run_retention,
)

__all__ = [
    "CycleResult",
    "RetentionResult",
    "print_result",
    "run_collection",
    "run_consumer",
    "run_retention",
]

"""Orchestrator: collect → publish or store, consume → store, and retention runs."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass

from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.table import Table

from kube_snapshot.config import Settings, get_settings
from kube_snapshot.hooks import NO_HOOKS, PipelineHooks
from kube_snapshot.observation import ClusterCollector, ResourceKind, Snapshot
from kube_snapshot.pipeline.report import (
    REPORT_HEADER,
    REPORT_SECTION_CAPTURE,
    REPORT_SECTION_PUBLISHED,
    REPORT_SECTION_RETENTION,
    REPORT_SECTION_STORED,
)
from kube_snapshot.retention import RetentionConfig, RetentionManager, RetentionStats
from kube_snapshot.storage import Database, SnapshotStore
from kube_snapshot.transport import PublishAck, SnapshotPublisher, SnapshotSubscriber

logger = logging.getLogger(__name__)


@dataclass
class CycleResult:
    """Outcome of one collection cycle."""

    snapshot: Snapshot
    mode: str
    ack: PublishAck | None = None
    snapshot_id: int | None = None

    @property
    def report(self) -> str:
        parts = [
            REPORT_HEADER,
            REPORT_SECTION_CAPTURE.format(
                timestamp=self.snapshot.timestamp.isoformat(),
                total=self.snapshot.total_resources(),
            ),
        ]
        if self.ack is not None:
            parts.append(
                REPORT_SECTION_PUBLISHED.format(
                    topic=self.ack.topic,
                    partition=self.ack.partition,
                    offset=self.ack.offset,
                    size=self.ack.size,
                )
            )
        elif self.snapshot_id is not None:
            parts.append(REPORT_SECTION_STORED.format(snapshot_id=self.snapshot_id))
        return "\n".join(parts)


@dataclass
class RetentionResult:
    deleted: int
    stats: RetentionStats

    @property
    def report(self) -> str:
        return REPORT_HEADER + REPORT_SECTION_RETENTION.format(
            deleted=self.deleted,
            total=self.stats.total_snapshots,
            oldest=self.stats.oldest_snapshot.isoformat() if self.stats.oldest_snapshot else "n/a",
            newest=self.stats.newest_snapshot.isoformat() if self.stats.newest_snapshot else "n/a",
        )


def _make_collector(opts: Settings, hooks: PipelineHooks) -> ClusterCollector:
    return ClusterCollector(
        kubeconfig=str(opts.kubeconfig) if opts.kubeconfig else None,
        context=opts.context,
        page_size=opts.list_page_size,
        hooks=hooks,
    )


def run_collection(
    settings: Settings | None = None,
    collector: ClusterCollector | None = None,
    publisher: SnapshotPublisher | None = None,
    store: SnapshotStore | None = None,
    hooks: PipelineHooks | None = None,
    cancel: threading.Event | None = None,
) -> CycleResult:
    """
    Run one cycle: collect a snapshot, then publish it (Kafka mode) or persist it (direct mode).

    A failed collection raises before anything is published or stored.
    Components built here are closed here; injected ones are left to the caller.
    """
    opts = settings or get_settings()
    hooks = hooks or NO_HOOKS
    if collector is None:
        collector = _make_collector(opts, hooks)
        collector.check_connection()

    snapshot = collector.collect(cancel=cancel)

    if opts.kafka_enabled:
        owned = publisher is None
        publisher = publisher or SnapshotPublisher(opts, hooks=hooks)
        try:
            ack = publisher.publish(snapshot, cancel=cancel)
        finally:
            if owned:
                publisher.close()
        return CycleResult(snapshot=snapshot, mode="kafka", ack=ack)

    db = None
    if store is None:
        db = Database.connect(opts.sqlalchemy_url)
        store = SnapshotStore(db, hooks=hooks)
    try:
        snapshot_id = store.persist(snapshot)
    finally:
        if db is not None:
            db.close()
    return CycleResult(snapshot=snapshot, mode="direct", snapshot_id=snapshot_id)


def run_consumer(
    stop_event: threading.Event,
    settings: Settings | None = None,
    db: Database | None = None,
    subscriber: SnapshotSubscriber | None = None,
    hooks: PipelineHooks | None = None,
) -> None:
    """Consume snapshots until stop_event is set, running retention alongside when enabled."""
    opts = settings or get_settings()
    hooks = hooks or NO_HOOKS
    if db is None:
        db = Database.connect(opts.sqlalchemy_url)
        owned_db = True
    else:
        db.init_schema()
        owned_db = False

    retention = RetentionManager(db, RetentionConfig.from_settings(opts), hooks=hooks)
    retention.start()
    try:
        subscriber = subscriber or SnapshotSubscriber(opts, SnapshotStore(db, hooks=hooks), hooks=hooks)
        subscriber.run(stop_event)
    finally:
        retention.stop()
        if owned_db:
            db.close()
    logger.info("Consumer stopped")


def run_retention(
    settings: Settings | None = None,
    db: Database | None = None,
    hooks: PipelineHooks | None = None,
) -> RetentionResult:
    """Apply both retention policies once, regardless of retention_enabled."""
    opts = settings or get_settings()
    owned_db = db is None
    db = db or Database.connect(opts.sqlalchemy_url)
    try:
        manager = RetentionManager(db, RetentionConfig.from_settings(opts), hooks=hooks)
        deleted = manager.run_once()
        stats = manager.retention_stats()
    finally:
        if owned_db:
            db.close()
    return RetentionResult(deleted=deleted, stats=stats)


def _counts_table(snapshot: Snapshot) -> Table:
    table = Table(title="Resources", show_header=True, header_style="bold")
    table.add_column("Kind")
    table.add_column("Count", justify="right")
    for kind in ResourceKind:
        table.add_row(kind.value, str(len(snapshot.records(kind))))
    return table


def print_result(result: CycleResult | RetentionResult, console: Console | None = None) -> None:
    """Print a cycle or retention result to console using Rich."""
    c = console or Console()
    if isinstance(result, CycleResult):
        c.print(Panel(Markdown(result.report), title="Collection Cycle", border_style="blue"))
        c.print(_counts_table(result.snapshot))
    else:
        c.print(Panel(Markdown(result.report), title="Retention", border_style="blue"))

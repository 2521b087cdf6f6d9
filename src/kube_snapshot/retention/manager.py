"""Periodic age- and count-bounded cleanup of stored snapshots."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from pydantic import BaseModel
from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError

from kube_snapshot.config import Settings
from kube_snapshot.errors import RetentionError
from kube_snapshot.hooks import NO_HOOKS, PipelineHooks
from kube_snapshot.storage.database import Database
from kube_snapshot.storage.schema import SnapshotRow
from kube_snapshot.storage.store import RESOURCE_TABLES, as_utc

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetentionConfig:
    """Retention policy. A zero max_age or max_snapshots disables that policy."""

    enabled: bool = False
    max_age: timedelta = timedelta(days=7)
    max_snapshots: int = 100
    cleanup_interval: timedelta = timedelta(hours=6)
    delete_batch_size: int = 50

    def __post_init__(self) -> None:
        if self.cleanup_interval <= timedelta(0):
            raise ValueError(f"cleanup_interval must be positive, got {self.cleanup_interval}")
        if self.delete_batch_size < 1:
            raise ValueError(f"delete_batch_size must be at least 1, got {self.delete_batch_size}")

    @classmethod
    def from_settings(cls, settings: Settings) -> RetentionConfig:
        return cls(
            enabled=settings.retention_enabled,
            max_age=settings.retention_max_age,
            max_snapshots=settings.retention_max_snapshots,
            cleanup_interval=settings.retention_cleanup_interval,
            delete_batch_size=settings.retention_delete_batch_size,
        )


class RetentionStats(BaseModel):
    total_snapshots: int
    oldest_snapshot: datetime | None = None
    newest_snapshot: datetime | None = None
    retention_span: timedelta | None = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RetentionManager:
    """Deletes the oldest snapshots in bounded batches on a fixed interval."""

    def __init__(
        self,
        db: Database,
        config: RetentionConfig,
        hooks: PipelineHooks | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.db = db
        self.config = config
        self.hooks = hooks or NO_HOOKS
        self._clock = clock
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        """Run cleanup every cleanup_interval on a background thread."""
        if not self.config.enabled:
            logger.info("Data retention is disabled")
            return
        logger.info(
            "Starting data retention manager (max_age=%s, max_snapshots=%d, interval=%s)",
            self.config.max_age,
            self.config.max_snapshots,
            self.config.cleanup_interval,
        )
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="retention", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join()
            self._thread = None

    def _loop(self) -> None:
        interval = self.config.cleanup_interval.total_seconds()
        while not self._stop.wait(interval):
            self.run_once()

    def run_once(self) -> int:
        """One tick: apply the age policy, then the count policy. Returns snapshots deleted."""
        logger.info("Starting retention cleanup")
        deleted = 0
        if self.config.max_age > timedelta(0):
            try:
                deleted += self.delete_snapshots(self.select_expired())
            except RetentionError as e:
                logger.error("Age-based cleanup failed: %s", e)
        if self.config.max_snapshots > 0:
            try:
                deleted += self.delete_snapshots(self.select_excess())
            except RetentionError as e:
                logger.error("Count-based cleanup failed: %s", e)
        self.hooks.retention_deleted(deleted)
        logger.info("Retention cleanup completed, deleted %d snapshots", deleted)
        return deleted

    def select_expired(self) -> list[int]:
        """Oldest-first ids captured before now - max_age, at most one batch."""
        cutoff = self._clock() - self.config.max_age
        stmt = (
            select(SnapshotRow.id)
            .where(SnapshotRow.timestamp < cutoff)
            .order_by(SnapshotRow.timestamp.asc(), SnapshotRow.id.asc())
            .limit(self.config.delete_batch_size)
        )
        try:
            with self.db.sessions() as session:
                return list(session.scalars(stmt))
        except SQLAlchemyError as e:
            raise RetentionError(f"failed to select expired snapshots: {e}") from e

    def select_excess(self) -> list[int]:
        """Oldest-first ids beyond max_snapshots, at most one batch."""
        try:
            with self.db.sessions() as session:
                total = session.scalar(select(func.count()).select_from(SnapshotRow)) or 0
                excess = min(total - self.config.max_snapshots, self.config.delete_batch_size)
                if excess <= 0:
                    return []
                stmt = (
                    select(SnapshotRow.id)
                    .order_by(SnapshotRow.timestamp.asc(), SnapshotRow.id.asc())
                    .limit(excess)
                )
                return list(session.scalars(stmt))
        except SQLAlchemyError as e:
            raise RetentionError(f"failed to select excess snapshots: {e}") from e

    def delete_snapshots(self, snapshot_ids: list[int]) -> int:
        """Delete child rows then parent rows for the batch in a single transaction."""
        if not snapshot_ids:
            return 0
        try:
            with self.db.sessions.begin() as session:
                for table in reversed(list(RESOURCE_TABLES.values())):
                    session.execute(
                        delete(table.model).where(table.model.snapshot_id.in_(snapshot_ids)),
                        execution_options={"synchronize_session": False},
                    )
                result = session.execute(
                    delete(SnapshotRow).where(SnapshotRow.id.in_(snapshot_ids)),
                    execution_options={"synchronize_session": False},
                )
        except SQLAlchemyError as e:
            raise RetentionError(f"failed to delete snapshots {snapshot_ids}: {e}") from e
        logger.info("Deleted snapshots %s", snapshot_ids)
        return result.rowcount

    def retention_stats(self) -> RetentionStats:
        stmt = select(func.count(SnapshotRow.id), func.min(SnapshotRow.timestamp), func.max(SnapshotRow.timestamp))
        try:
            with self.db.sessions() as session:
                total, oldest, newest = session.execute(stmt).one()
        except SQLAlchemyError as e:
            raise RetentionError(f"failed to read retention stats: {e}") from e
        oldest, newest = as_utc(oldest), as_utc(newest)
        return RetentionStats(
            total_snapshots=total or 0,
            oldest_snapshot=oldest,
            newest_snapshot=newest,
            retention_span=(newest - oldest) if oldest and newest else None,
        )

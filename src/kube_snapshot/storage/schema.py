"""Relational schema: one snapshot parent table and nine resource child tables."""

from __future__ import annotations

from datetime import datetime
from typing import Any, ClassVar

from pydantic import BaseModel
from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Integer, String, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, declared_attr, mapped_column

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    pass


class SnapshotRow(Base):
    """One collection cycle: capture time plus the full serialized Snapshot."""

    __tablename__ = "cluster_snapshots"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    data: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class ResourceRowMixin:
    """Columns shared by every resource table."""

    # record fields copied verbatim into same-named columns
    copied_fields: ClassVar[tuple[str, ...]] = ()

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    created_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    data: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    @declared_attr
    def snapshot_id(cls) -> Mapped[int]:
        return mapped_column(
            ForeignKey("cluster_snapshots.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        )

    @classmethod
    def derived_columns(cls, record: Any) -> dict[str, Any]:
        return {}

    @classmethod
    def from_record(cls, snapshot_id: int, record: BaseModel) -> Any:
        values = {field: getattr(record, field) for field in cls.copied_fields}
        values.update(cls.derived_columns(record))
        return cls(
            snapshot_id=snapshot_id,
            name=record.name,
            created_time=record.created_time,
            data=record.model_dump(mode="json"),
            **values,
        )


class NamespacedMixin:
    namespace: Mapped[str] = mapped_column(String(255), nullable=False, index=True)


class DeploymentRow(NamespacedMixin, ResourceRowMixin, Base):
    __tablename__ = "deployments"
    copied_fields = ("namespace", "replicas", "ready_replicas", "updated_replicas")

    replicas: Mapped[int | None] = mapped_column(Integer)
    ready_replicas: Mapped[int | None] = mapped_column(Integer)
    updated_replicas: Mapped[int | None] = mapped_column(Integer)


class PodRow(NamespacedMixin, ResourceRowMixin, Base):
    __tablename__ = "pods"
    copied_fields = (
        "namespace",
        "deployment_name",
        "phase",
        "node_name",
        "restart_count",
        "cpu_request",
        "cpu_limit",
        "memory_request",
        "memory_limit",
        "storage_request",
    )

    deployment_name: Mapped[str | None] = mapped_column(String(255), index=True)
    phase: Mapped[str | None] = mapped_column(String(50))
    node_name: Mapped[str | None] = mapped_column(String(255), index=True)
    restart_count: Mapped[int | None] = mapped_column(Integer)
    cpu_request: Mapped[str | None] = mapped_column(String(50))
    cpu_limit: Mapped[str | None] = mapped_column(String(50))
    memory_request: Mapped[str | None] = mapped_column(String(50))
    memory_limit: Mapped[str | None] = mapped_column(String(50))
    storage_request: Mapped[str | None] = mapped_column(String(50))


class NodeRow(ResourceRowMixin, Base):
    __tablename__ = "nodes"
    copied_fields = (
        "ready",
        "cpu_capacity",
        "memory_capacity",
        "storage_capacity",
        "cpu_allocatable",
        "memory_allocatable",
        "storage_allocatable",
        "os_image",
        "kernel_version",
        "kubelet_version",
    )

    ready: Mapped[bool | None] = mapped_column(Boolean)
    cpu_capacity: Mapped[str | None] = mapped_column(String(50))
    memory_capacity: Mapped[str | None] = mapped_column(String(50))
    storage_capacity: Mapped[str | None] = mapped_column(String(50))
    cpu_allocatable: Mapped[str | None] = mapped_column(String(50))
    memory_allocatable: Mapped[str | None] = mapped_column(String(50))
    storage_allocatable: Mapped[str | None] = mapped_column(String(50))
    os_image: Mapped[str | None] = mapped_column(String(255))
    kernel_version: Mapped[str | None] = mapped_column(String(255))
    kubelet_version: Mapped[str | None] = mapped_column(String(255))


class ServiceRow(NamespacedMixin, ResourceRowMixin, Base):
    __tablename__ = "services"
    copied_fields = ("namespace", "type", "cluster_ip", "external_ips")

    type: Mapped[str | None] = mapped_column(String(50))
    cluster_ip: Mapped[str | None] = mapped_column(String(45))
    external_ips: Mapped[list[str] | None] = mapped_column(JSONType)


class IngressRow(NamespacedMixin, ResourceRowMixin, Base):
    __tablename__ = "ingresses"
    copied_fields = ("namespace", "hosts")

    hosts: Mapped[list[str] | None] = mapped_column(JSONType)


class ConfigMapRow(NamespacedMixin, ResourceRowMixin, Base):
    __tablename__ = "configmaps"
    copied_fields = ("namespace",)

    data_keys: Mapped[list[str] | None] = mapped_column(JSONType)

    @classmethod
    def derived_columns(cls, record: Any) -> dict[str, Any]:
        return {"data_keys": sorted(record.data)}


class SecretRow(NamespacedMixin, ResourceRowMixin, Base):
    __tablename__ = "secrets"
    copied_fields = ("namespace", "type", "data_keys")

    type: Mapped[str | None] = mapped_column(String(100))
    data_keys: Mapped[list[str] | None] = mapped_column(JSONType)


class PersistentVolumeRow(ResourceRowMixin, Base):
    __tablename__ = "persistent_volumes"
    copied_fields = (
        "capacity",
        "access_modes",
        "reclaim_policy",
        "storage_class",
        "status",
        "volume_source",
    )

    capacity: Mapped[str | None] = mapped_column(String(50))
    access_modes: Mapped[list[str] | None] = mapped_column(JSONType)
    reclaim_policy: Mapped[str | None] = mapped_column(String(50))
    storage_class: Mapped[str | None] = mapped_column(String(255))
    status: Mapped[str | None] = mapped_column(String(50))
    volume_source: Mapped[str | None] = mapped_column(String(100))


class PersistentVolumeClaimRow(NamespacedMixin, ResourceRowMixin, Base):
    __tablename__ = "persistent_volume_claims"
    copied_fields = (
        "namespace",
        "requested_size",
        "access_modes",
        "storage_class",
        "status",
        "volume_name",
    )

    requested_size: Mapped[str | None] = mapped_column(String(50))
    access_modes: Mapped[list[str] | None] = mapped_column(JSONType)
    storage_class: Mapped[str | None] = mapped_column(String(255))
    status: Mapped[str | None] = mapped_column(String(50))
    volume_name: Mapped[str | None] = mapped_column(String(255))

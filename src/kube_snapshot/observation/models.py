"""Structured models for one point-in-time capture of cluster state."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any

from pydantic import AfterValidator, BaseModel, Field


def to_utc(value: datetime) -> datetime:
    """Convert to UTC; naive values are taken to be UTC already."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# Aware datetime held in UTC, whatever offset it arrived with.
UtcDatetime = Annotated[datetime, AfterValidator(to_utc)]


class ResourceKind(str, Enum):
    """The nine tracked resource kinds; values double as field and table names."""

    DEPLOYMENTS = "deployments"
    PODS = "pods"
    NODES = "nodes"
    SERVICES = "services"
    INGRESSES = "ingresses"
    CONFIGMAPS = "configmaps"
    SECRETS = "secrets"
    PERSISTENT_VOLUMES = "persistent_volumes"
    PERSISTENT_VOLUME_CLAIMS = "persistent_volume_claims"


class DeploymentInfo(BaseModel):
    """Deployment state."""

    name: str
    namespace: str
    created_time: UtcDatetime | None = None
    replicas: int = 0
    ready_replicas: int = 0
    updated_replicas: int = 0
    available_replicas: int = 0
    conditions: list[dict[str, Any]] = Field(default_factory=list)
    labels: dict[str, str] = Field(default_factory=dict)
    annotations: dict[str, str] = Field(default_factory=dict)


class ContainerStatus(BaseModel):
    """Container status within a pod."""

    name: str
    ready: bool = False
    restart_count: int = 0
    image: str = ""
    state: str = "unknown"  # running | waiting | terminated | unknown


class PodInfo(BaseModel):
    """Pod placement, resources and container state."""

    name: str
    namespace: str
    deployment_name: str = ""
    created_time: UtcDatetime | None = None
    phase: str = ""
    node_name: str = ""
    pod_ip: str = ""
    host_ip: str = ""
    restart_count: int = 0
    cpu_request: str = ""
    cpu_limit: str = ""
    memory_request: str = ""
    memory_limit: str = ""
    storage_request: str = ""
    labels: dict[str, str] = Field(default_factory=dict)
    annotations: dict[str, str] = Field(default_factory=dict)
    container_statuses: list[ContainerStatus] = Field(default_factory=list)


class NodeInfo(BaseModel):
    """Node capacity and readiness."""

    name: str
    created_time: UtcDatetime | None = None
    ready: bool = False
    cpu_capacity: str = ""
    memory_capacity: str = ""
    storage_capacity: str = ""
    cpu_allocatable: str = ""
    memory_allocatable: str = ""
    storage_allocatable: str = ""
    os_image: str = ""
    kernel_version: str = ""
    kubelet_version: str = ""
    labels: dict[str, str] = Field(default_factory=dict)
    annotations: dict[str, str] = Field(default_factory=dict)


class ServicePort(BaseModel):
    name: str = ""
    protocol: str = ""
    port: int = 0
    target_port: str = ""
    node_port: int | None = None


class ServiceInfo(BaseModel):
    """Service type, addresses and ports."""

    name: str
    namespace: str
    created_time: UtcDatetime | None = None
    type: str = ""
    cluster_ip: str = ""
    external_ips: list[str] = Field(default_factory=list)
    ports: list[ServicePort] = Field(default_factory=list)
    selector: dict[str, str] = Field(default_factory=dict)
    labels: dict[str, str] = Field(default_factory=dict)
    annotations: dict[str, str] = Field(default_factory=dict)


class IngressPath(BaseModel):
    path: str = ""
    path_type: str = ""
    service_name: str = ""
    service_port: int = 0


class IngressTLS(BaseModel):
    hosts: list[str] = Field(default_factory=list)
    secret_name: str = ""


class IngressInfo(BaseModel):
    """Ingress hosts, routing rules and TLS."""

    name: str
    namespace: str
    created_time: UtcDatetime | None = None
    hosts: list[str] = Field(default_factory=list)
    paths: list[IngressPath] = Field(default_factory=list)
    tls: list[IngressTLS] = Field(default_factory=list)
    labels: dict[str, str] = Field(default_factory=dict)
    annotations: dict[str, str] = Field(default_factory=dict)


class ConfigMapInfo(BaseModel):
    """ConfigMap contents."""

    name: str
    namespace: str
    created_time: UtcDatetime | None = None
    data: dict[str, str] = Field(default_factory=dict)
    binary_data: dict[str, str] = Field(
        default_factory=dict,
        description="key -> base64 payload as returned by the API",
    )
    labels: dict[str, str] = Field(default_factory=dict)
    annotations: dict[str, str] = Field(default_factory=dict)


class SecretInfo(BaseModel):
    """Secret metadata. Only key names are kept, never values."""

    name: str
    namespace: str
    created_time: UtcDatetime | None = None
    type: str = ""
    data_keys: list[str] = Field(default_factory=list)
    labels: dict[str, str] = Field(default_factory=dict)
    annotations: dict[str, str] = Field(default_factory=dict)


class PersistentVolumeInfo(BaseModel):
    """Cluster-scoped persistent volume."""

    name: str
    created_time: UtcDatetime | None = None
    capacity: str = ""
    access_modes: list[str] = Field(default_factory=list)
    reclaim_policy: str = ""
    storage_class: str = ""
    volume_mode: str = ""
    status: str = ""
    claim_ref: str = ""
    volume_source: str = ""
    labels: dict[str, str] = Field(default_factory=dict)
    annotations: dict[str, str] = Field(default_factory=dict)


class PersistentVolumeClaimInfo(BaseModel):
    """Namespaced claim against a persistent volume."""

    name: str
    namespace: str
    created_time: UtcDatetime | None = None
    requested_size: str = ""
    access_modes: list[str] = Field(default_factory=list)
    storage_class: str = ""
    volume_mode: str = ""
    status: str = ""
    volume_name: str = ""
    labels: dict[str, str] = Field(default_factory=dict)
    annotations: dict[str, str] = Field(default_factory=dict)


class Snapshot(BaseModel):
    """Full capture of cluster resource state at one timestamp.

    Kinds are listed one after another, so the collections are not
    point-in-time consistent with each other.
    """

    timestamp: UtcDatetime
    deployments: list[DeploymentInfo] = Field(default_factory=list)
    pods: list[PodInfo] = Field(default_factory=list)
    nodes: list[NodeInfo] = Field(default_factory=list)
    services: list[ServiceInfo] = Field(default_factory=list)
    ingresses: list[IngressInfo] = Field(default_factory=list)
    configmaps: list[ConfigMapInfo] = Field(default_factory=list)
    secrets: list[SecretInfo] = Field(default_factory=list)
    persistent_volumes: list[PersistentVolumeInfo] = Field(default_factory=list)
    persistent_volume_claims: list[PersistentVolumeClaimInfo] = Field(default_factory=list)

    def records(self, kind: ResourceKind) -> list[BaseModel]:
        """Records of one kind, in collection order."""
        return getattr(self, kind.value)

    def counts(self) -> dict[ResourceKind, int]:
        """Number of records per kind, every kind present."""
        return {kind: len(self.records(kind)) for kind in ResourceKind}

    def total_resources(self) -> int:
        return sum(self.counts().values())

    def to_json(self) -> bytes:
        """Serialize for log transport and blob storage."""
        return self.model_dump_json().encode("utf-8")

    @classmethod
    def from_json(cls, raw: bytes | str) -> Snapshot:
        """Parse a payload produced by to_json, raising ValidationError when malformed."""
        return cls.model_validate_json(raw)

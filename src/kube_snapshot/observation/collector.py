"""Collect Kubernetes cluster state (nine resource kinds) into a Snapshot."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from kubernetes import client, config
from kubernetes.client.rest import ApiException
from urllib3.exceptions import HTTPError

from kube_snapshot.errors import CollectionError
from kube_snapshot.hooks import NO_HOOKS, PipelineHooks
from kube_snapshot.observation.models import (
    ConfigMapInfo,
    ContainerStatus,
    DeploymentInfo,
    IngressInfo,
    IngressPath,
    IngressTLS,
    NodeInfo,
    PersistentVolumeClaimInfo,
    PersistentVolumeInfo,
    PodInfo,
    ResourceKind,
    SecretInfo,
    ServiceInfo,
    ServicePort,
    Snapshot,
    to_utc,
)

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 500

# PersistentVolumeSource attribute -> recorded source name
_VOLUME_SOURCES = (
    ("host_path", "hostPath"),
    ("nfs", "nfs"),
    ("aws_elastic_block_store", "awsElasticBlockStore"),
    ("gce_persistent_disk", "gcePersistentDisk"),
    ("csi", "csi"),
    ("local", "local"),
)


def _load_kube_config(kubeconfig_path: str | None, context: str | None) -> client.Configuration:
    """Load in-cluster or kubeconfig-based configuration."""
    try:
        config.load_incluster_config()
        return client.Configuration.get_default_copy()
    except config.ConfigException:
        pass
    kwargs: dict[str, Any] = {}
    if kubeconfig_path:
        kwargs["config_file"] = str(kubeconfig_path)
    if context:
        kwargs["context"] = context
    config.load_kube_config(**kwargs)
    return client.Configuration.get_default_copy()


def _utc(ts: datetime | None) -> datetime | None:
    return to_utc(ts) if ts is not None else None


def _iso(ts: datetime | None) -> str | None:
    value = _utc(ts)
    return value.isoformat() if value else None


def _quantity(mapping: dict[str, Any] | None, name: str) -> str:
    if not mapping:
        return ""
    value = mapping.get(name)
    return str(value) if value is not None else ""


def extract_resource_info(containers: list[Any] | None, resource_name: str) -> tuple[str, str]:
    """Return (request, limit) for a resource; the last container declaring one wins."""
    request, limit = "", ""
    for container in containers or []:
        resources = getattr(container, "resources", None)
        if not resources:
            continue
        if resources.requests and resource_name in resources.requests:
            request = str(resources.requests[resource_name])
        if resources.limits and resource_name in resources.limits:
            limit = str(resources.limits[resource_name])
    return request, limit


def owner_workload_name(owner_refs: list[Any] | None, labels: dict[str, str] | None = None) -> str:
    """Name of the owning Deployment, traced through the first ReplicaSet owner reference."""
    for ref in owner_refs or []:
        if ref.kind != "ReplicaSet":
            continue
        name = ref.name or ""
        template_hash = (labels or {}).get("pod-template-hash")
        if template_hash and name.endswith(f"-{template_hash}"):
            return name[: -len(template_hash) - 1]
        return name
    return ""


def container_state(status: Any) -> str:
    """Lifecycle state of a V1ContainerStatus."""
    state = status.state
    if state is None:
        return "unknown"
    if state.running:
        return "running"
    if state.waiting:
        return "waiting"
    if state.terminated:
        return "terminated"
    return "unknown"


def node_ready(conditions: list[Any] | None) -> bool:
    """True when the node reports a Ready condition with status True."""
    return any(c.type == "Ready" and c.status == "True" for c in conditions or [])


def _build_deployment(d: Any) -> DeploymentInfo:
    """V1Deployment -> DeploymentInfo, conditions flattened to dicts."""
    status = d.status
    conditions = []
    for c in (status.conditions if status else None) or []:
        conditions.append(
            {
                "type": c.type,
                "status": c.status,
                "reason": c.reason or "",
                "message": c.message or "",
                "last_update_time": _iso(c.last_update_time),
                "last_transition_time": _iso(c.last_transition_time),
            }
        )
    return DeploymentInfo(
        name=d.metadata.name,
        namespace=d.metadata.namespace or "",
        created_time=_utc(d.metadata.creation_timestamp),
        replicas=(d.spec.replicas if d.spec else None) or 0,
        ready_replicas=(status.ready_replicas if status else None) or 0,
        updated_replicas=(status.updated_replicas if status else None) or 0,
        available_replicas=(status.available_replicas if status else None) or 0,
        conditions=conditions,
        labels=dict(d.metadata.labels or {}),
        annotations=dict(d.metadata.annotations or {}),
    )


def _build_pod(pod: Any) -> PodInfo:
    """V1Pod -> PodInfo with owner, resource strings and summed restarts."""
    containers = pod.spec.containers if pod.spec else []
    cpu_request, cpu_limit = extract_resource_info(containers, "cpu")
    memory_request, memory_limit = extract_resource_info(containers, "memory")
    storage_request, _ = extract_resource_info(containers, "ephemeral-storage")

    statuses: list[ContainerStatus] = []
    restarts = 0
    for cs in (pod.status.container_statuses if pod.status else None) or []:
        restarts += cs.restart_count or 0
        statuses.append(
            ContainerStatus(
                name=cs.name,
                ready=bool(cs.ready),
                restart_count=cs.restart_count or 0,
                image=cs.image or "",
                state=container_state(cs),
            )
        )

    labels = dict(pod.metadata.labels or {})
    return PodInfo(
        name=pod.metadata.name,
        namespace=pod.metadata.namespace or "",
        deployment_name=owner_workload_name(pod.metadata.owner_references, labels),
        created_time=_utc(pod.metadata.creation_timestamp),
        phase=(pod.status.phase if pod.status else None) or "",
        node_name=(pod.spec.node_name if pod.spec else None) or "",
        pod_ip=(pod.status.pod_ip if pod.status else None) or "",
        host_ip=(pod.status.host_ip if pod.status else None) or "",
        restart_count=restarts,
        cpu_request=cpu_request,
        cpu_limit=cpu_limit,
        memory_request=memory_request,
        memory_limit=memory_limit,
        storage_request=storage_request,
        labels=labels,
        annotations=dict(pod.metadata.annotations or {}),
        container_statuses=statuses,
    )


def _build_node(node: Any) -> NodeInfo:
    """V1Node -> NodeInfo with capacity, allocatable and readiness."""
    status = node.status
    capacity = status.capacity if status else None
    allocatable = status.allocatable if status else None
    info = status.node_info if status else None
    return NodeInfo(
        name=node.metadata.name,
        created_time=_utc(node.metadata.creation_timestamp),
        ready=node_ready(status.conditions if status else None),
        cpu_capacity=_quantity(capacity, "cpu"),
        memory_capacity=_quantity(capacity, "memory"),
        storage_capacity=_quantity(capacity, "ephemeral-storage"),
        cpu_allocatable=_quantity(allocatable, "cpu"),
        memory_allocatable=_quantity(allocatable, "memory"),
        storage_allocatable=_quantity(allocatable, "ephemeral-storage"),
        os_image=getattr(info, "os_image", None) or "",
        kernel_version=getattr(info, "kernel_version", None) or "",
        kubelet_version=getattr(info, "kubelet_version", None) or "",
        labels=dict(node.metadata.labels or {}),
        annotations=dict(node.metadata.annotations or {}),
    )


def external_ips(spec: Any) -> list[str]:
    """External IPs of a V1ServiceSpec, whichever attribute name the client generates."""
    if spec is None:
        return []
    ips = getattr(spec, "external_ips", None) or getattr(spec, "external_i_ps", None)
    return list(ips or [])


def _build_service(svc: Any) -> ServiceInfo:
    """V1Service -> ServiceInfo."""
    spec = svc.spec
    ports = [
        ServicePort(
            name=p.name or "",
            protocol=p.protocol or "",
            port=p.port or 0,
            target_port=str(p.target_port) if p.target_port is not None else "",
            node_port=p.node_port,
        )
        for p in (spec.ports if spec else None) or []
    ]
    return ServiceInfo(
        name=svc.metadata.name,
        namespace=svc.metadata.namespace or "",
        created_time=_utc(svc.metadata.creation_timestamp),
        type=(spec.type if spec else None) or "",
        cluster_ip=(spec.cluster_ip if spec else None) or "",
        external_ips=external_ips(spec),
        ports=ports,
        selector=dict((spec.selector if spec else None) or {}),
        labels=dict(svc.metadata.labels or {}),
        annotations=dict(svc.metadata.annotations or {}),
    )


def _build_ingress(ing: Any) -> IngressInfo:
    """V1Ingress -> IngressInfo; only service backends carry a name and port."""
    spec = ing.spec
    rules = (spec.rules if spec else None) or []
    hosts = [r.host for r in rules if r.host]
    paths: list[IngressPath] = []
    for rule in rules:
        if not rule.http:
            continue
        for p in rule.http.paths or []:
            backend = p.backend.service if p.backend else None
            paths.append(
                IngressPath(
                    path=p.path or "",
                    path_type=p.path_type or "",
                    service_name=backend.name if backend else "",
                    service_port=(backend.port.number if backend and backend.port else None) or 0,
                )
            )
    tls = [
        IngressTLS(hosts=list(t.hosts or []), secret_name=t.secret_name or "")
        for t in (spec.tls if spec else None) or []
    ]
    return IngressInfo(
        name=ing.metadata.name,
        namespace=ing.metadata.namespace or "",
        created_time=_utc(ing.metadata.creation_timestamp),
        hosts=hosts,
        paths=paths,
        tls=tls,
        labels=dict(ing.metadata.labels or {}),
        annotations=dict(ing.metadata.annotations or {}),
    )


def _build_configmap(cm: Any) -> ConfigMapInfo:
    """V1ConfigMap -> ConfigMapInfo; binary data stays base64."""
    return ConfigMapInfo(
        name=cm.metadata.name,
        namespace=cm.metadata.namespace or "",
        created_time=_utc(cm.metadata.creation_timestamp),
        data=dict(cm.data or {}),
        binary_data={k: str(v) for k, v in (cm.binary_data or {}).items()},
        labels=dict(cm.metadata.labels or {}),
        annotations=dict(cm.metadata.annotations or {}),
    )


def _build_secret(secret: Any) -> SecretInfo:
    """V1Secret -> SecretInfo with sorted key names."""
    # Key names only; values never leave this function.
    return SecretInfo(
        name=secret.metadata.name,
        namespace=secret.metadata.namespace or "",
        created_time=_utc(secret.metadata.creation_timestamp),
        type=secret.type or "",
        data_keys=sorted((secret.data or {}).keys()),
        labels=dict(secret.metadata.labels or {}),
        annotations=dict(secret.metadata.annotations or {}),
    )


def _volume_source(spec: Any) -> str:
    """Name of the first volume source set on a PersistentVolumeSpec, else other."""
    for attr, label in _VOLUME_SOURCES:
        if getattr(spec, attr, None) is not None:
            return label
    return "other"


def _build_persistent_volume(pv: Any) -> PersistentVolumeInfo:
    """V1PersistentVolume -> PersistentVolumeInfo; claim_ref as namespace/name."""
    spec = pv.spec
    claim = spec.claim_ref if spec else None
    return PersistentVolumeInfo(
        name=pv.metadata.name,
        created_time=_utc(pv.metadata.creation_timestamp),
        capacity=_quantity(spec.capacity if spec else None, "storage"),
        access_modes=list((spec.access_modes if spec else None) or []),
        reclaim_policy=(spec.persistent_volume_reclaim_policy if spec else None) or "",
        storage_class=(spec.storage_class_name if spec else None) or "",
        volume_mode=(spec.volume_mode if spec else None) or "",
        status=(pv.status.phase if pv.status else None) or "",
        claim_ref=f"{claim.namespace}/{claim.name}" if claim else "",
        volume_source=_volume_source(spec),
        labels=dict(pv.metadata.labels or {}),
        annotations=dict(pv.metadata.annotations or {}),
    )


def _build_persistent_volume_claim(pvc: Any) -> PersistentVolumeClaimInfo:
    """V1PersistentVolumeClaim -> PersistentVolumeClaimInfo."""
    spec = pvc.spec
    resources = spec.resources if spec else None
    return PersistentVolumeClaimInfo(
        name=pvc.metadata.name,
        namespace=pvc.metadata.namespace or "",
        created_time=_utc(pvc.metadata.creation_timestamp),
        requested_size=_quantity(getattr(resources, "requests", None), "storage"),
        access_modes=list((spec.access_modes if spec else None) or []),
        storage_class=(spec.storage_class_name if spec else None) or "",
        volume_mode=(spec.volume_mode if spec else None) or "",
        status=(pvc.status.phase if pvc.status else None) or "",
        volume_name=(spec.volume_name if spec else None) or "",
        labels=dict(pvc.metadata.labels or {}),
        annotations=dict(pvc.metadata.annotations or {}),
    )


class ClusterCollector:
    """Collects a cluster-wide Snapshot of the nine tracked resource kinds."""

    def __init__(
        self,
        kubeconfig: str | None = None,
        context: str | None = None,
        page_size: int = DEFAULT_PAGE_SIZE,
        core_api: Any = None,
        apps_api: Any = None,
        networking_api: Any = None,
        version_api: Any = None,
        hooks: PipelineHooks | None = None,
    ) -> None:
        self.page_size = page_size
        self.hooks = hooks or NO_HOOKS
        if core_api is None or apps_api is None or networking_api is None:
            cfg = _load_kube_config(kubeconfig, context)
            api_client = client.ApiClient(cfg)
            core_api = core_api or client.CoreV1Api(api_client)
            apps_api = apps_api or client.AppsV1Api(api_client)
            networking_api = networking_api or client.NetworkingV1Api(api_client)
            version_api = version_api or client.VersionApi(api_client)
        self._core = core_api
        self._apps = apps_api
        self._networking = networking_api
        self._version = version_api

    def check_connection(self) -> str:
        """Return the API server version, raising CollectionError when unreachable."""
        if self._version is None:
            raise CollectionError("version", "no version API configured")
        try:
            info = self._version.get_code()
        except (ApiException, HTTPError) as e:
            raise CollectionError("version", _describe(e)) from e
        logger.info("Connected to Kubernetes API server %s", info.git_version)
        return info.git_version

    def _listings(self) -> list[tuple[ResourceKind, Callable[..., Any], Callable[[Any], Any]]]:
        return [
            (ResourceKind.DEPLOYMENTS, self._apps.list_deployment_for_all_namespaces, _build_deployment),
            (ResourceKind.PODS, self._core.list_pod_for_all_namespaces, _build_pod),
            (ResourceKind.NODES, self._core.list_node, _build_node),
            (ResourceKind.SERVICES, self._core.list_service_for_all_namespaces, _build_service),
            (ResourceKind.INGRESSES, self._networking.list_ingress_for_all_namespaces, _build_ingress),
            (ResourceKind.CONFIGMAPS, self._core.list_config_map_for_all_namespaces, _build_configmap),
            (ResourceKind.SECRETS, self._core.list_secret_for_all_namespaces, _build_secret),
            (ResourceKind.PERSISTENT_VOLUMES, self._core.list_persistent_volume, _build_persistent_volume),
            (
                ResourceKind.PERSISTENT_VOLUME_CLAIMS,
                self._core.list_persistent_volume_claim_for_all_namespaces,
                _build_persistent_volume_claim,
            ),
        ]

    def collect(self, cancel: threading.Event | None = None) -> Snapshot:
        """Collect a full snapshot. Any failed listing aborts the whole cycle."""
        timestamp = datetime.now(timezone.utc)
        logger.info("Starting cluster information collection")
        self.hooks.collection_started()

        collected: dict[str, list[Any]] = {}
        try:
            for kind, list_fn, build in self._listings():
                if cancel is not None and cancel.is_set():
                    raise CollectionError(kind.value, "collection cancelled")
                items = self._list_all(kind, list_fn)
                collected[kind.value] = self._build_all(kind, build, items)
                logger.info("Collected %s: %d", kind.value, len(items))
        except CollectionError as e:
            logger.error("Cluster collection aborted: %s", e)
            self.hooks.collection_failed(e)
            raise

        snapshot = Snapshot(timestamp=timestamp, **collected)
        self.hooks.collection_succeeded(snapshot.total_resources())
        logger.info("Cluster information collection completed (%d resources)", snapshot.total_resources())
        return snapshot

    def _build_all(self, kind: ResourceKind, build: Callable[[Any], Any], items: list[Any]) -> list[Any]:
        """Convert listed API objects; a malformed object fails the kind like a failed listing."""
        records = []
        for item in items:
            try:
                records.append(build(item))
            except (AttributeError, TypeError, ValueError) as e:
                name = getattr(getattr(item, "metadata", None), "name", None) or "<unnamed>"
                logger.warning("Failed to convert %s %s: %s", kind.value, name, e)
                raise CollectionError(kind.value, f"cannot convert {name}: {e}") from e
        return records

    def _list_all(self, kind: ResourceKind, list_fn: Callable[..., Any]) -> list[Any]:
        """Follow continue tokens until the listing is exhausted."""
        items: list[Any] = []
        token: str | None = None
        while True:
            kwargs: dict[str, Any] = {"limit": self.page_size}
            if token:
                kwargs["_continue"] = token
            try:
                page = list_fn(**kwargs)
            except (ApiException, HTTPError) as e:
                logger.warning("Failed to list %s: %s", kind.value, _describe(e))
                raise CollectionError(kind.value, _describe(e)) from e
            items.extend(page.items or [])
            token = page.metadata._continue if page.metadata else None
            if not token:
                return items


def _describe(e: Exception) -> str:
    if isinstance(e, ApiException):
        return f"{e.status} {e.reason}"
    return str(e)

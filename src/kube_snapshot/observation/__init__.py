"""Observation layer: collect Kubernetes cluster state into snapshots."""

from kube_snapshot.observation.collector import ClusterCollector
from kube_snapshot.observation.models import (
    ConfigMapInfo,
    DeploymentInfo,
    IngressInfo,
    NodeInfo,
    PersistentVolumeClaimInfo,
    PersistentVolumeInfo,
    PodInfo,
    ResourceKind,
    SecretInfo,
    ServiceInfo,
    Snapshot,
)

__all__ = [
    "ClusterCollector",
    "ConfigMapInfo",
    "DeploymentInfo",
    "IngressInfo",
    "NodeInfo",
    "PersistentVolumeClaimInfo",
    "PersistentVolumeInfo",
    "PodInfo",
    "ResourceKind",
    "SecretInfo",
    "ServiceInfo",
    "Snapshot",
]

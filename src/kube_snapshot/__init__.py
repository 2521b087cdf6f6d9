"""Periodic Kubernetes cluster snapshots: collect, transport, persist, retire."""

__version__ = "0.1.0"

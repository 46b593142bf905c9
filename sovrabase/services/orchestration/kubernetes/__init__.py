"""
Kubernetes Orchestration Module

This module contains the Kubernetes-specific building blocks:
- KubernetesClient: Low-level Kubernetes API interactions
- Manifest helpers: StatefulSet / Service manifests, labels and annotations

Per-tenant layout:
- StatefulSet sovrabase-db-<tenant> with one postgres replica
- PVC from the StatefulSet's volume claim template
- Service exposing 5432 (NodePort by default)

These are used internally by KubernetesOrchestrator.
"""

from .client import KubernetesClient, K8S_ERRORS
from .helpers import (
    MANAGED_SELECTOR,
    get_standard_labels,
    get_instance_selector,
    get_catalog_annotations,
    create_resource_requirements,
    create_statefulset_manifest,
    create_service_manifest,
    get_pod_name,
)

__all__ = [
    # Client
    "KubernetesClient",
    "K8S_ERRORS",
    # Labels & selectors
    "MANAGED_SELECTOR",
    "get_standard_labels",
    "get_instance_selector",
    "get_catalog_annotations",
    # Manifest helpers
    "create_resource_requirements",
    "create_statefulset_manifest",
    "create_service_manifest",
    "get_pod_name",
]

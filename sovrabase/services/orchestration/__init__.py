"""
Orchestration Module - Database Instance Lifecycle for Docker and Kubernetes

This module provides a unified interface for provisioning per-tenant
PostgreSQL instances across different backends.

Architecture:
- DeploymentMode enum: Defines supported backends
- BaseOrchestrator: Abstract interface all orchestrators implement
- OrchestratorFactory: Creates the appropriate orchestrator based on config
- DockerOrchestrator: Container runtime implementation
- KubernetesOrchestrator: Cluster (StatefulSet) implementation
- wait_until_ready: Backend-agnostic readiness polling

Usage:
    from sovrabase.services.orchestration import get_orchestrator, DeploymentMode

    # Get orchestrator based on config
    orchestrator = get_orchestrator()

    # Or get specific orchestrator
    orchestrator = get_orchestrator(DeploymentMode.KUBERNETES)

    # Use unified interface
    info = await orchestrator.create_instance("acme", options)
"""

from .deployment_mode import DeploymentMode
from .base import BaseOrchestrator, TenantLocks
from .readiness import wait_until_ready
from .factory import (
    get_orchestrator,
    OrchestratorFactory,
    get_deployment_mode,
)

__all__ = [
    # Enums
    "DeploymentMode",
    # Base class
    "BaseOrchestrator",
    "TenantLocks",
    # Readiness
    "wait_until_ready",
    # Factory
    "get_orchestrator",
    "OrchestratorFactory",
    "get_deployment_mode",
]

"""
Orchestrator Factory

Provides centralized creation and caching of orchestrators based on the
configured backend. The rest of the code only ever talks to the
BaseOrchestrator interface.
"""

import logging
from typing import Optional, Dict

from ...errors import ConfigurationError
from .deployment_mode import DeploymentMode
from .base import BaseOrchestrator

logger = logging.getLogger(__name__)

# Cached orchestrator instances (singleton pattern)
_orchestrators: Dict[DeploymentMode, BaseOrchestrator] = {}


class OrchestratorFactory:
    """
    Factory for creating orchestrator instances based on deployment mode.

    Uses lazy initialization and singleton pattern - orchestrators are
    created on first use and cached for subsequent calls.
    """

    @staticmethod
    def get_deployment_mode() -> DeploymentMode:
        """
        Get the configured backend.

        Raises:
            ConfigurationError: If the configured type is unknown
        """
        from ...config import get_settings
        settings = get_settings()
        return DeploymentMode.from_string(settings.orchestrator_type)

    @staticmethod
    def create_orchestrator(
        mode: Optional[DeploymentMode] = None,
        settings=None
    ) -> BaseOrchestrator:
        """
        Create or get cached orchestrator for the specified deployment mode.

        Explicit settings (e.g. loaded from a YAML file) build a fresh,
        uncached orchestrator; without them the cached one for the global
        settings is returned.

        Args:
            mode: Deployment mode (default: from settings)
            settings: Settings to build the backend with (default: get_settings())

        Returns:
            Orchestrator instance implementing BaseOrchestrator

        Raises:
            ConfigurationError: If the mode is unknown or the backend client
                cannot be configured
        """
        if mode is None:
            if settings is not None:
                mode = DeploymentMode.from_string(settings.orchestrator_type)
            else:
                mode = OrchestratorFactory.get_deployment_mode()
        elif isinstance(mode, str) and not isinstance(mode, DeploymentMode):
            mode = DeploymentMode.from_string(mode)

        # Return cached instance if available
        if settings is None and mode in _orchestrators:
            return _orchestrators[mode]

        orchestrator: BaseOrchestrator

        if mode == DeploymentMode.DOCKER:
            from .docker import DockerOrchestrator
            orchestrator = DockerOrchestrator(settings=settings)
            logger.info("[ORCHESTRATOR] Created Docker orchestrator")

        elif mode == DeploymentMode.KUBERNETES:
            from .kubernetes_orchestrator import KubernetesOrchestrator
            orchestrator = KubernetesOrchestrator(settings=settings)
            logger.info("[ORCHESTRATOR] Created Kubernetes orchestrator")

        else:
            raise ConfigurationError(f"Unsupported deployment mode: {mode}")

        if settings is None:
            _orchestrators[mode] = orchestrator

        return orchestrator

    @staticmethod
    def clear_cache() -> None:
        """Clear cached orchestrator instances (for testing)."""
        global _orchestrators
        _orchestrators = {}
        logger.info("[ORCHESTRATOR] Cleared orchestrator cache")


def get_orchestrator(mode: Optional[DeploymentMode] = None, settings=None) -> BaseOrchestrator:
    """
    Get an orchestrator instance.

    This is the main entry point for obtaining an orchestrator.

    Example:
        orchestrator = get_orchestrator()
        info = await orchestrator.create_instance("acme", InstanceOptions(memory="512m"))
    """
    return OrchestratorFactory.create_orchestrator(mode, settings=settings)


def get_deployment_mode() -> DeploymentMode:
    """Get the configured deployment mode."""
    return OrchestratorFactory.get_deployment_mode()

"""
Deployment Mode Enumeration

Defines the supported backends for database orchestration.
This enum provides type-safe backend selection throughout the codebase.
"""

from enum import Enum

from ...errors import ConfigurationError

# Accepted spellings for each backend
_ALIASES = {
    "container": "docker",
    "podman": "docker",
    "cluster": "kubernetes",
    "k8s": "kubernetes",
}


class DeploymentMode(str, Enum):
    """
    Supported orchestrator backends.

    Attributes:
        DOCKER: Container runtime (Docker or Podman engine API)
        KUBERNETES: Cluster scheduler (StatefulSet + Service per tenant)
    """

    DOCKER = "docker"
    KUBERNETES = "kubernetes"

    @classmethod
    def from_string(cls, value: str) -> "DeploymentMode":
        """
        Convert a configuration string to DeploymentMode.

        Args:
            value: "docker"/"container" or "kubernetes"/"cluster"

        Returns:
            DeploymentMode enum value

        Raises:
            ConfigurationError: If value names no supported backend
        """
        value_lower = (value or "").lower().strip()
        value_lower = _ALIASES.get(value_lower, value_lower)
        for mode in cls:
            if mode.value == value_lower:
                return mode
        valid_modes = ", ".join([m.value for m in cls])
        raise ConfigurationError(
            f"Unsupported orchestrator type: '{value}'. Valid types: {valid_modes}",
            operation="select_backend"
        )

    @property
    def is_docker(self) -> bool:
        """Check if this is the container runtime backend."""
        return self == DeploymentMode.DOCKER

    @property
    def is_kubernetes(self) -> bool:
        """Check if this is the cluster backend."""
        return self == DeploymentMode.KUBERNETES

    def __str__(self) -> str:
        return self.value

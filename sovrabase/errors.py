"""
Orchestrator Errors

Every failure raised by an orchestrator derives from OrchestratorError and
carries the tenant and the operation it happened in, so callers can log
and decide without parsing messages.

Taxonomy:
- InstanceConflictError: an instance already exists for the tenant
- InstanceNotFoundError: no instance exists for the tenant
- InfrastructureError: a backend call failed (network, permission, bad response)
- ReadinessTimeoutError: the instance did not become ready in time
- BackendNotImplementedError: the selected backend does not support the operation
- ConfigurationError: invalid backend configuration
- InvalidOptionsError: the request itself is malformed

Cancellation is not part of the taxonomy: a cancelled caller sees
asyncio.CancelledError unchanged.
"""

from typing import Optional


class OrchestratorError(Exception):
    """Base exception for database orchestration errors."""

    def __init__(
        self,
        message: str,
        tenant_id: Optional[str] = None,
        operation: Optional[str] = None
    ):
        super().__init__(message)
        self.message = message
        self.tenant_id = tenant_id
        self.operation = operation

    def __str__(self) -> str:
        context = []
        if self.operation:
            context.append(f"operation={self.operation}")
        if self.tenant_id is not None:
            context.append(f"tenant={self.tenant_id}")
        if context:
            return f"{self.message} ({', '.join(context)})"
        return self.message


class InstanceConflictError(OrchestratorError):
    """Raised when a database instance already exists for the tenant."""
    pass


class InstanceNotFoundError(OrchestratorError):
    """Raised when no database instance exists for the tenant."""
    pass


class InfrastructureError(OrchestratorError):
    """Raised when the container runtime or cluster API call fails."""
    pass


class PortExhaustedError(InfrastructureError):
    """Raised when every host port in the reserved range is taken."""
    pass


class ReadinessTimeoutError(OrchestratorError):
    """Raised when an instance does not accept connections before the deadline."""
    pass


class BackendNotImplementedError(OrchestratorError, NotImplementedError):
    """Raised when the selected backend does not support an operation."""
    pass


class ConfigurationError(OrchestratorError):
    """Raised when the orchestrator cannot be built from the configuration."""
    pass


class InvalidOptionsError(OrchestratorError, ValueError):
    """Raised when a tenant id or instance options are malformed."""
    pass

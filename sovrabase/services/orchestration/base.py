"""
Abstract Base Orchestrator

Defines the common interface that all database orchestrators must implement.
This ensures feature parity between Docker and Kubernetes deployments.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Dict, List, Optional

from ...errors import BackendNotImplementedError, InvalidOptionsError
from ...schemas import InstanceInfo, InstanceOptions
from ...utils.resource_limits import parse_cpus, parse_memory
from ...utils.resource_naming import generate_password, sanitize_db_name, validate_tenant_id
from .deployment_mode import DeploymentMode

logger = logging.getLogger(__name__)


class TenantLocks:
    """
    Per-tenant asyncio locks.

    Serializes lifecycle mutations for one tenant inside this process so the
    existence check and the backend create happen atomically. Locks are
    dropped once nobody holds or waits on them.
    """

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, tenant_id: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(tenant_id, asyncio.Lock())
        self._users[tenant_id] = self._users.get(tenant_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[tenant_id] -= 1
            if self._users[tenant_id] == 0:
                del self._users[tenant_id]
                del self._locks[tenant_id]

    def __contains__(self, tenant_id: str) -> bool:
        return tenant_id in self._locks


@dataclass
class ResolvedOptions:
    """InstanceOptions with defaults applied and limits translated."""
    postgres_version: str
    password: str
    port: Optional[int]
    database: str
    user: str
    memory_bytes: Optional[int] = None
    nano_cpus: Optional[int] = None


class BaseOrchestrator(ABC):
    """
    Abstract base class for database instance orchestration.

    All orchestrators (Docker, Kubernetes) must implement this interface
    to ensure consistent behavior across backends.

    This interface provides:
    - Instance lifecycle (create, delete)
    - Inspection (info, list, exists)
    - Optional stop/start of an existing instance

    Backends never retry on their own apart from the bounded readiness poll.
    """

    def __init__(self):
        self._tenant_locks = TenantLocks()

    @property
    @abstractmethod
    def deployment_mode(self) -> DeploymentMode:
        """Return the deployment mode this orchestrator handles."""
        pass

    # =========================================================================
    # INSTANCE LIFECYCLE
    # =========================================================================

    @abstractmethod
    async def create_instance(
        self,
        tenant_id: str,
        options: Optional[InstanceOptions] = None
    ) -> InstanceInfo:
        """
        Create and start a database instance for a tenant.

        Args:
            tenant_id: Tenant/project identifier
            options: Version, password, port and resource limits (all optional)

        Returns:
            InstanceInfo of the running instance

        Raises:
            InstanceConflictError: If the tenant already has an instance
            InfrastructureError: If a backend call fails
            ReadinessTimeoutError: If the database never became ready
            InvalidOptionsError: If the tenant id or options are malformed
        """
        pass

    @abstractmethod
    async def delete_instance(self, tenant_id: str) -> None:
        """
        Stop and remove a tenant's instance together with its storage.

        Raises:
            InstanceNotFoundError: If the tenant has no instance
            InfrastructureError: If a backend call fails
        """
        pass

    @abstractmethod
    async def get_instance_info(self, tenant_id: str) -> InstanceInfo:
        """
        Inspect a tenant's instance.

        Returns:
            InstanceInfo rebuilt from live backend state

        Raises:
            InstanceNotFoundError: If the tenant has no instance
            InfrastructureError: If a backend call fails
        """
        pass

    @abstractmethod
    async def list_instances(self) -> List[InstanceInfo]:
        """
        List every managed instance.

        Entries that cannot be inspected are logged and skipped.

        Raises:
            InfrastructureError: If the backend cannot be listed at all
        """
        pass

    @abstractmethod
    async def instance_exists(self, tenant_id: str) -> bool:
        """
        Check whether a tenant has an instance.

        Raises:
            InfrastructureError: If the backend lookup fails for any reason
                other than "not found"
        """
        pass

    # =========================================================================
    # OPTIONAL LIFECYCLE (default: unsupported)
    # =========================================================================

    async def stop_instance(self, tenant_id: str) -> None:
        """Stop a tenant's instance, keeping its data."""
        raise BackendNotImplementedError(
            f"stop_instance is not supported by the {self.deployment_mode} backend",
            tenant_id=tenant_id,
            operation="stop_instance"
        )

    async def start_instance(self, tenant_id: str) -> InstanceInfo:
        """Start a stopped instance and wait until it is ready."""
        raise BackendNotImplementedError(
            f"start_instance is not supported by the {self.deployment_mode} backend",
            tenant_id=tenant_id,
            operation="start_instance"
        )

    # =========================================================================
    # UTILITY METHODS (default implementations)
    # =========================================================================

    def tenant_lock(self, tenant_id: str):
        """Async context manager serializing mutations for one tenant."""
        return self._tenant_locks.hold(tenant_id)

    def resolve_options(
        self,
        tenant_id: str,
        options: Optional[InstanceOptions],
        default_version: str
    ) -> ResolvedOptions:
        """
        Apply defaults and translate resource limits.

        The port is left as given (None when unset); allocation is backend
        specific. Resource strings are parsed strictly.

        Raises:
            InvalidOptionsError: If the tenant id or a limit is malformed
        """
        validate_tenant_id(tenant_id)
        options = options or InstanceOptions()

        try:
            memory_bytes = parse_memory(options.memory, strict=True) if options.memory else None
            nano_cpus = parse_cpus(options.cpus, strict=True) if options.cpus else None
        except ValueError as e:
            raise InvalidOptionsError(str(e), tenant_id=tenant_id, operation="create_instance") from e

        db_name = sanitize_db_name(tenant_id)

        return ResolvedOptions(
            postgres_version=options.postgres_version or default_version,
            password=options.password or generate_password(tenant_id),
            port=options.port,
            database=db_name,
            user=db_name,
            memory_bytes=memory_bytes,
            nano_cpus=nano_cpus,
        )

"""
Docker Orchestrator

Container-runtime orchestration for tenant PostgreSQL instances.
Implements the BaseOrchestrator interface on the Docker engine API
(Docker or Podman with the Docker-compatible socket).

Catalog Architecture:
- One container per tenant: sovrabase-db-{tenant_id}
- Container labels are the only catalog (managed flag, tenant, version, created_at)
- Connection details are read back from the container's env and port bindings
- Data lives in the image's anonymous volume, removed with the container
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, List, Optional

import docker
from docker.errors import APIError, DockerException, NotFound
from requests.exceptions import RequestException

from ...errors import (
    InfrastructureError,
    InstanceConflictError,
    InstanceNotFoundError,
    OrchestratorError,
)
from ...schemas import InstanceInfo, InstanceOptions, InstanceStatus
from ...utils.port_allocator import collect_published_ports, find_available_port
from ...utils.resource_naming import (
    build_connection_string,
    get_instance_labels,
    get_instance_name,
    get_standard_labels,
    parse_env_vars,
)
from .base import BaseOrchestrator, ResolvedOptions
from .deployment_mode import DeploymentMode
from .readiness import wait_until_ready

logger = logging.getLogger(__name__)

POSTGRES_PORT = "5432/tcp"

LABEL_TENANT = "sovrabase.project_id"
LABEL_VERSION = "sovrabase.version"
LABEL_CREATED_AT = "sovrabase.created_at"

# Errors raised by the docker SDK, including transport failures it does not wrap
DOCKER_ERRORS = (DockerException, RequestException)


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an RFC3339 label value; None when missing or malformed."""
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        logger.debug(f"[DOCKER] Ignoring malformed timestamp label: {value}")
        return None


def _format_timestamp(moment: datetime) -> str:
    return moment.strftime("%Y-%m-%dT%H:%M:%SZ")


class DockerOrchestrator(BaseOrchestrator):
    """
    Docker orchestrator for per-tenant PostgreSQL containers.

    Features:
    - Image pull before create, no partial state on pull failure
    - Host port allocation across every container on the engine
    - Memory / CPU limits only when requested
    - Rollback (force remove) on start or readiness failure
    - Restart policy that survives host reboots
    """

    def __init__(self, client: Optional[docker.DockerClient] = None, settings=None):
        super().__init__()
        if settings is None:
            from ...config import get_settings
            settings = get_settings()
        self.settings = settings
        self._client = client

        logger.info(f"[DOCKER] Docker orchestrator initialized")
        logger.info(f"[DOCKER] Engine endpoint: {self.settings.docker_host or 'from environment'}")

    @property
    def deployment_mode(self) -> DeploymentMode:
        return DeploymentMode.DOCKER

    @property
    def client(self) -> docker.DockerClient:
        """Lazy-initialize the Docker client on first use."""
        if self._client is None:
            try:
                if self.settings.docker_host:
                    self._client = docker.DockerClient(base_url=self.settings.docker_host)
                else:
                    self._client = docker.from_env()
            except DOCKER_ERRORS as e:
                raise InfrastructureError(
                    f"Cannot connect to the container engine: {e}",
                    operation="connect"
                ) from e
        return self._client

    # =========================================================================
    # INTERNAL HELPERS
    # =========================================================================

    async def _get_container(self, tenant_id: str, operation: str) -> Optional[Any]:
        """Inspect a tenant's container. Returns None when it does not exist."""
        container_name = get_instance_name(tenant_id)
        try:
            return await asyncio.to_thread(self.client.containers.get, container_name)
        except NotFound:
            return None
        except DOCKER_ERRORS as e:
            raise InfrastructureError(
                f"Failed to inspect container {container_name}: {e}",
                tenant_id=tenant_id,
                operation=operation
            ) from e

    async def _allocate_port(self, tenant_id: str) -> int:
        """Pick the lowest free host port among every container on the engine."""
        try:
            containers = await asyncio.to_thread(
                self.client.containers.list,
                all=True,
                ignore_removed=True
            )
        except DOCKER_ERRORS as e:
            raise InfrastructureError(
                f"Failed to list containers for port allocation: {e}",
                tenant_id=tenant_id,
                operation="allocate_port"
            ) from e

        used_ports = collect_published_ports(containers)
        port = find_available_port(
            used_ports,
            start=self.settings.port_range_start,
            end=self.settings.port_range_end,
            strict=True
        )
        logger.debug(f"[DOCKER] Allocated host port {port} ({len(used_ports)} ports in use)")
        return port

    async def _pull_image(self, image: str, version: str, tenant_id: str) -> None:
        logger.info(f"[DOCKER] Pulling image {image}:{version}...")
        try:
            await asyncio.to_thread(self.client.images.pull, image, tag=version)
        except DOCKER_ERRORS as e:
            raise InfrastructureError(
                f"Failed to pull image {image}:{version}: {e}",
                tenant_id=tenant_id,
                operation="create_instance"
            ) from e

    async def _remove_quietly(self, container, tenant_id: str) -> None:
        """Force-remove a container with its volumes. Failures are logged, never raised."""
        try:
            await asyncio.to_thread(container.remove, v=True, force=True)
            logger.info(f"[DOCKER] Rolled back container for tenant {tenant_id}")
        except NotFound:
            pass
        except DOCKER_ERRORS as e:
            logger.warning(f"[DOCKER] Cleanup of container for tenant {tenant_id} failed: {e}")

    async def _rollback(self, container, tenant_id: str, pending: Optional[asyncio.Future] = None) -> None:
        """Remove a half-created container once the in-flight engine call has settled.

        When ``container`` is None the pending call is the create itself; its
        result (if it succeeded after all) is what gets removed.
        """
        if pending is not None:
            try:
                result = await pending
            except DOCKER_ERRORS:
                result = None
            if container is None:
                container = result
        if container is not None:
            await self._remove_quietly(container, tenant_id)

    async def _is_running(self, container) -> bool:
        await asyncio.to_thread(container.reload)
        state = (container.attrs or {}).get("State") or {}
        return bool(state.get("Running"))

    async def _probe_postgres(self, container, user: str) -> bool:
        """Run pg_isready over TCP inside the container.

        The image's init phase runs a temporary server on the unix socket
        only, so probing TCP avoids reporting ready before initdb finishes.
        """
        result = await asyncio.to_thread(
            container.exec_run,
            ["pg_isready", "-h", "127.0.0.1", "-p", "5432", "-U", user]
        )
        return result.exit_code == 0

    async def _wait_for_postgres(self, container, tenant_id: str, user: str) -> None:
        await wait_until_ready(
            is_running=lambda: self._is_running(container),
            probe=lambda: self._probe_postgres(container, user),
            timeout=self.settings.readiness_timeout_seconds,
            interval=self.settings.readiness_poll_interval_seconds,
            tenant_id=tenant_id
        )

    @staticmethod
    def _extract_host_port(attrs: dict) -> str:
        """Host port of the PostgreSQL binding, live first, then configured."""
        live = ((attrs.get("NetworkSettings") or {}).get("Ports") or {}).get(POSTGRES_PORT)
        configured = ((attrs.get("HostConfig") or {}).get("PortBindings") or {}).get(POSTGRES_PORT)
        for bindings in (live, configured):
            if bindings and bindings[0].get("HostPort"):
                return str(bindings[0]["HostPort"])
        return "unknown"

    def _build_info(
        self,
        tenant_id: str,
        container_id: str,
        resolved: ResolvedOptions,
        port: str,
        status: InstanceStatus,
        created_at: Optional[datetime]
    ) -> InstanceInfo:
        host = self.settings.database_host
        return InstanceInfo(
            tenant_id=tenant_id,
            instance_id=container_id,
            instance_name=get_instance_name(tenant_id),
            status=status,
            postgres_version=resolved.postgres_version,
            host=host,
            port=port,
            database=resolved.database,
            user=resolved.user,
            password=resolved.password,
            connection_string=build_connection_string(
                resolved.user, resolved.password, host, port, resolved.database
            ),
            created_at=created_at
        )

    def _info_from_container(self, tenant_id: str, container) -> InstanceInfo:
        attrs = container.attrs or {}
        config = attrs.get("Config") or {}
        labels = config.get("Labels") or {}
        env = parse_env_vars(config.get("Env"))
        running = bool((attrs.get("State") or {}).get("Running"))

        resolved = ResolvedOptions(
            postgres_version=labels.get(LABEL_VERSION, ""),
            password=env.get("POSTGRES_PASSWORD", ""),
            port=None,
            database=env.get("POSTGRES_DB", ""),
            user=env.get("POSTGRES_USER", ""),
        )
        return self._build_info(
            tenant_id,
            attrs.get("Id") or container.id,
            resolved,
            self._extract_host_port(attrs),
            InstanceStatus.RUNNING if running else InstanceStatus.STOPPED,
            _parse_timestamp(labels.get(LABEL_CREATED_AT))
        )

    # =========================================================================
    # INSTANCE LIFECYCLE
    # =========================================================================

    async def create_instance(
        self,
        tenant_id: str,
        options: Optional[InstanceOptions] = None
    ) -> InstanceInfo:
        """Pull, create, start and wait for a tenant's PostgreSQL container."""
        resolved = self.resolve_options(tenant_id, options, self.settings.default_postgres_version)

        async with self.tenant_lock(tenant_id):
            if await self.instance_exists(tenant_id):
                raise InstanceConflictError(
                    "A database instance already exists for this tenant",
                    tenant_id=tenant_id,
                    operation="create_instance"
                )

            if resolved.port is None:
                resolved.port = await self._allocate_port(tenant_id)

            container_name = get_instance_name(tenant_id)
            image = self.settings.postgres_image
            created_at = datetime.now(timezone.utc).replace(microsecond=0)

            await self._pull_image(image, resolved.postgres_version, tenant_id)

            create_kwargs = {
                "name": container_name,
                "detach": True,
                "environment": {
                    "POSTGRES_PASSWORD": resolved.password,
                    "POSTGRES_DB": resolved.database,
                    "POSTGRES_USER": resolved.user,
                },
                "ports": {POSTGRES_PORT: (self.settings.bind_address, resolved.port)},
                "labels": get_instance_labels(
                    tenant_id, resolved.postgres_version, _format_timestamp(created_at)
                ),
                "restart_policy": {"Name": "unless-stopped"},
            }
            # Absent limits mean "no limit", never zero
            if resolved.memory_bytes:
                create_kwargs["mem_limit"] = resolved.memory_bytes
            if resolved.nano_cpus:
                create_kwargs["nano_cpus"] = resolved.nano_cpus

            logger.info(f"[DOCKER] Creating container {container_name} on port {resolved.port}...")

            # Engine calls run as tasks that outlive a cancelled caller; rollback waits for them
            pending = asyncio.ensure_future(asyncio.to_thread(
                self.client.containers.create,
                f"{image}:{resolved.postgres_version}",
                **create_kwargs
            ))
            try:
                container = await asyncio.shield(pending)
            except asyncio.CancelledError:
                logger.error(f"[DOCKER] Creation of {container_name} cancelled")
                await asyncio.shield(self._rollback(None, tenant_id, pending))
                raise
            except APIError as e:
                if e.status_code == 409:
                    raise InstanceConflictError(
                        f"Container {container_name} already exists",
                        tenant_id=tenant_id,
                        operation="create_instance"
                    ) from e
                raise InfrastructureError(
                    f"Failed to create container {container_name}: {e}",
                    tenant_id=tenant_id,
                    operation="create_instance"
                ) from e
            except DOCKER_ERRORS as e:
                raise InfrastructureError(
                    f"Failed to create container {container_name}: {e}",
                    tenant_id=tenant_id,
                    operation="create_instance"
                ) from e

            try:
                pending = asyncio.ensure_future(asyncio.to_thread(container.start))
                try:
                    await asyncio.shield(pending)
                except DOCKER_ERRORS as e:
                    raise InfrastructureError(
                        f"Failed to start container {container_name}: {e}",
                        tenant_id=tenant_id,
                        operation="create_instance"
                    ) from e

                await self._wait_for_postgres(container, tenant_id, resolved.user)
            except (OrchestratorError, asyncio.CancelledError) as e:
                logger.error(f"[DOCKER] {container_name} did not become ready: {e!r}")
                await asyncio.shield(self._rollback(container, tenant_id, pending))
                raise

            logger.info(f"[DOCKER] ✅ Instance {container_name} is ready")

            return self._build_info(
                tenant_id,
                container.id,
                resolved,
                str(resolved.port),
                InstanceStatus.RUNNING,
                created_at
            )

    async def delete_instance(self, tenant_id: str) -> None:
        """Stop and remove a tenant's container and its volumes."""
        container_name = get_instance_name(tenant_id)

        async with self.tenant_lock(tenant_id):
            container = await self._get_container(tenant_id, "delete_instance")
            if container is None:
                raise InstanceNotFoundError(
                    "No database instance found for this tenant",
                    tenant_id=tenant_id,
                    operation="delete_instance"
                )

            logger.info(f"[DOCKER] Stopping container {container_name}...")
            try:
                await asyncio.to_thread(container.stop, timeout=self.settings.stop_timeout_seconds)
            except APIError as e:
                # 304 Not Modified: already stopped
                if e.status_code != 304 and "is not running" not in str(e):
                    raise InfrastructureError(
                        f"Failed to stop container {container_name}: {e}",
                        tenant_id=tenant_id,
                        operation="delete_instance"
                    ) from e
            except DOCKER_ERRORS as e:
                raise InfrastructureError(
                    f"Failed to stop container {container_name}: {e}",
                    tenant_id=tenant_id,
                    operation="delete_instance"
                ) from e

            try:
                await asyncio.to_thread(container.remove, v=True, force=True)
            except NotFound:
                logger.info(f"[DOCKER] Container {container_name} already removed")
            except DOCKER_ERRORS as e:
                raise InfrastructureError(
                    f"Failed to remove container {container_name}: {e}",
                    tenant_id=tenant_id,
                    operation="delete_instance"
                ) from e

            logger.info(f"[DOCKER] Deleted instance {container_name}")

    async def get_instance_info(self, tenant_id: str) -> InstanceInfo:
        """Rebuild a tenant's InstanceInfo from a fresh container inspection."""
        container = await self._get_container(tenant_id, "get_instance_info")
        if container is None:
            raise InstanceNotFoundError(
                "No database instance found for this tenant",
                tenant_id=tenant_id,
                operation="get_instance_info"
            )
        return self._info_from_container(tenant_id, container)

    async def list_instances(self) -> List[InstanceInfo]:
        """List every managed PostgreSQL container, skipping entries that fail inspection."""
        label_filters = [f"{key}={value}" for key, value in get_standard_labels().items()]
        try:
            containers = await asyncio.to_thread(
                self.client.containers.list,
                all=True,
                sparse=True,
                filters={"label": label_filters}
            )
        except DOCKER_ERRORS as e:
            raise InfrastructureError(
                f"Failed to list containers: {e}",
                operation="list_instances"
            ) from e

        instances: List[InstanceInfo] = []
        for container in containers:
            attrs = container.attrs or {}
            labels = attrs.get("Labels") or (attrs.get("Config") or {}).get("Labels") or {}
            tenant_id = labels.get(LABEL_TENANT)
            if not tenant_id:
                continue

            try:
                instances.append(await self.get_instance_info(tenant_id))
            except OrchestratorError as e:
                logger.warning(f"[DOCKER] Skipping tenant {tenant_id}: {e}")

        return instances

    async def instance_exists(self, tenant_id: str) -> bool:
        container = await self._get_container(tenant_id, "instance_exists")
        return container is not None

    # =========================================================================
    # OPTIONAL LIFECYCLE
    # =========================================================================

    async def stop_instance(self, tenant_id: str) -> None:
        """Stop a tenant's container, keeping its volume."""
        container_name = get_instance_name(tenant_id)

        async with self.tenant_lock(tenant_id):
            container = await self._get_container(tenant_id, "stop_instance")
            if container is None:
                raise InstanceNotFoundError(
                    "No database instance found for this tenant",
                    tenant_id=tenant_id,
                    operation="stop_instance"
                )
            try:
                await asyncio.to_thread(container.stop, timeout=self.settings.stop_timeout_seconds)
            except APIError as e:
                if e.status_code != 304 and "is not running" not in str(e):
                    raise InfrastructureError(
                        f"Failed to stop container {container_name}: {e}",
                        tenant_id=tenant_id,
                        operation="stop_instance"
                    ) from e
            except DOCKER_ERRORS as e:
                raise InfrastructureError(
                    f"Failed to stop container {container_name}: {e}",
                    tenant_id=tenant_id,
                    operation="stop_instance"
                ) from e

            logger.info(f"[DOCKER] Stopped instance {container_name}")

    async def start_instance(self, tenant_id: str) -> InstanceInfo:
        """Start a stopped container and wait until PostgreSQL accepts connections."""
        container_name = get_instance_name(tenant_id)

        async with self.tenant_lock(tenant_id):
            container = await self._get_container(tenant_id, "start_instance")
            if container is None:
                raise InstanceNotFoundError(
                    "No database instance found for this tenant",
                    tenant_id=tenant_id,
                    operation="start_instance"
                )
            try:
                await asyncio.to_thread(container.start)
            except DOCKER_ERRORS as e:
                raise InfrastructureError(
                    f"Failed to start container {container_name}: {e}",
                    tenant_id=tenant_id,
                    operation="start_instance"
                ) from e

            user = parse_env_vars(((container.attrs or {}).get("Config") or {}).get("Env")).get(
                "POSTGRES_USER", "postgres"
            )
            await self._wait_for_postgres(container, tenant_id, user)

            logger.info(f"[DOCKER] Started instance {container_name}")

        return await self.get_instance_info(tenant_id)

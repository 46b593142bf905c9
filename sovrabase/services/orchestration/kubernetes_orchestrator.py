"""
Kubernetes Orchestrator

Cluster-scheduler orchestration for tenant PostgreSQL instances.
Implements the BaseOrchestrator interface on Kubernetes.

Architecture:
- StatefulSet per tenant (one replica, PVC from volume claim template)
- Service per tenant exposing 5432 (NodePort by default)
- Labels select managed instances; annotations carry tenant id, version
  and created_at, so listing never needs a side index
- Any failure during creation removes the StatefulSet, Service and PVCs
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional

from kubernetes.client.rest import ApiException

from ...errors import (
    InfrastructureError,
    InstanceConflictError,
    InstanceNotFoundError,
    OrchestratorError,
)
from ...schemas import InstanceInfo, InstanceOptions, InstanceStatus
from ...utils.resource_limits import to_k8s_cpu, to_k8s_memory
from ...utils.resource_naming import build_connection_string, get_k8s_resource_name
from .base import BaseOrchestrator
from .deployment_mode import DeploymentMode
from .kubernetes import (
    K8S_ERRORS,
    KubernetesClient,
    MANAGED_SELECTOR,
    create_resource_requirements,
    create_service_manifest,
    create_statefulset_manifest,
    get_instance_selector,
    get_pod_name,
)
from .kubernetes.helpers import (
    ANNOTATION_CREATED_AT,
    ANNOTATION_TENANT,
    ANNOTATION_VERSION,
    POSTGRES_CONTAINER,
    POSTGRES_PORT,
)
from .readiness import wait_until_ready

logger = logging.getLogger(__name__)

# Container waiting reasons that never resolve on their own
FATAL_WAITING_REASONS = {
    "ErrImagePull",
    "ImagePullBackOff",
    "InvalidImageName",
    "CreateContainerConfigError",
    "CreateContainerError",
}


class KubernetesOrchestrator(BaseOrchestrator):
    """
    Kubernetes orchestrator for per-tenant PostgreSQL StatefulSets.

    Same contract and invariants as the Docker backend: existence check
    before create, metadata-based catalog, storage removed on delete.
    """

    def __init__(self, k8s_client: Optional[KubernetesClient] = None, settings=None):
        super().__init__()
        if settings is None:
            from ...config import get_settings
            settings = get_settings()
        self.settings = settings
        self.k8s = k8s_client or KubernetesClient(self.settings)

        logger.info(f"[K8S] Kubernetes orchestrator initialized (namespace: {self.k8s.namespace})")

    @property
    def deployment_mode(self) -> DeploymentMode:
        return DeploymentMode.KUBERNETES

    # =========================================================================
    # INTERNAL HELPERS
    # =========================================================================

    def _infrastructure_error(self, message: str, error: Exception, tenant_id: Optional[str], operation: str):
        reason = getattr(error, "reason", None) or str(error)
        return InfrastructureError(f"{message}: {reason}", tenant_id=tenant_id, operation=operation)

    def _requested_node_port(self, port: Optional[int]) -> Optional[int]:
        if self.settings.k8s_service_type != "NodePort" or port is None:
            return None
        if self.settings.k8s_node_port_min <= port <= self.settings.k8s_node_port_max:
            return port
        logger.info(
            f"[K8S] Port {port} is outside the NodePort range "
            f"{self.settings.k8s_node_port_min}-{self.settings.k8s_node_port_max}, cluster will assign one"
        )
        return None

    async def _is_running(self, name: str) -> bool:
        """False once the pod has terminated; raises on unrecoverable container states."""
        pod = await self.k8s.read_pod(get_pod_name(name))
        if pod is None or pod.status is None:
            # Not scheduled yet
            return True

        if pod.status.phase in ("Failed", "Succeeded"):
            return False

        for status in pod.status.container_statuses or []:
            waiting = status.state.waiting if status.state else None
            if waiting and waiting.reason in FATAL_WAITING_REASONS:
                raise InfrastructureError(
                    f"Pod {pod.metadata.name} cannot start: {waiting.reason} {waiting.message or ''}".strip(),
                    operation="wait_until_ready"
                )
        return True

    async def _probe_postgres(self, name: str, user: str) -> bool:
        pod = await self.k8s.read_pod(get_pod_name(name))
        if pod is None or pod.status is None or pod.status.phase != "Running":
            return False
        exit_code = await self.k8s.exec_in_pod(
            get_pod_name(name),
            POSTGRES_CONTAINER,
            ["pg_isready", "-h", "127.0.0.1", "-p", str(POSTGRES_PORT), "-U", user]
        )
        return exit_code == 0

    async def _wait_for_postgres(self, name: str, tenant_id: str, user: str) -> None:
        await wait_until_ready(
            is_running=lambda: self._is_running(name),
            probe=lambda: self._probe_postgres(name, user),
            timeout=self.settings.readiness_timeout_seconds,
            interval=self.settings.readiness_poll_interval_seconds,
            tenant_id=tenant_id
        )

    async def _remove_resources(self, name: str) -> None:
        """Delete StatefulSet, Service and PVCs. Raises on the first failure."""
        await self.k8s.delete_statefulset(name)
        await self.k8s.delete_service(name)
        await self.k8s.delete_pvcs(get_instance_selector(name))

    async def _remove_quietly(self, name: str, tenant_id: str) -> None:
        try:
            await self._remove_resources(name)
            logger.info(f"[K8S] Rolled back instance {name} for tenant {tenant_id}")
        except K8S_ERRORS as e:
            logger.warning(f"[K8S] Cleanup of {name} for tenant {tenant_id} failed: {e}")

    async def _rollback(self, name: str, tenant_id: str, pending=None, created: bool = True) -> None:
        """
        Remove a half-created instance once the in-flight API call has settled.

        Args:
            pending: Task of the API call the caller stopped waiting on
            created: Whether the StatefulSet is already known to exist. When
                False, removal only happens if ``pending`` (the StatefulSet
                create) succeeded after all.
        """
        if pending is not None:
            try:
                await pending
                created = True
            except K8S_ERRORS:
                pass
        if created:
            await self._remove_quietly(name, tenant_id)

    async def _ensure_namespace(self, tenant_id: str) -> None:
        try:
            await self.k8s.ensure_namespace()
        except K8S_ERRORS as e:
            raise self._infrastructure_error(
                f"Failed to prepare namespace {self.k8s.namespace}", e, tenant_id, "create_instance"
            ) from e

    def _resolve_endpoint(self, name: str, service) -> tuple:
        """Host and port clients should connect to."""
        if service is not None and service.spec is not None:
            ports = service.spec.ports or []
            if service.spec.type == "NodePort" and ports and ports[0].node_port:
                return self.settings.database_host, str(ports[0].node_port)
            if ports:
                return f"{name}.{self.k8s.namespace}.svc", str(ports[0].port)
        return self.settings.database_host, "unknown"

    def _info_from_objects(self, tenant_id: str, statefulset, service) -> InstanceInfo:
        name = statefulset.metadata.name
        annotations: Dict[str, str] = statefulset.metadata.annotations or {}

        env: Dict[str, str] = {}
        containers = statefulset.spec.template.spec.containers if statefulset.spec else []
        for container in containers or []:
            if container.name == POSTGRES_CONTAINER:
                env = {var.name: var.value for var in container.env or [] if var.value is not None}

        ready = (statefulset.status.ready_replicas or 0) if statefulset.status else 0
        host, port = self._resolve_endpoint(name, service)

        database = env.get("POSTGRES_DB", "")
        user = env.get("POSTGRES_USER", "")
        password = env.get("POSTGRES_PASSWORD", "")

        created_at = None
        if annotations.get(ANNOTATION_CREATED_AT):
            try:
                created_at = datetime.fromisoformat(annotations[ANNOTATION_CREATED_AT].replace("Z", "+00:00"))
            except ValueError:
                logger.debug(f"[K8S] Ignoring malformed created-at on {name}")

        return InstanceInfo(
            tenant_id=tenant_id,
            instance_id=statefulset.metadata.uid or name,
            instance_name=name,
            status=InstanceStatus.RUNNING if ready >= 1 else InstanceStatus.STOPPED,
            postgres_version=annotations.get(ANNOTATION_VERSION, ""),
            host=host,
            port=port,
            database=database,
            user=user,
            password=password,
            connection_string=build_connection_string(user, password, host, port, database),
            created_at=created_at
        )

    # =========================================================================
    # INSTANCE LIFECYCLE
    # =========================================================================

    async def create_instance(
        self,
        tenant_id: str,
        options: Optional[InstanceOptions] = None
    ) -> InstanceInfo:
        """Create the StatefulSet and Service for a tenant and wait for PostgreSQL."""
        resolved = self.resolve_options(tenant_id, options, self.settings.default_postgres_version)
        name = get_k8s_resource_name(tenant_id)

        async with self.tenant_lock(tenant_id):
            if await self.instance_exists(tenant_id):
                raise InstanceConflictError(
                    "A database instance already exists for this tenant",
                    tenant_id=tenant_id,
                    operation="create_instance"
                )

            created_at = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
            resources = create_resource_requirements(
                memory=to_k8s_memory(resolved.memory_bytes) if resolved.memory_bytes else None,
                cpu=to_k8s_cpu(resolved.nano_cpus) if resolved.nano_cpus else None
            )
            statefulset = create_statefulset_manifest(
                name=name,
                namespace=self.k8s.namespace,
                tenant_id=tenant_id,
                image=self.settings.postgres_image,
                version=resolved.postgres_version,
                created_at=created_at,
                env={
                    "POSTGRES_PASSWORD": resolved.password,
                    "POSTGRES_DB": resolved.database,
                    "POSTGRES_USER": resolved.user,
                },
                resources=resources,
                storage_class=self.settings.k8s_storage_class,
                storage_size=self.settings.k8s_pvc_size
            )
            service = create_service_manifest(
                name=name,
                namespace=self.k8s.namespace,
                tenant_id=tenant_id,
                service_type=self.settings.k8s_service_type,
                node_port=self._requested_node_port(resolved.port)
            )

            logger.info(f"[K8S] Creating instance {name} for tenant {tenant_id}...")

            await self._ensure_namespace(tenant_id)

            # API calls run as tasks that outlive a cancelled caller; rollback waits for them
            pending = asyncio.ensure_future(self.k8s.create_statefulset(statefulset))
            try:
                created_statefulset = await asyncio.shield(pending)
            except asyncio.CancelledError:
                logger.error(f"[K8S] Creation of {name} cancelled")
                await asyncio.shield(self._rollback(name, tenant_id, pending, created=False))
                raise
            except ApiException as e:
                if e.status == 409:
                    raise InstanceConflictError(
                        f"StatefulSet {name} already exists",
                        tenant_id=tenant_id,
                        operation="create_instance"
                    ) from e
                raise self._infrastructure_error(
                    f"Failed to create StatefulSet {name}", e, tenant_id, "create_instance"
                ) from e
            except K8S_ERRORS as e:
                raise self._infrastructure_error(
                    f"Failed to create StatefulSet {name}", e, tenant_id, "create_instance"
                ) from e

            pending = asyncio.ensure_future(self.k8s.create_service(service))
            try:
                created_service = await asyncio.shield(pending)
                await self._wait_for_postgres(name, tenant_id, resolved.user)
            except (OrchestratorError, asyncio.CancelledError) as e:
                logger.error(f"[K8S] Instance {name} did not become ready: {e!r}")
                await asyncio.shield(self._rollback(name, tenant_id, pending))
                raise
            except K8S_ERRORS as e:
                logger.error(f"[K8S] Failed to provision {name}: {e}")
                await asyncio.shield(self._rollback(name, tenant_id, pending))
                raise self._infrastructure_error(
                    f"Failed to provision instance {name}", e, tenant_id, "create_instance"
                ) from e

            logger.info(f"[K8S] ✅ Instance {name} is ready")

            host, port = self._resolve_endpoint(name, created_service)
            return InstanceInfo(
                tenant_id=tenant_id,
                instance_id=created_statefulset.metadata.uid or name,
                instance_name=name,
                status=InstanceStatus.RUNNING,
                postgres_version=resolved.postgres_version,
                host=host,
                port=port,
                database=resolved.database,
                user=resolved.user,
                password=resolved.password,
                connection_string=build_connection_string(
                    resolved.user, resolved.password, host, port, resolved.database
                ),
                created_at=datetime.fromisoformat(created_at.replace("Z", "+00:00"))
            )

    async def delete_instance(self, tenant_id: str) -> None:
        """Delete the tenant's StatefulSet, Service and PVCs."""
        name = get_k8s_resource_name(tenant_id)

        async with self.tenant_lock(tenant_id):
            if not await self.instance_exists(tenant_id):
                raise InstanceNotFoundError(
                    "No database instance found for this tenant",
                    tenant_id=tenant_id,
                    operation="delete_instance"
                )

            try:
                await self._remove_resources(name)
            except K8S_ERRORS as e:
                raise self._infrastructure_error(
                    f"Failed to delete instance {name}", e, tenant_id, "delete_instance"
                ) from e

            logger.info(f"[K8S] Deleted instance {name}")

    async def get_instance_info(self, tenant_id: str) -> InstanceInfo:
        name = get_k8s_resource_name(tenant_id)
        try:
            statefulset = await self.k8s.read_statefulset(name)
            if statefulset is None:
                raise InstanceNotFoundError(
                    "No database instance found for this tenant",
                    tenant_id=tenant_id,
                    operation="get_instance_info"
                )
            service = await self.k8s.read_service(name)
        except K8S_ERRORS as e:
            raise self._infrastructure_error(
                f"Failed to inspect instance {name}", e, tenant_id, "get_instance_info"
            ) from e

        return self._info_from_objects(tenant_id, statefulset, service)

    async def list_instances(self) -> List[InstanceInfo]:
        try:
            statefulsets = await self.k8s.list_statefulsets(MANAGED_SELECTOR)
        except K8S_ERRORS as e:
            raise self._infrastructure_error(
                "Failed to list StatefulSets", e, None, "list_instances"
            ) from e

        instances: List[InstanceInfo] = []
        for statefulset in statefulsets:
            tenant_id = (statefulset.metadata.annotations or {}).get(ANNOTATION_TENANT)
            if not tenant_id:
                continue

            try:
                instances.append(await self.get_instance_info(tenant_id))
            except OrchestratorError as e:
                logger.warning(f"[K8S] Skipping tenant {tenant_id}: {e}")

        return instances

    async def instance_exists(self, tenant_id: str) -> bool:
        name = get_k8s_resource_name(tenant_id)
        try:
            return await self.k8s.read_statefulset(name) is not None
        except K8S_ERRORS as e:
            raise self._infrastructure_error(
                f"Failed to look up StatefulSet {name}", e, tenant_id, "instance_exists"
            ) from e

    # =========================================================================
    # OPTIONAL LIFECYCLE
    # =========================================================================

    async def stop_instance(self, tenant_id: str) -> None:
        """Scale the tenant's StatefulSet to zero, keeping its PVC."""
        name = get_k8s_resource_name(tenant_id)

        async with self.tenant_lock(tenant_id):
            if not await self.instance_exists(tenant_id):
                raise InstanceNotFoundError(
                    "No database instance found for this tenant",
                    tenant_id=tenant_id,
                    operation="stop_instance"
                )
            try:
                await self.k8s.scale_statefulset(name, 0)
            except K8S_ERRORS as e:
                raise self._infrastructure_error(
                    f"Failed to stop instance {name}", e, tenant_id, "stop_instance"
                ) from e

    async def start_instance(self, tenant_id: str) -> InstanceInfo:
        """Scale the tenant's StatefulSet back to one replica and wait for PostgreSQL."""
        name = get_k8s_resource_name(tenant_id)

        async with self.tenant_lock(tenant_id):
            info = await self.get_instance_info(tenant_id)
            try:
                await self.k8s.scale_statefulset(name, 1)
                await self._wait_for_postgres(name, tenant_id, info.user or "postgres")
            except K8S_ERRORS as e:
                raise self._infrastructure_error(
                    f"Failed to start instance {name}", e, tenant_id, "start_instance"
                ) from e

        return await self.get_instance_info(tenant_id)

"""
Kubernetes Client for Tenant Database Workloads

Thin async wrapper around the Kubernetes API for the objects a tenant
database is made of: a StatefulSet, a Service, and the PVCs created from the
StatefulSet's volume claim template.

Every blocking client call runs in a worker thread. ApiException (and
transport errors) are raised unchanged; reads return None on 404 so callers
can tell "absent" from "failed".
"""

import asyncio
import logging
from typing import List, Optional

from kubernetes import client, config
from kubernetes.client.rest import ApiException
from kubernetes.stream import stream
from urllib3.exceptions import HTTPError as TransportError

from ....errors import ConfigurationError

logger = logging.getLogger(__name__)

# Errors raised by the kubernetes client, including transport failures
K8S_ERRORS = (ApiException, TransportError)


class KubernetesClient:
    """
    Manages Kubernetes resources for tenant database instances.

    Configuration, in order of preference:
    1. Explicit API endpoint + bearer token (settings.kube_api / kube_token)
    2. In-cluster service account
    3. Local kubeconfig (development)
    """

    def __init__(self, settings=None):
        """Initialize Kubernetes client from settings, in-cluster config or kubeconfig."""
        if settings is None:
            from ....config import get_settings
            settings = get_settings()

        self.settings = settings

        if settings.kube_api:
            configuration = client.Configuration()
            configuration.host = settings.kube_api
            configuration.verify_ssl = settings.kube_verify_ssl
            if settings.kube_token:
                configuration.api_key = {"authorization": settings.kube_token}
                configuration.api_key_prefix = {"authorization": "Bearer"}
            logger.info(f"[K8S] Using API endpoint {settings.kube_api}")
        else:
            try:
                # Try in-cluster config first (for production)
                config.load_incluster_config()
                logger.info("[K8S] Loaded in-cluster Kubernetes configuration")
            except config.ConfigException:
                try:
                    # Fall back to kubeconfig (for development)
                    config.load_kube_config()
                    logger.info("[K8S] Loaded kubeconfig for development")
                except config.ConfigException as e:
                    logger.error(f"[K8S] Failed to load Kubernetes config: {e}")
                    raise ConfigurationError(
                        "Cannot load Kubernetes configuration",
                        operation="connect"
                    ) from e
            configuration = client.Configuration.get_default_copy()

        self._configuration = configuration
        api_client = client.ApiClient(configuration)
        self.apps_v1 = client.AppsV1Api(api_client)
        self.core_v1 = client.CoreV1Api(api_client)

        self.namespace = settings.namespace

        logger.info(f"[K8S] Kubernetes client initialized - namespace: {self.namespace}")

    # =========================================================================
    # NAMESPACE MANAGEMENT
    # =========================================================================

    async def ensure_namespace(self) -> None:
        """Create the database namespace if it doesn't exist."""
        try:
            await asyncio.to_thread(self.core_v1.read_namespace, name=self.namespace)
            logger.debug(f"[K8S] Namespace {self.namespace} already exists")
        except ApiException as e:
            if e.status != 404:
                raise
            namespace_manifest = client.V1Namespace(
                metadata=client.V1ObjectMeta(
                    name=self.namespace,
                    labels={"app.kubernetes.io/managed-by": "sovrabase"}
                )
            )
            try:
                await asyncio.to_thread(self.core_v1.create_namespace, body=namespace_manifest)
                logger.info(f"[K8S] ✅ Created namespace: {self.namespace}")
            except ApiException as create_error:
                if create_error.status != 409:
                    raise

    # =========================================================================
    # STATEFULSET MANAGEMENT
    # =========================================================================

    async def read_statefulset(self, name: str) -> Optional[client.V1StatefulSet]:
        try:
            return await asyncio.to_thread(
                self.apps_v1.read_namespaced_stateful_set,
                name=name,
                namespace=self.namespace
            )
        except ApiException as e:
            if e.status == 404:
                return None
            raise

    async def create_statefulset(self, statefulset: client.V1StatefulSet) -> client.V1StatefulSet:
        """Create a StatefulSet. A 409 is raised to the caller, never patched over."""
        created = await asyncio.to_thread(
            self.apps_v1.create_namespaced_stateful_set,
            namespace=self.namespace,
            body=statefulset
        )
        logger.info(f"[K8S] ✅ Created StatefulSet: {statefulset.metadata.name}")
        return created

    async def list_statefulsets(self, label_selector: str) -> List[client.V1StatefulSet]:
        result = await asyncio.to_thread(
            self.apps_v1.list_namespaced_stateful_set,
            namespace=self.namespace,
            label_selector=label_selector
        )
        return list(result.items or [])

    async def scale_statefulset(self, name: str, replicas: int) -> None:
        await asyncio.to_thread(
            self.apps_v1.patch_namespaced_stateful_set_scale,
            name=name,
            namespace=self.namespace,
            body={"spec": {"replicas": replicas}}
        )
        action = "stopped" if replicas == 0 else "started"
        logger.info(f"[K8S] StatefulSet {name} {action} (replicas: {replicas})")

    async def delete_statefulset(self, name: str) -> None:
        """Delete a StatefulSet and its pods. Absent is not an error."""
        try:
            await asyncio.to_thread(
                self.apps_v1.delete_namespaced_stateful_set,
                name=name,
                namespace=self.namespace,
                body=client.V1DeleteOptions(propagation_policy="Foreground")
            )
            logger.info(f"[K8S] Deleted StatefulSet: {name}")
        except ApiException as e:
            if e.status != 404:
                raise

    # =========================================================================
    # SERVICE MANAGEMENT
    # =========================================================================

    async def read_service(self, name: str) -> Optional[client.V1Service]:
        try:
            return await asyncio.to_thread(
                self.core_v1.read_namespaced_service,
                name=name,
                namespace=self.namespace
            )
        except ApiException as e:
            if e.status == 404:
                return None
            raise

    async def create_service(self, service: client.V1Service) -> client.V1Service:
        created = await asyncio.to_thread(
            self.core_v1.create_namespaced_service,
            namespace=self.namespace,
            body=service
        )
        logger.info(f"[K8S] ✅ Created service: {service.metadata.name}")
        return created

    async def delete_service(self, name: str) -> None:
        try:
            await asyncio.to_thread(
                self.core_v1.delete_namespaced_service,
                name=name,
                namespace=self.namespace
            )
            logger.info(f"[K8S] Deleted service: {name}")
        except ApiException as e:
            if e.status != 404:
                raise

    # =========================================================================
    # PVC MANAGEMENT
    # =========================================================================

    async def delete_pvcs(self, label_selector: str) -> None:
        """Delete every PVC matching the selector (StatefulSets leave them behind)."""
        await asyncio.to_thread(
            self.core_v1.delete_collection_namespaced_persistent_volume_claim,
            namespace=self.namespace,
            label_selector=label_selector
        )
        logger.info(f"[K8S] Deleted PVCs matching {label_selector}")

    # =========================================================================
    # POD OPERATIONS
    # =========================================================================

    async def read_pod(self, name: str) -> Optional[client.V1Pod]:
        try:
            return await asyncio.to_thread(
                self.core_v1.read_namespaced_pod,
                name=name,
                namespace=self.namespace
            )
        except ApiException as e:
            if e.status == 404:
                return None
            raise

    def _get_stream_client(self) -> client.CoreV1Api:
        """
        Create a fresh CoreV1Api client for stream operations.

        stream() patches the api_client request method to use WebSocket;
        a dedicated client keeps concurrent regular calls on HTTP.
        """
        return client.CoreV1Api(client.ApiClient(self._configuration))

    def _exec_in_pod(
        self,
        pod_name: str,
        container_name: str,
        command: List[str],
        timeout: int
    ) -> Optional[int]:
        """Run a command in a pod and return its exit code."""
        logger.debug(f"[K8S:EXEC] Executing in pod {pod_name}: {' '.join(command[:3])}...")

        resp = stream(
            self._get_stream_client().connect_get_namespaced_pod_exec,
            pod_name,
            self.namespace,
            container=container_name,
            command=command,
            stderr=True,
            stdin=False,
            stdout=True,
            tty=False,
            _preload_content=False,
            _request_timeout=timeout
        )
        try:
            resp.run_forever(timeout=timeout)
            return resp.returncode
        finally:
            resp.close()

    async def exec_in_pod(
        self,
        pod_name: str,
        container_name: str,
        command: List[str],
        timeout: int = 10
    ) -> Optional[int]:
        return await asyncio.to_thread(
            self._exec_in_pod, pod_name, container_name, command, timeout
        )

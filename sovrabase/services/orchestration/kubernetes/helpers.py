"""
Kubernetes manifest helpers for tenant databases.

Each tenant gets:
- StatefulSet (1 replica) running postgres, with a volume claim template
- Service exposing 5432 (NodePort by default)

Catalog metadata:
- Labels (selectable): managed flag, workload type, instance name
- Annotations (free-form values): tenant id, version, created_at
"""

from kubernetes import client
from typing import Dict, Optional

POSTGRES_CONTAINER = "postgres"
POSTGRES_PORT = 5432
DATA_VOLUME = "data"
PGDATA_PATH = "/var/lib/postgresql/data"

LABEL_MANAGED = "sovrabase.io/managed"
LABEL_TYPE = "sovrabase.io/type"
LABEL_INSTANCE = "sovrabase.io/instance"

ANNOTATION_TENANT = "sovrabase.io/project-id"
ANNOTATION_VERSION = "sovrabase.io/version"
ANNOTATION_CREATED_AT = "sovrabase.io/created-at"

MANAGED_SELECTOR = f"{LABEL_MANAGED}=true,{LABEL_TYPE}=postgres"


def get_standard_labels(resource_name: str) -> Dict[str, str]:
    """
    Get labels for a tenant's StatefulSet, pods, Service and PVCs.

    Args:
        resource_name: DNS-safe instance name

    Returns:
        Dict of labels
    """
    return {
        "app.kubernetes.io/managed-by": "sovrabase",
        "app.kubernetes.io/name": "postgres",
        LABEL_MANAGED: "true",
        LABEL_TYPE: "postgres",
        LABEL_INSTANCE: resource_name,
    }


def get_instance_selector(resource_name: str) -> str:
    """Label selector matching one tenant's objects."""
    return f"{LABEL_INSTANCE}={resource_name}"


def get_catalog_annotations(tenant_id: str, version: str, created_at: str) -> Dict[str, str]:
    return {
        ANNOTATION_TENANT: tenant_id,
        ANNOTATION_VERSION: version,
        ANNOTATION_CREATED_AT: created_at,
    }


def create_resource_requirements(
    memory: Optional[str] = None,
    cpu: Optional[str] = None
) -> Optional[client.V1ResourceRequirements]:
    """
    Build container resources. Limits equal requests so the scheduler
    reserves what the tenant asked for. None when no limit was requested.
    """
    quantities = {}
    if memory:
        quantities["memory"] = memory
    if cpu:
        quantities["cpu"] = cpu
    if not quantities:
        return None
    return client.V1ResourceRequirements(requests=dict(quantities), limits=dict(quantities))


def create_statefulset_manifest(
    name: str,
    namespace: str,
    tenant_id: str,
    image: str,
    version: str,
    created_at: str,
    env: Dict[str, str],
    resources: Optional[client.V1ResourceRequirements] = None,
    storage_class: Optional[str] = None,
    storage_size: str = "1Gi"
) -> client.V1StatefulSet:
    """
    Create the StatefulSet for a tenant database.

    Args:
        name: DNS-safe instance name (also the Service name)
        namespace: Kubernetes namespace
        tenant_id: Tenant id, stored as annotation
        image: Image repository (without tag)
        version: Image tag
        created_at: RFC3339 creation timestamp
        env: POSTGRES_* environment variables
        resources: Optional requests/limits
        storage_class: StorageClass for the data PVC (cluster default if empty)
        storage_size: Size of the data PVC

    Returns:
        V1StatefulSet manifest
    """
    labels = get_standard_labels(name)
    annotations = get_catalog_annotations(tenant_id, version, created_at)

    env_vars = [client.V1EnvVar(name=key, value=value) for key, value in env.items()]
    # Mounting at the data root clashes with lost+found on most block storage
    env_vars.append(client.V1EnvVar(name="PGDATA", value=f"{PGDATA_PATH}/pgdata"))

    user = env.get("POSTGRES_USER", "postgres")
    readiness_probe = client.V1Probe(
        _exec=client.V1ExecAction(
            command=["pg_isready", "-h", "127.0.0.1", "-p", str(POSTGRES_PORT), "-U", user]
        ),
        initial_delay_seconds=2,
        period_seconds=2,
        timeout_seconds=2,
        failure_threshold=15
    )

    container = client.V1Container(
        name=POSTGRES_CONTAINER,
        image=f"{image}:{version}",
        env=env_vars,
        ports=[client.V1ContainerPort(container_port=POSTGRES_PORT, name="postgres")],
        readiness_probe=readiness_probe,
        resources=resources,
        volume_mounts=[
            client.V1VolumeMount(name=DATA_VOLUME, mount_path=PGDATA_PATH)
        ]
    )

    volume_claim = client.V1PersistentVolumeClaim(
        metadata=client.V1ObjectMeta(name=DATA_VOLUME, labels=labels),
        spec=client.V1PersistentVolumeClaimSpec(
            access_modes=["ReadWriteOnce"],
            storage_class_name=storage_class or None,
            resources=client.V1VolumeResourceRequirements(
                requests={"storage": storage_size}
            )
        )
    )

    return client.V1StatefulSet(
        api_version="apps/v1",
        kind="StatefulSet",
        metadata=client.V1ObjectMeta(
            name=name,
            namespace=namespace,
            labels=labels,
            annotations=annotations
        ),
        spec=client.V1StatefulSetSpec(
            service_name=name,
            replicas=1,
            selector=client.V1LabelSelector(match_labels={LABEL_INSTANCE: name}),
            template=client.V1PodTemplateSpec(
                metadata=client.V1ObjectMeta(labels=labels, annotations=annotations),
                spec=client.V1PodSpec(containers=[container])
            ),
            volume_claim_templates=[volume_claim]
        )
    )


def create_service_manifest(
    name: str,
    namespace: str,
    tenant_id: str,
    service_type: str = "NodePort",
    node_port: Optional[int] = None
) -> client.V1Service:
    """
    Create the Service exposing a tenant database.

    Args:
        name: DNS-safe instance name
        namespace: Kubernetes namespace
        tenant_id: Tenant id, stored as annotation
        service_type: NodePort or ClusterIP
        node_port: Requested NodePort (cluster-assigned if None)

    Returns:
        V1Service manifest
    """
    port = client.V1ServicePort(
        name="postgres",
        port=POSTGRES_PORT,
        target_port=POSTGRES_PORT,
        protocol="TCP"
    )
    if service_type == "NodePort" and node_port:
        port.node_port = node_port

    return client.V1Service(
        metadata=client.V1ObjectMeta(
            name=name,
            namespace=namespace,
            labels=get_standard_labels(name),
            annotations={ANNOTATION_TENANT: tenant_id}
        ),
        spec=client.V1ServiceSpec(
            selector={LABEL_INSTANCE: name},
            ports=[port],
            type=service_type
        )
    )


def get_pod_name(statefulset_name: str) -> str:
    """Name of the single StatefulSet replica."""
    return f"{statefulset_name}-0"

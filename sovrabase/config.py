import logging
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Union

import yaml
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Orchestrator backend: "docker" (container runtime) or "kubernetes" (cluster)
    # Use the orchestration module for type-safe access: from sovrabase.services.orchestration import get_orchestrator
    orchestrator_type: str = "docker"

    # Docker/Podman socket or remote engine endpoint
    docker_host: str = "unix:///var/run/docker.sock"

    # Kubernetes API endpoint and bearer token
    # Leave empty to use in-cluster config, falling back to ~/.kube/config
    kube_api: str = ""
    kube_token: str = ""
    kube_verify_ssl: bool = True

    # Namespace for database StatefulSets and Services
    namespace: str = "sovrabase-databases"

    # Logging level: DEBUG, INFO, WARNING, ERROR, CRITICAL
    log_level: str = "INFO"

    # ==========================================================================
    # Database Instance Defaults
    # ==========================================================================
    default_postgres_version: str = "16-alpine"
    postgres_image: str = "docker.io/library/postgres"

    # Host written into connection strings, and the host IP Docker binds to
    database_host: str = "localhost"
    bind_address: str = "127.0.0.1"

    # Host port range scanned for new instances: [start, end)
    port_range_start: int = 5433
    port_range_end: int = 6000

    # ==========================================================================
    # Lifecycle Timing
    # ==========================================================================
    readiness_timeout_seconds: float = 30
    readiness_poll_interval_seconds: float = 1
    stop_timeout_seconds: int = 10

    # ==========================================================================
    # Kubernetes Storage & Networking
    # ==========================================================================
    # Empty storage class uses the cluster default
    k8s_storage_class: str = ""
    k8s_pvc_size: str = "1Gi"
    # NodePort exposes instances on every node; ClusterIP keeps them in-cluster
    k8s_service_type: str = "NodePort"
    k8s_node_port_min: int = 30000
    k8s_node_port_max: int = 32767

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"  # Ignore extra fields from .env file
        case_sensitive = False


@lru_cache()
def get_settings():
    return Settings()


def load_settings_from_yaml(path: Union[str, Path]) -> Settings:
    """
    Build Settings from a YAML config file.

    Reads the ``orchestrator`` section of the deployment config:

        orchestrator:
          type: docker
          docker_host: unix:///var/run/docker.sock
          kube_api: https://k8s.example.com:6443
          kube_token: ...
          namespace: sovrabase-databases

    Defaults follow the backend type: the Docker socket is only filled in for
    docker, the namespace only for kubernetes. Values not present in the file
    still come from the environment.
    """
    with open(path, "r", encoding="utf-8") as fh:
        data = yaml.safe_load(fh) or {}

    section: Dict[str, Any] = data.get("orchestrator") or {}
    overrides: Dict[str, Any] = {}

    orchestrator_type = section.get("type") or "docker"
    overrides["orchestrator_type"] = orchestrator_type

    if section.get("docker_host"):
        overrides["docker_host"] = section["docker_host"]
    elif orchestrator_type == "docker":
        overrides["docker_host"] = "unix:///var/run/docker.sock"

    if section.get("namespace"):
        overrides["namespace"] = section["namespace"]
    elif orchestrator_type == "kubernetes":
        overrides["namespace"] = "sovrabase-databases"

    for key in ("kube_api", "kube_token"):
        if section.get(key):
            overrides[key] = section[key]

    return Settings(**overrides)


def configure_logging(settings: Settings = None) -> None:
    """Configure root logging for entry points (scripts, workers)."""
    settings = settings or get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

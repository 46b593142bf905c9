"""Utility modules for the orchestrator service."""

from .resource_naming import (
    get_instance_name,
    get_k8s_resource_name,
    sanitize_db_name,
    validate_tenant_id,
    generate_password,
    build_connection_string,
)
from .resource_limits import parse_memory, parse_cpus
from .port_allocator import find_available_port, collect_published_ports

__all__ = [
    'get_instance_name',
    'get_k8s_resource_name',
    'sanitize_db_name',
    'validate_tenant_id',
    'generate_password',
    'build_connection_string',
    'parse_memory',
    'parse_cpus',
    'find_available_port',
    'collect_published_ports',
]

"""
Host port allocation for database instances.

Every container on the engine (managed or not) is scanned for published
ports; the lowest free port in the reserved range is handed out.
"""

import logging
from typing import Any, Iterable, Optional, Set

from ..errors import PortExhaustedError

logger = logging.getLogger(__name__)

DEFAULT_PORT_RANGE_START = 5433
DEFAULT_PORT_RANGE_END = 6000  # exclusive


def _host_ports_from_bindings(bindings: Optional[dict]) -> Set[int]:
    """Extract host ports from a {"5432/tcp": [{"HostIp": ..., "HostPort": "5434"}]} map."""
    ports = set()
    for entries in (bindings or {}).values():
        for entry in entries or []:
            host_port = (entry or {}).get('HostPort')
            if host_port and str(host_port).isdigit():
                ports.add(int(host_port))
    return ports


def collect_published_ports(containers: Iterable[Any]) -> Set[int]:
    """
    Gather every host port used by the given containers.

    Reads both the live bindings (NetworkSettings.Ports) and the configured
    bindings (HostConfig.PortBindings), so ports reserved by stopped
    containers are not handed out again.

    Args:
        containers: docker SDK Container objects (anything with ``attrs``)

    Returns:
        Set of host port numbers
    """
    used: Set[int] = set()
    for container in containers:
        attrs = getattr(container, 'attrs', None) or {}
        used |= _host_ports_from_bindings(
            (attrs.get('NetworkSettings') or {}).get('Ports')
        )
        used |= _host_ports_from_bindings(
            (attrs.get('HostConfig') or {}).get('PortBindings')
        )
        # Summary format from the list endpoint
        for port in attrs.get('Ports') or []:
            public_port = port.get('PublicPort') if isinstance(port, dict) else None
            if public_port:
                used.add(int(public_port))
    return used


def find_available_port(
    used_ports: Iterable[int],
    start: int = DEFAULT_PORT_RANGE_START,
    end: int = DEFAULT_PORT_RANGE_END,
    strict: bool = False
) -> int:
    """
    Return the lowest port in [start, end) not in used_ports.

    Args:
        used_ports: Ports already bound on the host
        start: First port of the range (inclusive)
        end: End of the range (exclusive)
        strict: Raise when the range is exhausted instead of returning start

    Returns:
        A free port, or ``start`` when exhausted in lenient mode

    Raises:
        PortExhaustedError: In strict mode, when no port is free
    """
    used = set(used_ports)
    for port in range(start, end):
        if port not in used:
            return port

    if strict:
        raise PortExhaustedError(
            f"No free host port in range {start}-{end - 1}",
            operation="allocate_port"
        )

    logger.warning(f"[PORTS] Port range {start}-{end - 1} exhausted, falling back to {start}")
    return start

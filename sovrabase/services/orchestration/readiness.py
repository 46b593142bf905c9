"""
Readiness Prober

Polls a freshly started database instance until it accepts connections.
Readiness is decided by an in-instance probe (pg_isready), not by the
process having started.

The prober is backend-agnostic: each orchestrator hands in two coroutines,
one reporting whether the instance is still running and one running the
probe inside it.
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional

from ...errors import InfrastructureError, OrchestratorError, ReadinessTimeoutError

logger = logging.getLogger(__name__)

DEFAULT_READINESS_TIMEOUT = 30.0
DEFAULT_POLL_INTERVAL = 1.0


async def wait_until_ready(
    is_running: Callable[[], Awaitable[bool]],
    probe: Callable[[], Awaitable[bool]],
    timeout: float = DEFAULT_READINESS_TIMEOUT,
    interval: float = DEFAULT_POLL_INTERVAL,
    tenant_id: Optional[str] = None
) -> None:
    """
    Wait for an instance to report ready.

    Each poll first checks the instance is still running, then runs the
    probe. A probe that raises counts as "not ready yet"; only losing the
    instance itself ends the wait early.

    Args:
        is_running: Returns False when the instance has stopped. Raising means
            the instance can no longer be inspected.
        probe: Returns True once the database accepts connections
        timeout: Seconds before giving up
        interval: Seconds between polls
        tenant_id: Tenant for error context

    Raises:
        InfrastructureError: If the instance stopped or disappeared
        ReadinessTimeoutError: If the deadline elapsed
        asyncio.CancelledError: If the caller was cancelled
    """
    deadline = time.monotonic() + timeout
    attempts = 0

    while time.monotonic() < deadline:
        attempts += 1

        try:
            running = await is_running()
        except OrchestratorError:
            raise
        except Exception as e:
            raise InfrastructureError(
                f"Lost instance while waiting for readiness: {e}",
                tenant_id=tenant_id,
                operation="wait_until_ready"
            ) from e

        if not running:
            raise InfrastructureError(
                "Instance stopped unexpectedly while starting",
                tenant_id=tenant_id,
                operation="wait_until_ready"
            )

        try:
            if await probe():
                logger.info(f"[READINESS] Instance ready after {attempts} poll(s)")
                return
        except Exception as e:
            logger.debug(f"[READINESS] Probe attempt {attempts} failed: {e}")

        remaining = deadline - time.monotonic()
        if remaining <= 0:
            break
        await asyncio.sleep(min(interval, remaining))

    raise ReadinessTimeoutError(
        f"Instance not ready after {timeout:g} seconds",
        tenant_id=tenant_id,
        operation="wait_until_ready"
    )

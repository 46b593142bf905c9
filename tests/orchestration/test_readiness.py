"""
Unit tests for the readiness prober.
"""

import asyncio

import pytest

from sovrabase.errors import InfrastructureError, InstanceNotFoundError, ReadinessTimeoutError
from sovrabase.services.orchestration.readiness import wait_until_ready


pytestmark = pytest.mark.unit


def always(value):
    async def check():
        return value
    return check


class TestWaitUntilReady:

    @pytest.mark.asyncio
    async def test_ready_on_first_poll(self):
        await wait_until_ready(always(True), always(True), timeout=1, interval=0.01)

    @pytest.mark.asyncio
    async def test_ready_after_a_few_polls(self):
        attempts = []

        async def probe():
            attempts.append(1)
            return len(attempts) >= 3

        await wait_until_ready(always(True), probe, timeout=1, interval=0.01)
        assert len(attempts) == 3

    @pytest.mark.asyncio
    async def test_probe_errors_count_as_not_ready(self):
        attempts = []

        async def probe():
            attempts.append(1)
            if len(attempts) < 2:
                raise ConnectionError("exec endpoint not ready")
            return True

        await wait_until_ready(always(True), probe, timeout=1, interval=0.01)
        assert len(attempts) == 2

    @pytest.mark.asyncio
    async def test_timeout(self):
        with pytest.raises(ReadinessTimeoutError) as exc_info:
            await wait_until_ready(always(True), always(False), timeout=0.05, interval=0.01, tenant_id="acme")

        assert exc_info.value.tenant_id == "acme"
        assert exc_info.value.operation == "wait_until_ready"

    @pytest.mark.asyncio
    async def test_stopped_instance_ends_wait_early(self):
        with pytest.raises(InfrastructureError, match="stopped unexpectedly"):
            await wait_until_ready(always(False), always(True), timeout=5, interval=0.01)

    @pytest.mark.asyncio
    async def test_inspection_failure_is_infrastructure_error(self):
        async def is_running():
            raise OSError("connection refused")

        with pytest.raises(InfrastructureError):
            await wait_until_ready(is_running, always(True), timeout=5, interval=0.01)

    @pytest.mark.asyncio
    async def test_orchestrator_errors_pass_through(self):
        async def is_running():
            raise InstanceNotFoundError("gone", tenant_id="acme")

        with pytest.raises(InstanceNotFoundError):
            await wait_until_ready(is_running, always(True), timeout=5, interval=0.01)

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self):
        task = asyncio.create_task(
            wait_until_ready(always(True), always(False), timeout=30, interval=0.01)
        )
        await asyncio.sleep(0.05)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task


if __name__ == "__main__":
    pytest.main([__file__, "-v"])

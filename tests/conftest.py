"""
Test configuration and fixtures for pytest.

Provides fake docker SDK objects so both orchestrators can be exercised
without a container engine or a cluster.
"""

import os
import pytest


def pytest_configure(config):
    """
    Pytest hook called before test collection.
    Sets up test environment variables and registers custom markers.
    """
    # Set test environment variables BEFORE any sovrabase imports
    os.environ["ORCHESTRATOR_TYPE"] = "docker"
    os.environ["DOCKER_HOST"] = "unix:///var/run/docker.sock"
    os.environ["NAMESPACE"] = "sovrabase-test"
    os.environ["READINESS_TIMEOUT_SECONDS"] = "2"
    os.environ["READINESS_POLL_INTERVAL_SECONDS"] = "0.01"

    # Import and clear settings cache after env vars are set
    from sovrabase.config import get_settings
    get_settings.cache_clear()

    # Register custom markers
    config.addinivalue_line("markers", "unit: mark test as a unit test")
    config.addinivalue_line("markers", "integration: mark test as an integration test")
    config.addinivalue_line("markers", "docker: mark test as exercising the Docker backend")
    config.addinivalue_line("markers", "kubernetes: mark test as exercising the Kubernetes backend")


@pytest.fixture
def settings():
    """Fresh settings with fast readiness polling."""
    from sovrabase.config import Settings
    return Settings(
        readiness_timeout_seconds=2,
        readiness_poll_interval_seconds=0.01,
    )


@pytest.fixture(autouse=True)
def clear_orchestrator_cache():
    """Reset cached orchestrators between tests."""
    from sovrabase.services.orchestration import OrchestratorFactory
    OrchestratorFactory.clear_cache()
    yield
    OrchestratorFactory.clear_cache()

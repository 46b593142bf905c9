"""
In-memory stand-in for the docker SDK client.

Mirrors the parts of docker.DockerClient the Docker orchestrator touches:
containers.get/list/create, images.pull and the Container methods used
during the lifecycle. Errors are the SDK's own exception types.
"""

import threading
import time
from unittest.mock import MagicMock

import pytest
from docker.errors import APIError, NotFound
from docker.models.containers import ExecResult


def api_error(status_code: int, message: str = "engine error") -> APIError:
    response = MagicMock(status_code=status_code, reason=message, url="http://engine/containers")
    return APIError(message, response=response, explanation=message)


class FakeContainer:
    def __init__(self, engine, name, image, environment=None, ports=None, labels=None, **kwargs):
        self.engine = engine
        self.name = name
        self.id = f"{name}-id"
        self.removed = False

        port_bindings = {}
        for container_port, binding in (ports or {}).items():
            host_ip, host_port = binding if isinstance(binding, tuple) else ("", binding)
            port_bindings[container_port] = [{"HostIp": host_ip, "HostPort": str(host_port)}]

        self.attrs = {
            "Id": self.id,
            "Name": f"/{name}",
            "Config": {
                "Image": image,
                "Env": [f"{key}={value}" for key, value in (environment or {}).items()],
                "Labels": dict(labels or {}),
            },
            "State": {"Running": False},
            "HostConfig": {
                "PortBindings": port_bindings,
                "Memory": kwargs.get("mem_limit", 0),
                "NanoCpus": kwargs.get("nano_cpus", 0),
                "RestartPolicy": kwargs.get("restart_policy"),
            },
            "NetworkSettings": {"Ports": {}},
        }

    @property
    def running(self) -> bool:
        return self.attrs["State"]["Running"]

    def _check_present(self):
        if self.removed:
            raise NotFound(f"No such container: {self.name}")

    def start(self):
        if self.engine.start_delay:
            time.sleep(self.engine.start_delay)
        self._check_present()
        if self.engine.fail_start:
            raise api_error(500, "failed to start: port is already allocated")
        self.attrs["State"]["Running"] = True
        self.attrs["NetworkSettings"]["Ports"] = dict(self.attrs["HostConfig"]["PortBindings"])

    def stop(self, timeout=None):
        self._check_present()
        self.attrs["State"]["Running"] = False
        self.attrs["NetworkSettings"]["Ports"] = {}

    def remove(self, v=False, force=False):
        self._check_present()
        self.engine.remove_calls.append({"name": self.name, "v": v, "force": force})
        self.engine.remove(self.name)
        self.removed = True

    def reload(self):
        self._check_present()

    def exec_run(self, cmd, **kwargs):
        self._check_present()
        self.engine.exec_calls.append(cmd)
        return ExecResult(self.engine.probe_exit_code, b"")


class FakeContainerCollection:
    def __init__(self, engine):
        self.engine = engine

    def get(self, name):
        if name in self.engine.fail_get:
            raise api_error(500, f"cannot inspect {name}")
        with self.engine.lock:
            container = self.engine.containers_by_name.get(name)
        if container is None:
            raise NotFound(f"No such container: {name}")
        return container

    def list(self, all=False, sparse=False, ignore_removed=False, filters=None):
        if self.engine.fail_list:
            raise api_error(500, "cannot list containers")
        wanted = [item.split("=", 1) for item in (filters or {}).get("label", [])]
        with self.engine.lock:
            containers = list(self.engine.containers_by_name.values())
        result = []
        for container in containers:
            if not all and not container.running:
                continue
            labels = container.attrs["Config"]["Labels"]
            if not [key for key, value in wanted if labels.get(key) != value]:
                result.append(container)
        return result

    def create(self, image, name=None, **kwargs):
        self.engine.create_calls.append({"image": image, "name": name, **kwargs})
        if self.engine.create_delay:
            time.sleep(self.engine.create_delay)
        with self.engine.lock:
            if name in self.engine.containers_by_name:
                raise api_error(409, f'Conflict. The container name "/{name}" is already in use')
            container = FakeContainer(self.engine, name, image, **kwargs)
            self.engine.containers_by_name[name] = container
        return container


class FakeImageCollection:
    def __init__(self, engine):
        self.engine = engine

    def pull(self, repository, tag=None):
        if self.engine.fail_pull:
            raise api_error(404, f"manifest for {repository}:{tag} not found")
        self.engine.pulled.append(f"{repository}:{tag}")
        return MagicMock(tags=[f"{repository}:{tag}"])


class FakeDockerEngine:
    """A docker.DockerClient look-alike holding containers in memory."""

    def __init__(self):
        self.lock = threading.Lock()
        self.containers_by_name = {}
        self.create_calls = []
        self.exec_calls = []
        self.remove_calls = []
        self.pulled = []
        self.fail_get = set()
        self.fail_list = False
        self.fail_pull = False
        self.fail_start = False
        self.probe_exit_code = 0
        # Seconds the engine blocks inside create / start
        self.create_delay = 0
        self.start_delay = 0
        self.containers = FakeContainerCollection(self)
        self.images = FakeImageCollection(self)

    def remove(self, name):
        with self.lock:
            self.containers_by_name.pop(name, None)

    def add_foreign_container(self, name, host_port, labels=None):
        """Register a container this system does not manage, holding a host port."""
        container = FakeContainer(
            self, name, "redis:7",
            ports={"6379/tcp": ("0.0.0.0", host_port)},
            labels=labels
        )
        container.start()
        self.containers_by_name[name] = container
        return container


@pytest.fixture
def docker_engine():
    return FakeDockerEngine()


@pytest.fixture
def docker_orchestrator(docker_engine, settings):
    from sovrabase.services.orchestration.docker import DockerOrchestrator
    return DockerOrchestrator(client=docker_engine, settings=settings)

"""Shared pytest fixtures for all test modules."""

import asyncio
import os
import re
import subprocess
import sys

import pytest
import yaml

from deckhand.config import DeployConfig
from deckhand.deploy.orchestrate import Deployment
from deckhand.errors import TransportError
from deckhand.image import Release
from deckhand.secrets import MappingSecrets
from deckhand.state import MemoryStateStore
from deckhand.transport.types import CommandResult, Transport

PROJECT_ROOT = os.path.normpath(os.path.join(os.path.dirname(__file__), ".."))


@pytest.fixture(scope="session")
def project_root():
    """Absolute path to the project root directory."""
    return PROJECT_ROOT


@pytest.fixture(scope="session")
def run_cli(project_root):
    """Return a callable that invokes the deckhand CLI as a subprocess."""

    def _run(*args, env=None):
        result = subprocess.run(
            [sys.executable, "-m", "deckhand.deckhand", *args],
            capture_output=True,
            text=True,
            cwd=project_root,
            env={**os.environ, **(env or {})},
        )
        return result.returncode, result.stdout, result.stderr

    return _run


# ── Fakes ───────────────────────────────────────────────────────────


class FakeClock:
    """Clock that advances instantly when slept on."""

    def __init__(self, start=1000.0):
        self.time = start
        self.sleeps = []

    def now(self):
        return self.time

    def wall(self):
        return self.time

    async def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.time += seconds
        await asyncio.sleep(0)


class FakeTransport(Transport):
    """In-memory docker host simulation.

    - ``health[(host, container)]``: statuses returned by successive inspects
      (the last one repeats). Defaults to "healthy" for running containers.
    - ``unreachable[host]``: number of upcoming commands that raise
      TransportError (use float("inf") for a dead host).
    - ``failing[(host, prefix)]``: exit code for commands starting with prefix.
    """

    def __init__(self):
        super().__init__()
        self.commands = []
        self.files = {}
        self.containers = {}
        self.health = {}
        self.unreachable = {}
        self.failing = {}

    def _deliver(self, address):
        remaining = self.unreachable.get(address, 0)
        if remaining > 0:
            self.unreachable[address] = remaining - 1
            raise TransportError(address, "connection refused")

    def commands_for(self, host):
        return [c for h, c in self.commands if h == str(host)]

    async def run(self, host, command, timeout=600):
        address = str(host)
        self._deliver(address)
        self.commands.append((address, command))
        await asyncio.sleep(0)

        for (h, prefix), code in self.failing.items():
            if h == address and command.startswith(prefix):
                return CommandResult(code, "", f"{prefix} failed")

        if command.startswith("docker run"):
            name = re.search(r"--name (\S+)", command).group(1)
            self.containers[(address, name)] = "running"
        elif command.startswith("docker container inspect --format"):
            name = command.rsplit(" ", 1)[1]
            state = self.containers.get((address, name))
            if state is None:
                return CommandResult(1, "", f"Error: No such container: {name}")
            statuses = self.health.get((address, name))
            if statuses:
                status = statuses.pop(0) if len(statuses) > 1 else statuses[0]
            else:
                status = "healthy" if state == "running" else state
            return CommandResult(0, f"{status}\n")
        elif command.startswith("docker start"):
            self.containers[(address, command.rsplit(" ", 1)[1])] = "running"
        elif command.startswith("docker stop"):
            self.containers[(address, command.rsplit(" ", 1)[1])] = "exited"
        elif command.startswith("docker rm -f"):
            self.containers.pop((address, command.rsplit(" ", 1)[1]), None)
        elif command.startswith("docker logs"):
            return CommandResult(0, f"log line from {address}\n")
        elif command.startswith("docker ps"):
            names = [n for (h, n), s in self.containers.items() if h == address]
            return CommandResult(0, "".join(f"{n}\tUp\n" for n in names))
        return CommandResult(0)

    async def copy(self, host, local_path, remote_path, timeout=300):
        self._deliver(str(host))
        with open(local_path) as f:
            self.files[(str(host), remote_path)] = f.read()


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def fake_transport():
    return FakeTransport()


# ── Descriptor fixtures ─────────────────────────────────────────────


@pytest.fixture
def sample_descriptor():
    """A resolved descriptor dict with four web hosts and one worker host."""
    return {
        "service": "myapp",
        "image": "acme/myapp",
        "servers": {
            "web": {"hosts": ["10.0.0.1", "10.0.0.2", "10.0.0.3", "10.0.0.4"]},
            "job": {"hosts": ["10.0.0.5"], "cmd": "bin/jobs", "kind": "worker"},
        },
        "env": {"clear": {"APP_ENV": "production"}, "secret": ["DATABASE_URL"]},
        "ssh": {"user": "deploy"},
        "proxy": {"ssl": True, "host": "app.example.com", "app_port": 3000},
        "healthcheck": {"path": "/up", "interval": 1, "max_attempts": 5, "timeout": 60},
        "boot": {"limit": 2, "wait": 5},
        "retry": {"max_attempts": 3, "interval": 1},
        "drain_timeout": 30,
        "accessories": {"db": {"image": "mysql:8.0", "host": "10.0.0.6", "port": "3306:3306"}},
    }


@pytest.fixture
def deploy_config(sample_descriptor):
    return DeployConfig.from_dict(sample_descriptor)


@pytest.fixture
def tmp_config_file(tmp_path, sample_descriptor):
    """Write the sample descriptor to tmp_path/config/deploy.yml."""
    config_dir = tmp_path / "config"
    config_dir.mkdir()
    path = config_dir / "deploy.yml"
    with open(path, "w") as f:
        yaml.dump(sample_descriptor, f)
    return str(path)


@pytest.fixture
def secrets():
    return MappingSecrets({"DATABASE_URL": "mysql://app:hunter2hunter2@db/app"})


@pytest.fixture
def make_deployment(deploy_config, fake_transport, fake_clock, secrets):
    """Return a factory building a Deployment wired to fakes."""

    def _make(config=None, store=None, **kwargs):
        return Deployment.build(
            config or deploy_config,
            transport=fake_transport,
            store=store or MemoryStateStore(),
            secrets=secrets,
            clock=fake_clock,
            **kwargs,
        )

    return _make


def make_release(version, image="acme/myapp"):
    """Release with a fixed timestamp so equality is stable."""
    return Release(version=version, image=f"{image}:{version}", created_at="2024-01-01T00:00:00+00:00")


@pytest.fixture
def release():
    return make_release

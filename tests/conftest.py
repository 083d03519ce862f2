"""Pytest configuration and fixtures.

Unit tests never touch a real docker engine: ``FakeDocker`` stands in for
the process invoker and answers the compose/docker commands the runner
issues, keeping just enough container state to exercise restarts and
recreation.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Sequence

import pytest

from composefixture.compose import ComposeRunner, reset_environment_check
from composefixture.core.config import Settings
from composefixture.core.exceptions import ToolInvocationError
from composefixture.process import ProcessResult
from composefixture.resolver import NameOverride, name_override


@dataclass
class FakeContainer:
    """State of one fake service container."""

    id: str
    ports: str
    ip: str
    running: bool = False
    generation: int = 0


class FakeDocker:
    """
    Scripted replacement for ``ProcessInvoker``.

    Usage:
        fake = FakeDocker({"zookeeper": ("0.0.0.0:32768->2181/tcp", "172.18.0.2")})
        runner = ComposeRunner(file, invoker=fake, ...)
        runner.up()
        assert fake.compose_calls[0][:2] == ["up", "-d"]
    """

    def __init__(self, services: Mapping[str, tuple[str, str]]):
        self.containers = {
            name: FakeContainer(id=f"{name}-container", ports=ports, ip=ip)
            for name, (ports, ip) in services.items()
        }
        self.calls: list[tuple[list[str], dict[str, str]]] = []
        self.fail_on: set[str] = set()
        self.ip_after_restart: dict[str, str] = {}

    # =========================================================================
    # Inspection helpers
    # =========================================================================

    @property
    def compose_calls(self) -> list[list[str]]:
        """Compose subcommands issued, without the ``-f``/``-p`` prefix."""
        return [self._compose_args(argv) for argv, _ in self.calls if self._is_compose(argv)]

    def envs_of(self, subcommand: str) -> list[dict[str, str]]:
        return [
            env for argv, env in self.calls
            if self._is_compose(argv) and self._compose_args(argv)[:1] == [subcommand]
        ]

    # =========================================================================
    # Invoker interface
    # =========================================================================

    def run(self, args: Sequence[str], env=None, cwd=None) -> ProcessResult:
        argv = [str(a) for a in args]
        self.calls.append((argv, dict(env or {})))

        if self._is_compose(argv):
            sub = self._compose_args(argv)
            stdout = self._compose(sub)
        else:
            sub = argv[1:]
            stdout = self._docker(sub)

        if sub and sub[0] in self.fail_on:
            raise ToolInvocationError(
                f"Command exited with status 1: {' '.join(argv)}",
                details={"returncode": 1, "stdout": "", "stderr": f"{sub[0]} failed"},
            )
        return ProcessResult(args=tuple(argv), returncode=0, stdout=stdout)

    @staticmethod
    def _is_compose(argv: list[str]) -> bool:
        return argv[:2] == ["docker", "compose"]

    @staticmethod
    def _compose_args(argv: list[str]) -> list[str]:
        rest = argv[2:]
        while rest and rest[0] in ("-f", "-p"):
            rest = rest[2:]
        return rest

    def _compose(self, sub: list[str]) -> str:
        command = sub[0] if sub else ""
        if command in self.fail_on:
            return ""
        if command == "version":
            return "Docker Compose version v2.24.0\n"
        if command == "up":
            for container in self.containers.values():
                if "--force-recreate" in sub or not container.running:
                    if "--force-recreate" in sub:
                        container.generation += 1
                        container.id = f"{container.id.split('#')[0]}#{container.generation}"
                    container.running = True
            return ""
        if command == "config":
            return "".join(f"{name}\n" for name in self.containers)
        if command == "ps":
            container = self.containers.get(sub[-1])
            return f"{container.id}\n" if container and container.running else ""
        if command == "start":
            container = self.containers[sub[1]]
            container.running = True
            if sub[1] in self.ip_after_restart:
                container.ip = self.ip_after_restart[sub[1]]
            return ""
        if command == "stop":
            self.containers[sub[1]].running = False
            return ""
        if command == "down":
            for container in self.containers.values():
                container.running = False
            return ""
        raise AssertionError(f"Unexpected compose command: {sub}")

    def _docker(self, sub: list[str]) -> str:
        if sub[0] == "ps":
            container_id = next(a.split("=", 1)[1] for a in sub if a.startswith("id="))
            for container in self.containers.values():
                if container.id == container_id and container.running:
                    return f"{container.id}\t{container.ports}\n"
            return ""
        if sub[0] == "inspect":
            container_id = sub[-1]
            for container in self.containers.values():
                if container.id == container_id:
                    return f"{container.ip} \n"
            raise AssertionError(f"Unknown container {container_id}")
        raise AssertionError(f"Unexpected docker command: {sub}")


# =============================================================================
# FIXTURES
# =============================================================================


@pytest.fixture
def settings() -> Settings:
    """Settings independent of the developer's environment."""
    return Settings(
        _env_file=None,
        compose_command="docker compose",
        docker_command="docker",
        wait_timeout=2.0,
        wait_interval=0.05,
    )


@pytest.fixture
def compose_file(tmp_path: Path) -> Path:
    """An (opaque) compose file on disk."""
    path = tmp_path / "stack" / "docker-compose.yaml"
    path.parent.mkdir()
    path.write_text("services:\n  zookeeper:\n    image: zookeeper\n")
    return path


@pytest.fixture
def fake_docker() -> FakeDocker:
    return FakeDocker(
        {
            "zookeeper": ("2888/tcp, 3888/tcp, 0.0.0.0:32768->2181/tcp", "172.18.0.2"),
            "kafka": ("", "172.18.0.3"),
        }
    )


@pytest.fixture
def override() -> NameOverride:
    """A private name override, cleared after the test."""
    table = NameOverride()
    yield table
    table.clear()


@pytest.fixture
def runner(compose_file: Path, fake_docker: FakeDocker, settings: Settings, override: NameOverride) -> ComposeRunner:
    return ComposeRunner(
        compose_file,
        project_name="unit_test",
        environment={"ALPINE_VERSION": "3.12.0"},
        invoker=fake_docker,
        settings=settings,
        override=override,
    )


@pytest.fixture(autouse=True)
def restore_global_state():
    """Keep the process-wide override and environment check clean between tests."""
    yield
    name_override.clear()
    reset_environment_check()

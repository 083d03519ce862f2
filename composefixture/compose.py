"""
Compose Runner - Drive docker compose for one compose file.

The runner shells out to the ``docker compose`` and ``docker`` CLIs, so both
must be usable by the current user without sudo. The compose file is opaque
here: everything we learn about it comes from the tool's own output.

Every compose invocation gets two extra environment variables so compose
files can reference sibling resources and run containers as the host user:

- ``DIRECTORY``: parent directory of the compose file
- ``CURRENT_USER_ID``: numeric id of the invoking user
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Mapping

import docker
from docker.errors import DockerException

from composefixture.core.config import Settings, get_settings
from composefixture.core.exceptions import (
    ContainerStateError,
    DockerEnvironmentError,
    ToolInvocationError,
)
from composefixture.core.logging import get_logger
from composefixture.ports import parse_container_line, parse_external_ip, parse_port_mappings
from composefixture.process import ProcessInvoker, ProcessResult, current_user_id
from composefixture.resolver import NameOverride, name_override
from composefixture.service import Service

logger = get_logger("compose")

SERVICE_LABEL = "com.docker.compose.service"
PS_FORMAT = "{{.ID}}\t{{.Ports}}"
INSPECT_IP_FORMAT = "{{range .NetworkSettings.Networks}}{{.IPAddress}} {{end}}"


# =============================================================================
# ENVIRONMENT CHECK
# =============================================================================


_environment_checked = False


def check_environment(
    settings: Settings | None = None,
    invoker: ProcessInvoker | None = None,
    force: bool = False,
) -> None:
    """
    Verify once per process that the docker engine and compose tool work.

    Raises:
        DockerEnvironmentError: engine unreachable or compose not runnable
    """
    global _environment_checked
    if _environment_checked and not force:
        return

    settings = settings or get_settings()
    invoker = invoker or ProcessInvoker(timeout=settings.command_timeout)

    try:
        client = docker.from_env()
        try:
            client.ping()
        finally:
            client.close()
    except (DockerException, OSError) as e:
        raise DockerEnvironmentError(
            details={"check": "docker engine", "cause": str(e)},
        ) from e

    try:
        result = invoker.run([*settings.compose_argv, "version"])
    except ToolInvocationError as e:
        raise DockerEnvironmentError(
            details={"check": settings.compose_command, "cause": str(e)},
        ) from e

    logger.info("Docker engine reachable; %s", result.output or settings.compose_command)
    _environment_checked = True


def reset_environment_check() -> None:
    """Forget a previous successful check."""
    global _environment_checked
    _environment_checked = False


# =============================================================================
# RUNNER
# =============================================================================


class ComposeRunner:
    """
    Runs docker compose commands against a single compose file.

    Usage:
        runner = ComposeRunner("tests/docker-compose/zookeeper.yaml", project_name="zk_test")
        services = runner.start(force_recreate=False)
        zk = services["zookeeper"]
        print(zk.internal_ip, zk.port(2181))
        runner.down()
    """

    def __init__(
        self,
        compose_file: str | os.PathLike[str],
        project_name: str | None = None,
        environment: Mapping[str, str] | None = None,
        invoker: ProcessInvoker | None = None,
        settings: Settings | None = None,
        override: NameOverride | None = None,
    ):
        path = Path(compose_file).expanduser().resolve()
        if not path.is_file():
            raise FileNotFoundError(f"Compose file not found: {path}")
        if project_name is not None and not project_name:
            raise ValueError("Project name must not be empty")

        self.settings = settings or get_settings()
        self.compose_file = path
        self.project_name = project_name
        self.environment = dict(environment or {})
        self.invoker = invoker or ProcessInvoker(timeout=self.settings.command_timeout)
        self.override = override or name_override
        # Names this runner registered with the override, and the IP it used
        self._installed: dict[str, str] = {}

    # =========================================================================
    # Compose lifecycle
    # =========================================================================

    def start(self, force_recreate: bool = False) -> dict[str, Service]:
        """Bring every service of the file up and describe each one."""
        names = self.up(force_recreate)
        services = {name: self.describe(name) for name in names}
        logger.info(
            "Services of %s: %s",
            self.compose_file.name,
            ", ".join(f"{s.name}={s.internal_ip}" for s in services.values()) or "none",
        )
        return services

    def up(self, force_recreate: bool = False) -> list[str]:
        """
        Run ``up -d`` and return the service names the file declares.

        Without ``force_recreate`` existing containers of the same project and
        service are reused.
        """
        self.execute("up", "-d", "--force-recreate" if force_recreate else "--no-recreate")
        return self.execute("config", "--services").lines()

    def down(self) -> None:
        """Remove containers and networks of this project."""
        self.execute("down")

    def start_service(self, name: str) -> Service:
        """Start one service and return a freshly described handle."""
        self.execute("start", name)
        # Address and published ports may differ after a restart
        return self.describe(name)

    def stop_service(self, name: str) -> None:
        """Stop one service; its container is kept."""
        self.execute("stop", name)

    # =========================================================================
    # Container inspection
    # =========================================================================

    def describe(self, name: str) -> Service:
        """
        Build a ``Service`` for a running service of this project.

        Raises:
            ContainerStateError: no running container, or it has no address
        """
        container_ids = self.execute("ps", "-q", name).lines()
        if not container_ids:
            raise ContainerStateError(
                f"No running container for service '{name}'. "
                f"This is mostly due to the container terminating early.",
                details={"service": name, "compose_file": str(self.compose_file)},
            )
        if len(container_ids) > 1:
            logger.warning(
                "Service %s has %d containers, using %s",
                name, len(container_ids), container_ids[0],
            )

        state_lines = self.docker(
            "ps",
            "--no-trunc",
            "--filter", f"id={container_ids[0]}",
            "--filter", f"label={SERVICE_LABEL}={name}",
            "--format", PS_FORMAT,
        ).lines()
        if not state_lines:
            raise ContainerStateError(
                f"Container {container_ids[0]} of service '{name}' is not running",
                details={"service": name, "container_id": container_ids[0]},
            )

        container_id, port_text = parse_container_line(state_lines[0])
        internal_ip = self.container_ip(container_id)
        if not internal_ip:
            raise ContainerStateError(
                f"Container {container_id} of service '{name}' has no network address",
                details={"service": name, "container_id": container_id},
            )

        if self.settings.override_resolution:
            previous = self._installed.get(name)
            self.override.install(name, internal_ip)
            self._installed[name] = internal_ip
            # One hold per runner and name
            if previous is not None:
                self.override.uninstall(name, previous)

        return Service(
            id=container_id,
            name=name,
            external_ip=parse_external_ip(port_text),
            internal_ip=internal_ip,
            port_mappings=parse_port_mappings(port_text),
            runner=self,
        )

    def container_ip(self, container_id: str) -> str:
        """First address of the container across its networks ('' when none)."""
        output = self.docker("inspect", "-f", INSPECT_IP_FORMAT, container_id).output
        for ip in output.split():
            if ip:
                return ip
        return ""

    def release_names(self) -> None:
        """
        Release the hostname holds of this runner.

        Mappings other runners still hold, or that moved to another address,
        stay in place.
        """
        for name, ip in list(self._installed.items()):
            self.override.uninstall(name, ip)
            del self._installed[name]

    @property
    def installed_names(self) -> list[str]:
        return sorted(self._installed)

    # =========================================================================
    # Command execution
    # =========================================================================

    def execute(self, *args: str) -> ProcessResult:
        """Run a compose subcommand against this file and project."""
        argv = [*self.settings.compose_argv, "-f", str(self.compose_file)]
        if self.project_name is not None:
            argv += ["-p", self.project_name]
        argv += list(args)
        return self.invoker.run(argv, env=self.process_environment())

    def docker(self, *args: str) -> ProcessResult:
        """Run a plain docker CLI command."""
        return self.invoker.run([*self.settings.docker_argv, *args])

    def process_environment(self) -> dict[str, str]:
        """Variables added to every compose invocation."""
        env = dict(self.environment)
        env[self.settings.directory_env_var] = str(self.compose_file.parent)
        env[self.settings.user_id_env_var] = current_user_id()
        return env

    def __repr__(self) -> str:
        return (
            f"ComposeRunner(compose_file={str(self.compose_file)!r}, "
            f"project_name={self.project_name!r})"
        )

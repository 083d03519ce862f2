"""
Compose Fixture - docker compose services as a test fixture.

Starts one or more docker compose files in stages before a test run,
makes every container reachable by its service name, and tears the
environment down afterwards when asked to.
"""

from composefixture.compose import ComposeRunner, check_environment
from composefixture.core.exceptions import (
    ComposeFixtureError,
    ConnectivityTimeoutError,
    ContainerStateError,
    DockerEnvironmentError,
    FixtureStateError,
    ToolInvocationError,
)
from composefixture.fixture import Builder, DockerCompose, FixtureState, StageBuilder, StageSpec
from composefixture.ports import parse_external_ip, parse_port_mappings
from composefixture.process import ProcessInvoker, ProcessResult
from composefixture.pytest_plugin import compose_fixture
from composefixture.resolver import NameOverride, name_override
from composefixture.service import Service
from composefixture.wait import (
    ContainerHealthyChecker,
    HttpOkChecker,
    PortOpenChecker,
    StartupCallback,
    container_healthy,
    http_ok,
    is_port_open,
    port_open,
    wait_until,
)

__version__ = "1.0.0"

__all__ = [
    "Builder",
    "ComposeFixtureError",
    "ComposeRunner",
    "ConnectivityTimeoutError",
    "ContainerHealthyChecker",
    "ContainerStateError",
    "DockerCompose",
    "DockerEnvironmentError",
    "FixtureState",
    "FixtureStateError",
    "HttpOkChecker",
    "NameOverride",
    "PortOpenChecker",
    "ProcessInvoker",
    "ProcessResult",
    "Service",
    "StageBuilder",
    "StageSpec",
    "StartupCallback",
    "ToolInvocationError",
    "check_environment",
    "compose_fixture",
    "container_healthy",
    "http_ok",
    "is_port_open",
    "name_override",
    "parse_external_ip",
    "parse_port_mappings",
    "port_open",
    "wait_until",
]

"""
Startup callbacks that block stage progression until services are usable.

Containers being up does not mean the processes inside accept connections.
A callback receives the services of its stage and returns once the
condition holds; raising aborts the whole fixture setup.

The engine offers no readiness notification, so every helper here polls
with a fixed pause between attempts until its deadline passes.
"""

from __future__ import annotations

import socket
import time
from typing import TYPE_CHECKING, Callable, Iterable, Mapping, Protocol

import docker
import httpx
from docker.errors import DockerException, NotFound

from composefixture.core.config import get_settings
from composefixture.core.exceptions import ConnectivityTimeoutError, ContainerStateError
from composefixture.core.logging import get_logger

if TYPE_CHECKING:
    from composefixture.service import Service

logger = get_logger("wait")


class StartupCallback(Protocol):
    """Called once per stage after its containers exist."""

    def __call__(self, services: Mapping[str, "Service"]) -> None:
        ...


def wait_until(
    predicate: Callable[[], bool],
    timeout: float,
    interval: float,
    description: str,
) -> None:
    """
    Poll ``predicate`` until it returns True or ``timeout`` seconds pass.

    Raises:
        ConnectivityTimeoutError: the deadline passed without success
    """
    deadline = time.monotonic() + timeout
    attempts = 0
    while True:
        attempts += 1
        if predicate():
            return
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            break
        time.sleep(min(interval, remaining))

    raise ConnectivityTimeoutError(
        f"Timed out after {timeout}s waiting for {description}",
        details={"timeout": timeout, "attempts": attempts},
    )


def _lookup(services: Mapping[str, "Service"], service_name: str) -> "Service":
    service = services.get(service_name)
    if service is None:
        raise ContainerStateError(
            f"No service with name {service_name} is found",
            details={"service": service_name, "available": sorted(services)},
        )
    return service


# =============================================================================
# PORT OPEN
# =============================================================================


class PortOpenChecker:
    """Waits until a TCP connection to ``(internal_ip, port)`` succeeds."""

    def __init__(
        self,
        service_name: str,
        internal_port: int,
        timeout: float | None = None,
        interval: float | None = None,
        connect_timeout: float | None = None,
    ):
        if not service_name:
            raise ValueError("Service name is required")
        settings = get_settings()
        self.service_name = service_name
        self.internal_port = internal_port
        self.timeout = timeout if timeout is not None else settings.wait_timeout
        self.interval = interval if interval is not None else settings.wait_interval
        self.connect_timeout = (
            connect_timeout if connect_timeout is not None else settings.connect_timeout
        )

    def __call__(self, services: Mapping[str, "Service"]) -> None:
        service = _lookup(services, self.service_name)
        address = service.internal_ip

        logger.info(
            "Waiting for port %d of %s service (address=%s)",
            self.internal_port, self.service_name, address,
        )
        try:
            wait_until(
                lambda: is_port_open(address, self.internal_port, self.connect_timeout),
                timeout=self.timeout,
                interval=self.interval,
                description=f"port {self.internal_port} of {self.service_name}",
            )
        except ConnectivityTimeoutError as e:
            raise ConnectivityTimeoutError(
                f"Can not connect to service {self.service_name} "
                f"at {address}:{self.internal_port}",
                details={
                    "service": self.service_name,
                    "address": address,
                    "port": self.internal_port,
                    **e.details,
                },
            ) from e
        logger.info("Port %d of %s service opened", self.internal_port, self.service_name)

    def __repr__(self) -> str:
        return (
            f"PortOpenChecker({self.service_name!r}, {self.internal_port}, "
            f"timeout={self.timeout})"
        )


def is_port_open(host: str, port: int, timeout: float = 0.5) -> bool:
    """Single TCP connect attempt."""
    try:
        with socket.create_connection((host, port), timeout=timeout):
            return True
    except OSError:
        return False


# =============================================================================
# HTTP OK
# =============================================================================


class HttpOkChecker:
    """Waits until an HTTP endpoint of the service answers with an accepted status."""

    def __init__(
        self,
        service_name: str,
        internal_port: int,
        path: str = "/",
        expected_status: Iterable[int] | None = None,
        scheme: str = "http",
        timeout: float | None = None,
        interval: float | None = None,
    ):
        if not service_name:
            raise ValueError("Service name is required")
        settings = get_settings()
        self.service_name = service_name
        self.internal_port = internal_port
        self.path = path if path.startswith("/") else f"/{path}"
        self.expected_status = set(expected_status) if expected_status else None
        self.scheme = scheme
        self.timeout = timeout if timeout is not None else settings.wait_timeout
        self.interval = interval if interval is not None else settings.wait_interval
        self.request_timeout = settings.connect_timeout

    def accepts(self, status_code: int) -> bool:
        if self.expected_status is not None:
            return status_code in self.expected_status
        return status_code < 500

    def __call__(self, services: Mapping[str, "Service"]) -> None:
        service = _lookup(services, self.service_name)
        url = f"{self.scheme}://{service.internal_ip}:{self.internal_port}{self.path}"
        last_status: list[int] = []

        def responds() -> bool:
            try:
                response = httpx.get(url, timeout=self.request_timeout)
            except httpx.HTTPError:
                return False
            last_status[:] = [response.status_code]
            return self.accepts(response.status_code)

        logger.info("Waiting for %s of %s service", url, self.service_name)
        try:
            wait_until(
                responds,
                timeout=self.timeout,
                interval=self.interval,
                description=f"{url} of {self.service_name}",
            )
        except ConnectivityTimeoutError as e:
            raise ConnectivityTimeoutError(
                f"Service {self.service_name} did not answer {url} in time",
                details={
                    "service": self.service_name,
                    "url": url,
                    "last_status": last_status[0] if last_status else None,
                    **e.details,
                },
            ) from e
        logger.info("%s of %s service answered", url, self.service_name)


# =============================================================================
# CONTAINER HEALTH
# =============================================================================


class ContainerHealthyChecker:
    """
    Waits until the engine reports the service's container as healthy.

    Containers without a configured health check count as ready once they
    are running.
    """

    def __init__(
        self,
        service_name: str,
        timeout: float | None = None,
        interval: float | None = None,
        client: "docker.DockerClient | None" = None,
    ):
        if not service_name:
            raise ValueError("Service name is required")
        settings = get_settings()
        self.service_name = service_name
        self.timeout = timeout if timeout is not None else settings.wait_timeout
        self.interval = interval if interval is not None else max(settings.wait_interval, 0.5)
        self._client = client

    def __call__(self, services: Mapping[str, "Service"]) -> None:
        service = _lookup(services, self.service_name)
        client = self._client or docker.from_env()
        last_state: dict[str, str] = {}

        def healthy() -> bool:
            try:
                container = client.containers.get(service.id)
                container.reload()
            except NotFound:
                last_state["status"] = "missing"
                return False
            except DockerException as e:
                last_state["status"] = f"error: {e}"
                return False

            last_state["status"] = container.status
            if container.status != "running":
                return False
            health = container.attrs.get("State", {}).get("Health") or {}
            if not health:
                return True
            last_state["health"] = health.get("Status", "unknown")
            return last_state["health"] == "healthy"

        logger.info("Waiting for container of %s service to become healthy", self.service_name)
        try:
            wait_until(
                healthy,
                timeout=self.timeout,
                interval=self.interval,
                description=f"container of {self.service_name} to become healthy",
            )
        except ConnectivityTimeoutError as e:
            raise ConnectivityTimeoutError(
                f"Container of service {self.service_name} is not healthy "
                f"(status: {last_state.get('status')}, health: {last_state.get('health')})",
                details={"service": self.service_name, **last_state, **e.details},
            ) from e
        finally:
            if self._client is None:
                client.close()
        logger.info("Container of %s service is healthy", self.service_name)


# =============================================================================
# FACTORIES
# =============================================================================


def port_open(
    service_name: str,
    internal_port: int,
    timeout: float | None = None,
    interval: float | None = None,
) -> PortOpenChecker:
    """Wait for a port of a service to accept TCP connections (default 60s, 100ms pauses)."""
    return PortOpenChecker(service_name, internal_port, timeout=timeout, interval=interval)


def http_ok(
    service_name: str,
    internal_port: int,
    path: str = "/",
    expected_status: Iterable[int] | None = None,
    timeout: float | None = None,
    interval: float | None = None,
) -> HttpOkChecker:
    """Wait for an HTTP endpoint of a service to answer without a server error."""
    return HttpOkChecker(
        service_name,
        internal_port,
        path=path,
        expected_status=expected_status,
        timeout=timeout,
        interval=interval,
    )


def container_healthy(
    service_name: str,
    timeout: float | None = None,
    interval: float | None = None,
) -> ContainerHealthyChecker:
    """Wait for the engine's health check of a service to pass."""
    return ContainerHealthyChecker(service_name, timeout=timeout, interval=interval)

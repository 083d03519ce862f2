"""
Service handle for one docker compose service.

A service corresponds to one container (running or stopped). Its container
has an address on the engine's private network, reachable from the host, so
every internal port can be used directly through ``internal_ip``. Published
ports are kept as an internal -> external mapping for setups where only the
host address is reachable.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Mapping

if TYPE_CHECKING:
    from composefixture.compose import ComposeRunner


class Service:
    """
    A docker compose service backed by a container.

    The handle stays valid across ``stop()``/``start()``: the logical name is
    stable, while container id, addresses and ports are refreshed in place on
    every start.
    """

    def __init__(
        self,
        id: str,
        name: str,
        external_ip: str,
        internal_ip: str,
        port_mappings: Mapping[int, int] | None,
        runner: "ComposeRunner",
    ):
        if not id:
            raise ValueError("Id can not be empty")
        if not name:
            raise ValueError("Name can not be empty")
        if not external_ip:
            raise ValueError("External IP can not be empty")
        if not internal_ip:
            raise ValueError("Internal IP can not be empty")
        if runner is None:
            raise ValueError("Runner is required")

        self._id = id
        self._name = name
        self._external_ip = external_ip
        self._internal_ip = internal_ip
        self._port_mappings = dict(port_mappings or {})
        self._runner = runner
        self._running = True

    def start(self) -> None:
        """Start the container. Starting a running service has no effect."""
        fresh = self._runner.start_service(self._name)
        self._copy_from(fresh)
        self._running = True

    def stop(self) -> None:
        """Stop the container without removing it. Stopping twice is harmless."""
        self._runner.stop_service(self._name)
        self._running = False

    @property
    def id(self) -> str:
        """Container id; changes only when the container is recreated."""
        return self._id

    @property
    def name(self) -> str:
        """Service name from the compose file."""
        return self._name

    @property
    def external_ip(self) -> str:
        return self._external_ip

    @property
    def internal_ip(self) -> str:
        return self._internal_ip

    @property
    def port_mappings(self) -> dict[int, int]:
        return dict(self._port_mappings)

    @property
    def running(self) -> bool:
        """False after ``stop()`` until the next ``start()``; address fields are stale meanwhile."""
        return self._running

    @property
    def runner(self) -> "ComposeRunner":
        return self._runner

    def port(self, internal_port: int) -> int:
        """
        External port published for ``internal_port``.

        Unpublished ports come back unchanged since they are reachable on the
        internal address.
        """
        return self._port_mappings.get(internal_port, internal_port)

    def _copy_from(self, other: "Service") -> None:
        self._id = other._id
        self._external_ip = other._external_ip
        self._internal_ip = other._internal_ip
        self._port_mappings = dict(other._port_mappings)

    def __repr__(self) -> str:
        return (
            f"Service(id={self._id!r}, name={self._name!r}, "
            f"external_ip={self._external_ip!r}, internal_ip={self._internal_ip!r}, "
            f"port_mappings={self._port_mappings!r}, running={self._running})"
        )

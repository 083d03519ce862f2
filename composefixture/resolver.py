"""
Name Override - Resolve logical service names to container addresses.

Containers on the engine's private network are reachable by IP from the
host, but their service names are unknown to the host resolver. This module
splices a small resolver in front of the ``socket`` module's lookup
functions so that, once ``install("zookeeper", "172.18.0.2")`` ran, any code
in the process doing ``socket.create_connection(("zookeeper", 2181))``
reaches the container. Unknown names fall through to the platform resolver.

The table is process-wide. Entries are removed with ``uninstall``; when the
last one goes the original ``socket`` functions are put back. Two fixtures
registering the same name concurrently race on which address wins.

Code that captured ``socket.getaddrinfo`` by value before the splice (e.g.
``from socket import getaddrinfo``) keeps using the platform resolver. Use
``DockerCompose.hosts()`` where an explicit mapping can be threaded through.
"""

from __future__ import annotations

import ipaddress
import socket
import threading
from types import ModuleType
from typing import Any, Callable

from composefixture.core.exceptions import ContainerStateError
from composefixture.core.logging import get_logger

logger = get_logger("resolver")


class FixedHostResolver:
    """Answers forward and reverse lookups for exactly one (hostname, ip) pair."""

    def __init__(self, hostname: str, ip: str):
        if not hostname:
            raise ValueError("Hostname must not be empty")
        # Raises ValueError for anything that is not an IPv4/IPv6 literal
        self.address = ipaddress.ip_address(ip)
        self.hostname = hostname

    @property
    def ip(self) -> str:
        return str(self.address)

    def lookup(self, hostname: str) -> str | None:
        """Forward lookup: the IP for our hostname, else None."""
        if hostname.lower() == self.hostname.lower():
            return self.ip
        return None

    def reverse(self, ip: str) -> str | None:
        """Reverse lookup: our hostname for our IP, else None."""
        try:
            if ipaddress.ip_address(ip) == self.address:
                return self.hostname
        except ValueError:
            pass
        return None

    def __repr__(self) -> str:
        return f"FixedHostResolver({self.hostname!r} -> {self.ip})"


class NameOverride:
    """
    Process-wide hostname -> IP table spliced ahead of the socket resolver.

    Usage:
        override = NameOverride()
        override.install("zookeeper", "172.18.0.2")
        socket.gethostbyname("zookeeper")  # '172.18.0.2'
        override.uninstall("zookeeper")
    """

    # Lookup functions we know how to answer, in splice order
    HOOKABLE = ("getaddrinfo", "gethostbyname", "gethostbyname_ex", "gethostbyaddr")
    # Without these the override cannot work at all
    REQUIRED = ("getaddrinfo", "gethostbyname")

    def __init__(self, module: ModuleType = socket):
        self._socket = module
        self._resolvers: dict[str, FixedHostResolver] = {}
        # Outstanding installs per mapping
        self._holders: dict[str, int] = {}
        self._originals: dict[str, Callable[..., Any]] = {}
        self._hooks: dict[str, Callable[..., Any]] = {}
        self._lock = threading.RLock()

    # =========================================================================
    # Public API
    # =========================================================================

    @property
    def installed(self) -> bool:
        """Whether the socket hooks are currently in place."""
        return bool(self._hooks)

    def install(self, name: str, ip: str) -> None:
        """
        Make ``name`` resolve to ``ip`` anywhere in the process.

        Installing the mapping that is already in place adds a holder; each
        holder releases it with ``uninstall(name, ip)``. A different address
        for the same name supersedes the earlier mapping and its holders.

        Raises:
            ContainerStateError: invalid address or the splice failed
        """
        try:
            resolver = FixedHostResolver(name, ip)
        except ValueError as e:
            raise ContainerStateError(
                f"Could not map service '{name}' to address {ip!r}: {e}",
                details={"service": name, "ip": ip},
            ) from e

        key = name.lower()
        with self._lock:
            previous = self._resolvers.get(key)
            if previous is not None and previous.address == resolver.address:
                self._holders[key] += 1
                logger.debug(
                    "Hostname %s resolves to %s (%d holders)", name, resolver.ip, self._holders[key]
                )
                return

            self._resolvers[key] = resolver
            try:
                if not self._hooks:
                    self._splice()
            except ContainerStateError:
                if previous is None:
                    del self._resolvers[key]
                else:
                    self._resolvers[key] = previous
                raise
            self._holders[key] = 1

        if previous is not None:
            logger.info("Hostname %s now resolves to %s (was %s)", name, resolver.ip, previous.ip)
        else:
            logger.debug("Hostname %s resolves to %s", name, resolver.ip)

    def uninstall(self, name: str, ip: str | None = None) -> bool:
        """
        Release one hold on the mapping of ``name``.

        With ``ip`` given, a mapping that has since moved to another address
        is left alone. The mapping goes once its last holder released it.
        Returns False when nothing was released.
        """
        key = name.lower()
        with self._lock:
            resolver = self._resolvers.get(key)
            if resolver is None or (ip is not None and resolver.reverse(ip) is None):
                return False

            self._holders[key] -= 1
            if self._holders[key] > 0:
                return True

            del self._resolvers[key]
            del self._holders[key]
            if not self._resolvers and self._hooks:
                self._unsplice()
        logger.debug("Hostname %s no longer overridden", name)
        return True

    def clear(self) -> None:
        """Remove every mapping and restore the platform resolver."""
        with self._lock:
            self._resolvers.clear()
            self._holders.clear()
            if self._hooks:
                self._unsplice()

    def lookup(self, name: str) -> str | None:
        """IP installed for ``name``, or None."""
        resolver = self._resolvers.get(name.lower())
        return resolver.ip if resolver else None

    def holders(self, name: str) -> int:
        """Number of outstanding installs of the current mapping of ``name``."""
        return self._holders.get(name.lower(), 0)

    def names(self) -> list[str]:
        """Installed hostnames."""
        return sorted(r.hostname for r in self._resolvers.values())

    # =========================================================================
    # Splice
    # =========================================================================

    def _splice(self) -> None:
        available = [fn for fn in self.HOOKABLE if callable(getattr(self._socket, fn, None))]
        missing = [fn for fn in self.REQUIRED if fn not in available]
        if missing:
            raise ContainerStateError(
                f"Resolver override not supported: socket module lacks {missing}",
                details={"missing": missing},
            )

        factories = {
            "getaddrinfo": self._make_getaddrinfo,
            "gethostbyname": self._make_gethostbyname,
            "gethostbyname_ex": self._make_gethostbyname_ex,
            "gethostbyaddr": self._make_gethostbyaddr,
        }

        originals: dict[str, Callable[..., Any]] = {}
        hooks: dict[str, Callable[..., Any]] = {}
        try:
            for fn in available:
                original = getattr(self._socket, fn)
                hook = factories[fn](original)
                setattr(self._socket, fn, hook)
                originals[fn] = original
                hooks[fn] = hook
        except (AttributeError, TypeError) as e:
            for fn, original in originals.items():
                setattr(self._socket, fn, original)
            raise ContainerStateError(
                f"Could not splice resolver into socket.{fn}: {e}",
                details={"function": fn},
            ) from e

        self._originals = originals
        self._hooks = hooks
        logger.debug("Resolver override installed for %s", ", ".join(available))

    def _unsplice(self) -> None:
        for fn, hook in self._hooks.items():
            if getattr(self._socket, fn, None) is hook:
                setattr(self._socket, fn, self._originals[fn])
            else:
                logger.warning("socket.%s was replaced by someone else; leaving it alone", fn)
        self._hooks = {}
        self._originals = {}
        logger.debug("Resolver override removed")

    def _match(self, host: Any) -> FixedHostResolver | None:
        if isinstance(host, (bytes, bytearray)):
            try:
                host = host.decode("ascii")
            except UnicodeDecodeError:
                return None
        if not isinstance(host, str):
            return None
        return self._resolvers.get(host.lower())

    def _reverse(self, ip: Any) -> FixedHostResolver | None:
        if not isinstance(ip, str):
            return None
        for resolver in list(self._resolvers.values()):
            if resolver.reverse(ip):
                return resolver
        return None

    def _make_getaddrinfo(self, original: Callable[..., Any]) -> Callable[..., Any]:
        def getaddrinfo(host, port, *args, **kwargs):
            resolver = self._match(host)
            if resolver is not None:
                # Numeric host keeps family/type filtering native
                return original(resolver.ip, port, *args, **kwargs)
            return original(host, port, *args, **kwargs)

        return getaddrinfo

    def _make_gethostbyname(self, original: Callable[..., Any]) -> Callable[..., Any]:
        def gethostbyname(hostname):
            resolver = self._match(hostname)
            if resolver is not None:
                _require_ipv4(resolver)
                return resolver.ip
            return original(hostname)

        return gethostbyname

    def _make_gethostbyname_ex(self, original: Callable[..., Any]) -> Callable[..., Any]:
        def gethostbyname_ex(hostname):
            resolver = self._match(hostname)
            if resolver is not None:
                _require_ipv4(resolver)
                return resolver.hostname, [], [resolver.ip]
            return original(hostname)

        return gethostbyname_ex

    def _make_gethostbyaddr(self, original: Callable[..., Any]) -> Callable[..., Any]:
        def gethostbyaddr(ip_address):
            resolver = self._reverse(ip_address)
            if resolver is not None:
                return resolver.hostname, [], [resolver.ip]
            return original(ip_address)

        return gethostbyaddr


def _require_ipv4(resolver: FixedHostResolver) -> None:
    # gethostbyname and gethostbyname_ex only speak IPv4
    if resolver.address.version != 4:
        raise socket.gaierror(
            socket.EAI_FAMILY,
            f"{resolver.hostname} is mapped to IPv6 address {resolver.ip}; use getaddrinfo",
        )


# Global instance shared by every fixture in the process
name_override = NameOverride()


def install(name: str, ip: str) -> None:
    """Install a mapping on the process-wide override."""
    name_override.install(name, ip)


def uninstall(name: str, ip: str | None = None) -> bool:
    """Release a mapping on the process-wide override."""
    return name_override.uninstall(name, ip)

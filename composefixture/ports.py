"""
Parsing of published-port text reported by ``docker ps``.

The ``{{.Ports}}`` column looks like::

    0.0.0.0:32768->2181/tcp, :::32768->2181/tcp, 2888/tcp, 3888/tcp

Only published tcp tokens (``<ip>:<external>-><internal>/tcp``) become
mappings. Unpublished ports, udp ports and port ranges are ignored.
"""

from __future__ import annotations

import re

LOCALHOST = "127.0.0.1"

# Bind addresses meaning "every interface" on the host
_WILDCARD_BINDS = {"", "0.0.0.0", "::", "[::]"}

_PUBLISHED_TCP = re.compile(
    r"(?P<ip>\[[0-9a-fA-F:.]*\]|[0-9a-fA-F:.]*?):(?P<external>\d+)->(?P<internal>\d+)/tcp\b"
)


def _published_tokens(text: str) -> list[re.Match[str]]:
    matches = []
    for token in text.split(","):
        match = _PUBLISHED_TCP.fullmatch(token.strip())
        if match:
            matches.append(match)
    return matches


def parse_port_mappings(text: str) -> dict[int, int]:
    """
    Build an internal -> external port table from ``docker ps`` port text.

    When the same internal port is published more than once (IPv4 and IPv6
    binds, or several host ports), the last occurrence wins.

    >>> parse_port_mappings("0.0.0.0:32768->2181/tcp, 2888/tcp")
    {2181: 32768}
    """
    mappings: dict[int, int] = {}
    for match in _published_tokens(text or ""):
        mappings[int(match.group("internal"))] = int(match.group("external"))
    return mappings


def parse_external_ip(text: str) -> str:
    """
    Host address the published ports are bound to.

    Wildcard binds and containers without published ports map to localhost.
    """
    tokens = _published_tokens(text or "")
    if not tokens:
        return LOCALHOST
    ip = tokens[-1].group("ip")
    if ip in _WILDCARD_BINDS:
        return LOCALHOST
    return ip.strip("[]")


def parse_container_line(line: str) -> tuple[str, str]:
    """
    Split a ``{{.ID}}\\t{{.Ports}}`` line into container id and port text.

    Raises:
        ValueError: the line carries no container id
    """
    parts = line.strip().split(None, 1)
    if not parts:
        raise ValueError(f"No container id in line: {line!r}")
    ports = parts[1] if len(parts) > 1 else ""
    return parts[0], ports.strip()

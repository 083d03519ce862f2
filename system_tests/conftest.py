"""
System Test Configuration - real docker compose stacks.

Every test here starts containers on the local engine. When the engine or
the compose plugin is unavailable the whole directory is skipped instead
of failing, so ``pytest system_tests/`` is safe to run anywhere.

Run with: pytest system_tests/ -v
"""

from __future__ import annotations

from pathlib import Path

import pytest

from composefixture import Service, check_environment, is_port_open
from composefixture.core.exceptions import DockerEnvironmentError

COMPOSE_DIR = Path(__file__).parent / "docker-compose"

ZOOKEEPER_PORT = 2181


def accessible(service: Service, port: int = ZOOKEEPER_PORT) -> bool:
    """Whether ``port`` of the service accepts TCP connections on its internal address."""
    return is_port_open(service.internal_ip, port)


def pytest_collection_modifyitems(config, items):
    """Mark everything under system_tests/ as needing docker."""
    root = Path(__file__).parent
    for item in items:
        if root in item.path.parents:
            item.add_marker(pytest.mark.docker)


@pytest.fixture(scope="session", autouse=True)
def require_docker():
    """Skip the session when docker compose can not be used."""
    try:
        check_environment()
    except DockerEnvironmentError as e:
        pytest.skip(f"Docker is not available: {e.message}")


@pytest.fixture(scope="session")
def compose_dir() -> Path:
    return COMPOSE_DIR

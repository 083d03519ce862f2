"""
pytest integration for compose fixtures.

Registered through the ``pytest11`` entry point, so installing the package
makes the ``docker`` marker and ``--skip-docker`` option available. Loading
the plugin also configures the ``composefixture`` logger from
``COMPOSE_FIXTURE_LOG_LEVEL`` and ``COMPOSE_FIXTURE_LOG_FORMAT``.

Usage in a test module:
    from composefixture import DockerCompose, compose_fixture, port_open

    zookeeper = compose_fixture(
        lambda: DockerCompose.builder(__file__)
        .file("docker-compose/zookeeper.yaml")
        .after_start(port_open("zookeeper", 2181))
        .build(),
        scope="module",
    )

    def test_something(zookeeper):
        zk = zookeeper.get_service("zookeeper")
"""

from __future__ import annotations

from typing import Callable, Generator

import pytest

from composefixture.core.logging import get_logger, setup_logging
from composefixture.fixture import DockerCompose

logger = get_logger("pytest")


def compose_fixture(
    factory: Callable[[], DockerCompose] | DockerCompose,
    scope: str = "module",
    name: str | None = None,
):
    """
    Wrap a ``DockerCompose`` into a pytest fixture.

    ``setup()`` runs before the first test using the fixture; a failure there
    is reported as a fixture error for every dependent test. ``teardown()``
    runs after the last one and never fails the run.
    """

    def _compose() -> Generator[DockerCompose, None, None]:
        compose = factory if isinstance(factory, DockerCompose) else factory()
        try:
            compose.setup()
            yield compose
        finally:
            compose.teardown()

    return pytest.fixture(scope=scope, name=name)(_compose)


# =============================================================================
# PYTEST HOOKS
# =============================================================================


def pytest_addoption(parser):
    """Add the --skip-docker option."""
    group = parser.getgroup("composefixture")
    group.addoption(
        "--skip-docker",
        action="store_true",
        default=False,
        help="Skip tests marked 'docker' (they need a running docker engine)",
    )


def pytest_configure(config):
    """Register custom markers and configure the package logger."""
    setup_logging()
    config.addinivalue_line(
        "markers",
        "docker: Test that starts containers through docker compose",
    )


def pytest_collection_modifyitems(config, items):
    """Skip docker tests when asked to."""
    if not config.getoption("--skip-docker"):
        return

    skip = pytest.mark.skip(reason="--skip-docker given")
    for item in items:
        if "docker" in item.keywords:
            item.add_marker(skip)

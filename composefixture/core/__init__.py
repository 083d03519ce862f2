"""Core infrastructure: settings, logging, exceptions."""

from .config import Settings, get_settings
from .exceptions import (
    ComposeFixtureError,
    ConnectivityTimeoutError,
    ContainerStateError,
    DockerEnvironmentError,
    FixtureStateError,
    ToolInvocationError,
)
from .logging import get_logger, setup_logging


__all__ = [
    "ComposeFixtureError",
    "ConnectivityTimeoutError",
    "ContainerStateError",
    "DockerEnvironmentError",
    "FixtureStateError",
    "Settings",
    "ToolInvocationError",
    "get_logger",
    "get_settings",
    "setup_logging",
]

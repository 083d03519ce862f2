"""Exception hierarchy for compose fixtures."""

from __future__ import annotations

from typing import Any


class ComposeFixtureError(Exception):
    """Base exception with a structured error payload."""

    error_code: str = "COMPOSE_FIXTURE_ERROR"
    message: str = "Compose fixture failed"

    def __init__(
        self,
        message: str | None = None,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.message = message or self.message
        self.error_code = error_code or self.error_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a plain dict for reports."""
        return {
            "error": self.error_code,
            "message": self.message,
            **({"details": self.details} if self.details else {}),
        }


class DockerEnvironmentError(ComposeFixtureError):
    """Docker engine or compose tool missing or not usable."""

    error_code = "ENVIRONMENT_NOT_READY"
    message = (
        "It seems your environment is not properly set up. "
        "Check that 'docker info' and 'docker compose version' run properly."
    )


class ToolInvocationError(ComposeFixtureError):
    """External command exited with a non-zero status."""

    error_code = "TOOL_INVOCATION_FAILED"
    message = "External command failed"

    @property
    def returncode(self) -> int | None:
        return self.details.get("returncode")

    @property
    def output(self) -> str:
        """Captured stdout and stderr of the failed command."""
        parts = [self.details.get("stdout", ""), self.details.get("stderr", "")]
        return "\n".join(p for p in parts if p)

    def __str__(self) -> str:
        output = self.output
        if not output:
            return self.message
        return f"{self.message}\n{output}"


class ContainerStateError(ComposeFixtureError):
    """Expected container missing, unaddressable, or not resolvable."""

    error_code = "CONTAINER_STATE"
    message = "Unexpected container state"


class ConnectivityTimeoutError(ComposeFixtureError):
    """Readiness deadline exceeded."""

    error_code = "CONNECTIVITY_TIMEOUT"
    message = "Service did not become ready in time"


class FixtureStateError(ComposeFixtureError):
    """Fixture used out of order (lookup before setup, setup twice)."""

    error_code = "FIXTURE_STATE"
    message = "Fixture is not in a state that allows this operation"

"""
Process Invocation - Run external commands and capture their output.

Every command runs synchronously with captured text output and must exit
with status 0. Failures are treated as systemic: nothing here retries.
"""

from __future__ import annotations

import os
import shlex
import subprocess
from dataclasses import dataclass
from typing import Mapping, Sequence

from composefixture.core.exceptions import DockerEnvironmentError, ToolInvocationError
from composefixture.core.logging import get_logger

logger = get_logger("process")


@dataclass(frozen=True)
class ProcessResult:
    """Outcome of a finished command."""

    args: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str = ""

    @property
    def output(self) -> str:
        """Stripped stdout."""
        return self.stdout.strip()

    def lines(self) -> list[str]:
        """Non-empty stdout lines, stripped."""
        return [line.strip() for line in self.stdout.splitlines() if line.strip()]

    @property
    def command(self) -> str:
        return shlex.join(self.args)


class ProcessInvoker:
    """
    Execute command lines and insist on a zero exit status.

    Usage:
        invoker = ProcessInvoker()
        result = invoker.run(["docker", "info"])
        print(result.output)
    """

    def __init__(self, timeout: float | None = None):
        self.timeout = timeout

    def run(
        self,
        args: Sequence[str],
        env: Mapping[str, str] | None = None,
        cwd: str | os.PathLike[str] | None = None,
    ) -> ProcessResult:
        """
        Run a command and return its captured output.

        Args:
            args: Command line in argv form
            env: Variables overlaid on the current environment
            cwd: Working directory of the child process

        Raises:
            ToolInvocationError: non-zero exit status or timeout
            DockerEnvironmentError: the executable cannot be started at all
        """
        argv = tuple(str(a) for a in args)
        command = shlex.join(argv)

        child_env = None
        if env:
            child_env = {**os.environ, **env}

        try:
            completed = subprocess.run(
                argv,
                capture_output=True,
                text=True,
                env=child_env,
                cwd=cwd,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise ToolInvocationError(
                f"Command timed out after {self.timeout}s: {command}",
                details={
                    "command": command,
                    "stdout": _decode(e.stdout),
                    "stderr": _decode(e.stderr),
                },
            ) from e
        except OSError as e:
            # Missing binary, permission problems: not something a retry fixes
            raise DockerEnvironmentError(
                f"Cannot run command {command}: {e}",
                details={"command": command},
            ) from e

        result = ProcessResult(
            args=argv,
            returncode=completed.returncode,
            stdout=completed.stdout or "",
            stderr=completed.stderr or "",
        )
        logger.debug("Command %s exited %d: %s", command, result.returncode, result.output)

        if result.returncode != 0:
            raise ToolInvocationError(
                f"Command exited with status {result.returncode}: {command}",
                details={
                    "command": command,
                    "returncode": result.returncode,
                    "stdout": result.stdout,
                    "stderr": result.stderr,
                },
            )

        return result


def current_user_id() -> str:
    """Numeric id of the user running this process."""
    return str(os.getuid())


def _decode(value: bytes | str | None) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value

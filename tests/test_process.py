"""Tests for the process invoker (runs real /bin/sh commands)."""

import os

import pytest

from composefixture.core.exceptions import DockerEnvironmentError, ToolInvocationError
from composefixture.process import ProcessInvoker, ProcessResult, current_user_id


class TestProcessInvoker:
    """Tests for ProcessInvoker.run."""

    def test_captures_stdout(self):
        """Output of a successful command is captured."""
        result = ProcessInvoker().run(["sh", "-c", "echo one; echo; echo two"])

        assert result.returncode == 0
        assert result.lines() == ["one", "two"]
        assert result.output == "one\n\ntwo"

    def test_non_zero_exit_raises_with_output(self):
        """Non-zero exit raises ToolInvocationError carrying the captured output."""
        with pytest.raises(ToolInvocationError) as exc_info:
            ProcessInvoker().run(["sh", "-c", "echo partial; echo broken >&2; exit 3"])

        error = exc_info.value
        assert error.returncode == 3
        assert "partial" in error.output
        assert "broken" in error.output
        assert "broken" in str(error)

    def test_environment_is_overlaid(self):
        """Extra variables reach the child while the parent environment is kept."""
        result = ProcessInvoker().run(
            ["sh", "-c", 'echo "$COMPOSE_FIXTURE_PROBE:$PATH"'],
            env={"COMPOSE_FIXTURE_PROBE": "hello"},
        )

        probe, _, path = result.output.partition(":")
        assert probe == "hello"
        assert path == os.environ["PATH"]

    def test_missing_executable_is_environment_error(self):
        """A command that cannot be started points at the environment."""
        with pytest.raises(DockerEnvironmentError):
            ProcessInvoker().run(["definitely-not-a-real-binary-4711"])

    def test_timeout_raises_tool_error(self):
        """A configured timeout turns a hanging command into a ToolInvocationError."""
        with pytest.raises(ToolInvocationError) as exc_info:
            ProcessInvoker(timeout=0.2).run(["sh", "-c", "sleep 5"])

        assert "timed out" in exc_info.value.message


def test_process_result_command():
    result = ProcessResult(args=("docker", "ps", "--format", "{{.ID}}\t{{.Ports}}"), returncode=0, stdout="")
    assert result.command.startswith("docker ps --format")
    assert result.lines() == []


def test_current_user_id_is_numeric():
    assert current_user_id() == str(os.getuid())
    assert current_user_id().isdigit()

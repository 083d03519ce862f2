"""Tests for ComposeRunner command construction and container inspection."""

import os
import socket

import pytest

from composefixture.compose import ComposeRunner, check_environment, reset_environment_check
from composefixture.core.exceptions import (
    ContainerStateError,
    DockerEnvironmentError,
    ToolInvocationError,
)
from composefixture.process import ProcessResult


# =============================================================================
# Command construction
# =============================================================================


class TestExecute:
    """Tests for the compose command line and environment."""

    def test_command_carries_file_and_project(self, runner, fake_docker, compose_file):
        runner.execute("config", "--services")

        argv, _ = fake_docker.calls[-1]
        assert argv == [
            "docker", "compose",
            "-f", str(compose_file.resolve()),
            "-p", "unit_test",
            "config", "--services",
        ]

    def test_project_is_optional(self, compose_file, fake_docker, settings, override):
        runner = ComposeRunner(compose_file, invoker=fake_docker, settings=settings, override=override)
        runner.execute("down")

        argv, _ = fake_docker.calls[-1]
        assert "-p" not in argv

    def test_environment_variables(self, runner, fake_docker, compose_file):
        """Directory, user id and user pairs reach every compose process."""
        runner.execute("config", "--services")

        _, env = fake_docker.calls[-1]
        assert env["DIRECTORY"] == str(compose_file.resolve().parent)
        assert env["CURRENT_USER_ID"] == str(os.getuid())
        assert env["ALPINE_VERSION"] == "3.12.0"

    def test_environment_variable_names_are_configurable(self, compose_file, fake_docker, settings, override):
        settings = settings.model_copy(update={"directory_env_var": "COMPOSE_DIR", "user_id_env_var": "HOST_UID"})
        runner = ComposeRunner(compose_file, invoker=fake_docker, settings=settings, override=override)

        env = runner.process_environment()
        assert "COMPOSE_DIR" in env
        assert "HOST_UID" in env
        assert "DIRECTORY" not in env

    def test_legacy_compose_binary(self, compose_file, fake_docker, settings, override):
        settings = settings.model_copy(update={"compose_command": "docker-compose"})
        runner = ComposeRunner(compose_file, invoker=fake_docker, settings=settings, override=override)
        assert runner.settings.compose_argv == ["docker-compose"]

    def test_missing_file(self, tmp_path, fake_docker, settings):
        with pytest.raises(FileNotFoundError):
            ComposeRunner(tmp_path / "nope.yaml", invoker=fake_docker, settings=settings)

    def test_empty_project_name(self, compose_file, fake_docker, settings):
        with pytest.raises(ValueError):
            ComposeRunner(compose_file, project_name="", invoker=fake_docker, settings=settings)


# =============================================================================
# Lifecycle
# =============================================================================


class TestLifecycle:
    """Tests for up/start/stop/down."""

    def test_up_returns_declared_names(self, runner, fake_docker):
        names = runner.up(force_recreate=False)

        assert names == ["zookeeper", "kafka"]
        assert fake_docker.compose_calls[0] == ["up", "-d", "--no-recreate"]
        assert fake_docker.compose_calls[1] == ["config", "--services"]

    def test_up_force_recreate_flag(self, runner, fake_docker):
        runner.up(force_recreate=True)
        assert fake_docker.compose_calls[0] == ["up", "-d", "--force-recreate"]

    def test_start_describes_every_service(self, runner, override):
        """One Service per declared name, each with name and internal address."""
        services = runner.start(force_recreate=False)

        assert set(services) == {"zookeeper", "kafka"}
        zk = services["zookeeper"]
        assert zk.name == "zookeeper"
        assert zk.id == "zookeeper-container"
        assert zk.internal_ip == "172.18.0.2"
        assert zk.external_ip == "127.0.0.1"
        assert zk.port_mappings == {2181: 32768}
        assert zk.port(2888) == 2888

        kafka = services["kafka"]
        assert kafka.internal_ip == "172.18.0.3"
        assert kafka.port_mappings == {}

    def test_reuse_keeps_container_identity(self, runner):
        first = runner.start(force_recreate=False)["zookeeper"].id
        second = runner.start(force_recreate=False)["zookeeper"].id
        assert first == second

    def test_recreate_changes_container_identity(self, runner):
        first = runner.start(force_recreate=False)["zookeeper"].id
        second = runner.start(force_recreate=True)["zookeeper"].id
        assert first != second

    def test_names_are_installed(self, runner, override):
        runner.start()

        assert override.lookup("zookeeper") == "172.18.0.2"
        assert override.lookup("kafka") == "172.18.0.3"
        assert runner.installed_names == ["kafka", "zookeeper"]
        assert socket.gethostbyname("zookeeper") == "172.18.0.2"

    def test_override_can_be_disabled(self, compose_file, fake_docker, settings, override):
        settings = settings.model_copy(update={"override_resolution": False})
        runner = ComposeRunner(compose_file, invoker=fake_docker, settings=settings, override=override)

        runner.start()

        assert override.names() == []
        assert runner.installed_names == []

    def test_stop_then_start_refreshes(self, runner, fake_docker):
        """A restarted service picks up its new address in the same handle."""
        zk = runner.start()["zookeeper"]
        fake_docker.ip_after_restart["zookeeper"] = "172.18.0.9"

        zk.stop()
        assert fake_docker.compose_calls[-1] == ["stop", "zookeeper"]
        assert zk.running is False

        zk.start()
        assert ["start", "zookeeper"] in fake_docker.compose_calls
        assert zk.running is True
        assert zk.internal_ip == "172.18.0.9"
        assert runner.override.lookup("zookeeper") == "172.18.0.9"

    def test_down(self, runner, fake_docker):
        runner.start()
        runner.down()
        assert fake_docker.compose_calls[-1] == ["down"]

    def test_tool_failure_propagates(self, runner, fake_docker):
        fake_docker.fail_on.add("up")

        with pytest.raises(ToolInvocationError) as exc_info:
            runner.start()
        assert "up failed" in exc_info.value.output

    def test_repeated_start_keeps_one_hold(self, runner, override):
        runner.start()
        runner.start()

        assert override.holders("zookeeper") == 1
        runner.release_names()
        assert override.lookup("zookeeper") is None

    def test_release_names(self, runner, override):
        runner.start()
        runner.release_names()

        assert override.names() == []
        assert runner.installed_names == []

    def test_release_keeps_superseded_names(self, runner, override):
        """A name taken over by someone else is left alone."""
        runner.start()
        override.install("zookeeper", "10.1.1.1")

        runner.release_names()

        assert override.lookup("zookeeper") == "10.1.1.1"
        assert override.lookup("kafka") is None


# =============================================================================
# Container inspection
# =============================================================================


class TestDescribe:
    """Tests for describe()."""

    def test_no_container_is_state_error(self, runner, fake_docker):
        """A container that terminated early cannot be described."""
        runner.up()
        fake_docker.containers["zookeeper"].running = False

        with pytest.raises(ContainerStateError) as exc_info:
            runner.describe("zookeeper")
        assert exc_info.value.details["service"] == "zookeeper"

    def test_ps_query_uses_label_and_format(self, runner, fake_docker):
        runner.up()
        runner.describe("zookeeper")

        ps = next(argv for argv, _ in fake_docker.calls if argv[:2] == ["docker", "ps"])
        assert "label=com.docker.compose.service=zookeeper" in ps
        assert "id=zookeeper-container" in ps
        assert ps[ps.index("--format") + 1] == "{{.ID}}\t{{.Ports}}"

    def test_no_address_is_state_error(self, runner, fake_docker):
        runner.up()
        fake_docker.containers["zookeeper"].ip = ""

        with pytest.raises(ContainerStateError):
            runner.describe("zookeeper")

    def test_first_address_across_networks(self, runner, fake_docker):
        fake_docker.containers["zookeeper"].ip = " 172.18.0.2 172.19.0.5"
        runner.up()

        assert runner.describe("zookeeper").internal_ip == "172.18.0.2"


# =============================================================================
# Environment check
# =============================================================================


class StubInvoker:
    def __init__(self, error=None):
        self.error = error
        self.calls = []

    def run(self, args, env=None, cwd=None):
        self.calls.append(list(args))
        if self.error:
            raise self.error
        return ProcessResult(args=tuple(args), returncode=0, stdout="Docker Compose version v2.24.0\n")


class TestCheckEnvironment:
    """Tests for check_environment."""

    @pytest.fixture
    def docker_client(self, monkeypatch):
        from unittest.mock import MagicMock

        client = MagicMock()
        monkeypatch.setattr("composefixture.compose.docker.from_env", lambda: client)
        return client

    def test_checks_once(self, docker_client, settings):
        invoker = StubInvoker()

        check_environment(settings, invoker)
        check_environment(settings, invoker)

        docker_client.ping.assert_called_once()
        assert invoker.calls == [["docker", "compose", "version"]]

    def test_force_rechecks(self, docker_client, settings):
        invoker = StubInvoker()
        check_environment(settings, invoker)
        check_environment(settings, invoker, force=True)
        assert len(invoker.calls) == 2

    def test_engine_unreachable(self, docker_client, settings):
        from docker.errors import DockerException

        docker_client.ping.side_effect = DockerException("socket missing")

        with pytest.raises(DockerEnvironmentError) as exc_info:
            check_environment(settings, StubInvoker())
        assert "socket missing" in exc_info.value.details["cause"]

    def test_compose_broken(self, docker_client, settings):
        invoker = StubInvoker(error=ToolInvocationError("exit 1", details={"returncode": 1}))

        with pytest.raises(DockerEnvironmentError):
            check_environment(settings, invoker)

    def test_failure_is_not_cached(self, docker_client, settings):
        with pytest.raises(DockerEnvironmentError):
            check_environment(settings, StubInvoker(error=ToolInvocationError("exit 1")))

        check_environment(settings, StubInvoker())
        reset_environment_check()

"""
Docker Compose Fixture - Run staged compose files around a test run.

An environment is described as an ordered list of stages. Each stage is one
compose file plus options and startup callbacks. Stages run one by one: all
containers of a stage are up and all its callbacks returned before the next
stage starts, so a later stage can depend on an earlier one being usable.

Usage:
    compose = (
        DockerCompose.builder(__file__)
        .file("docker-compose/zookeepers_1.yaml")      # Stage 1
        .after_start(port_open("zookeeper-1", 2181))
        .after_start(port_open("zookeeper-2", 2181))
        .project_name("docker_compose_test")
        .file("docker-compose/zookeepers_2.yaml")      # Stage 2
        .after_start(port_open("zookeeper-3", 2181))
        .project_name("docker_compose_test")
        .build()
    )

    compose.setup()
    zk = compose.get_service("zookeeper-1")
    ...
    compose.teardown()
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from enum import Enum
from functools import partial
from pathlib import Path
from types import MappingProxyType
from typing import Callable, Iterable, Mapping, Protocol

from composefixture.compose import ComposeRunner, check_environment
from composefixture.core.config import Settings, get_settings
from composefixture.core.exceptions import FixtureStateError
from composefixture.core.logging import get_logger, stage_var
from composefixture.service import Service
from composefixture.wait import StartupCallback

logger = get_logger("fixture")


class FixtureState(str, Enum):
    """Lifecycle of a fixture."""

    NOT_STARTED = "not_started"
    RUNNING = "running"
    STOPPED = "stopped"


@dataclass(frozen=True)
class StageSpec:
    """One compose file with its options. Immutable once built."""

    file: Path
    project_name: str | None = None
    # Recreate containers even when matching ones already run (--force-recreate)
    force_recreate: bool = False
    # Run `down` at teardown; otherwise containers are left for later runs
    force_down: bool = False
    environment: Mapping[str, str] = field(default_factory=dict)
    startup_callbacks: tuple[StartupCallback, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "file", Path(self.file))
        object.__setattr__(self, "environment", MappingProxyType(dict(self.environment)))
        object.__setattr__(self, "startup_callbacks", tuple(self.startup_callbacks))
        if self.project_name is not None and not self.project_name:
            raise ValueError("Project name must not be empty")

    def __hash__(self) -> int:
        return hash(
            (
                self.file,
                self.project_name,
                self.force_recreate,
                self.force_down,
                tuple(sorted(self.environment.items())),
                self.startup_callbacks,
            )
        )

    def __str__(self) -> str:
        options = [f"file={self.file.name}"]
        if self.project_name:
            options.append(f"project={self.project_name}")
        if self.force_recreate:
            options.append("force_recreate")
        if self.force_down:
            options.append("force_down")
        if self.startup_callbacks:
            options.append(f"callbacks={len(self.startup_callbacks)}")
        return f"Stage({', '.join(options)})"


class StageRunner(Protocol):
    """What the fixture needs from a per-stage runner."""

    def start(self, force_recreate: bool = False) -> dict[str, Service]:
        ...

    def down(self) -> None:
        ...

    def release_names(self) -> None:
        ...


RunnerFactory = Callable[[StageSpec], StageRunner]


class DockerCompose:
    """
    Starts staged compose files at setup and looks services up by name.

    ``setup()`` must be called exactly once before any lookup.
    ``teardown()`` may be called any number of times, or never.
    """

    def __init__(
        self,
        stages: Iterable[StageSpec],
        runner_factory: RunnerFactory | None = None,
        settings: Settings | None = None,
        environment_check: Callable[[], None] | None = None,
    ):
        self.stages: tuple[StageSpec, ...] = tuple(stages)
        self.settings = settings or get_settings()
        self._runner_factory = runner_factory or self._default_runner
        self._environment_check = environment_check or partial(check_environment, self.settings)
        self._runners: list[tuple[StageSpec, StageRunner]] = []
        self._services: dict[str, Service] = {}
        self._state = FixtureState.NOT_STARTED
        self._setup_attempted = False

    @staticmethod
    def builder(
        base_dir: str | os.PathLike[str] | None = None,
        settings: Settings | None = None,
    ) -> "Builder":
        """
        Start describing an environment.

        Relative compose paths resolve against ``base_dir``; pass a module's
        ``__file__`` to resolve next to the test module.
        """
        return Builder(base_dir=base_dir, settings=settings)

    @property
    def state(self) -> FixtureState:
        return self._state

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def setup(self) -> None:
        """
        Run all stages in order.

        Any failure (tool error, missing container, callback exception)
        aborts setup and propagates; stages already started can still be
        cleaned up through ``teardown()``.
        """
        if self._setup_attempted:
            raise FixtureStateError(
                "setup() can only be called once",
                details={"state": self._state.value},
            )
        self._setup_attempted = True

        self._environment_check()

        total = len(self.stages)
        for index, stage in enumerate(self.stages, start=1):
            token = stage_var.set(stage.file.name)
            try:
                logger.info("Starting compose stage %d/%d: %s", index, total, stage)
                runner = self._runner_factory(stage)
                self._runners.append((stage, runner))
                services = runner.start(stage.force_recreate)

                # Compose runs only one of two same-named services
                for name in services:
                    if name in self._services:
                        logger.warning("Multiple services with the same name '%s' detected", name)

                for callback in stage.startup_callbacks:
                    callback(dict(services))

                self._services.update(services)
                logger.info("Compose stage %d/%d ready: %s", index, total, ", ".join(services))
            finally:
                stage_var.reset(token)

        self._state = FixtureState.RUNNING

    def teardown(self) -> None:
        """
        Bring down stages flagged ``force_down`` and release hostnames.

        Best effort: failures are logged and swallowed. If the network of a
        stage is shared with other containers `down` cannot complete, and a
        killed test process never gets here, so treat this as a hint.
        """
        if self._state is FixtureState.STOPPED:
            return

        for stage, runner in self._runners:
            token = stage_var.set(stage.file.name)
            try:
                if stage.force_down:
                    logger.info("Stopping compose stage: %s", stage)
                    try:
                        runner.down()
                        logger.info("Compose stage for file %s stopped", stage.file.name)
                    except Exception as e:
                        logger.warning("Unable to stop compose stage %s: %s", stage, e)
                else:
                    logger.debug("Leaving services of %s running", stage.file.name)

                try:
                    runner.release_names()
                except Exception as e:
                    logger.warning("Unable to release hostnames of %s: %s", stage.file.name, e)
            finally:
                stage_var.reset(token)

        self._state = FixtureState.STOPPED

    def __enter__(self) -> "DockerCompose":
        self.setup()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.teardown()

    # =========================================================================
    # Lookups
    # =========================================================================

    def get_service(self, name: str) -> Service | None:
        """Service with the given name, or None if no such service exists."""
        self._require_running()
        return self._services.get(name)

    def get_services_by_prefix(self, prefix: str) -> list[Service]:
        """Services whose name starts with ``prefix`` (case-sensitive), ordered by name."""
        if prefix is None:
            raise ValueError("Prefix can not be None")
        self._require_running()
        return [
            self._services[name]
            for name in sorted(self._services)
            if name.startswith(prefix)
        ]

    def get_all_services(self) -> list[Service]:
        """Snapshot of all services, ordered by name."""
        self._require_running()
        return [self._services[name] for name in sorted(self._services)]

    def hosts(self) -> dict[str, str]:
        """Service name -> internal IP, for clients that take an explicit host map."""
        self._require_running()
        return {name: s.internal_ip for name, s in sorted(self._services.items())}

    def _require_running(self) -> None:
        if self._state is not FixtureState.RUNNING:
            raise FixtureStateError(
                f"Services are only available while the fixture runs (state: {self._state.value})",
                details={"state": self._state.value},
            )

    def _default_runner(self, stage: StageSpec) -> ComposeRunner:
        return ComposeRunner(
            stage.file,
            project_name=stage.project_name,
            environment=stage.environment,
            settings=self.settings,
        )

    def __repr__(self) -> str:
        return f"DockerCompose(stages={len(self.stages)}, state={self._state.value})"


# =============================================================================
# BUILDER
# =============================================================================


class Builder:
    """
    Collects stages; each ``file()`` call opens a new one.

    ``build()`` freezes the stages into ``StageSpec`` records; the builder
    refuses further changes afterwards.
    """

    def __init__(
        self,
        base_dir: str | os.PathLike[str] | None = None,
        settings: Settings | None = None,
    ):
        base = Path(base_dir) if base_dir is not None else None
        if base is not None and base.is_file():
            base = base.parent
        self._base_dir = base
        self._settings = settings
        self._drafts: list[dict] = []
        self._built = False

    def file(self, path: str | os.PathLike[str]) -> "StageBuilder":
        """Open a stage for the compose file at ``path``."""
        self._check_open()
        if not str(path):
            raise ValueError("Compose file path must not be empty")

        resolved = Path(path).expanduser()
        if not resolved.is_absolute() and self._base_dir is not None:
            resolved = self._base_dir / resolved
        if not resolved.is_file():
            raise FileNotFoundError(f"Compose file not found at {resolved}")

        draft = {
            "file": resolved.resolve(),
            "project_name": None,
            "force_recreate": False,
            "force_down": False,
            "environment": {},
            "startup_callbacks": [],
        }
        self._drafts.append(draft)
        return StageBuilder(self, draft)

    def build(self, **options) -> DockerCompose:
        """
        Finalize the stages and create the fixture.

        ``options`` are passed to ``DockerCompose`` (e.g. ``runner_factory``).
        """
        self._check_open()
        if not self._drafts:
            raise ValueError("At least one compose file is required")
        self._built = True
        stages = [StageSpec(**draft) for draft in self._drafts]
        self._drafts = []
        options.setdefault("settings", self._settings)
        return DockerCompose(stages, **options)

    def _check_open(self) -> None:
        if self._built:
            raise FixtureStateError("Builder was already used to build a fixture")


class StageBuilder:
    """Options of the stage opened by the last ``file()`` call."""

    def __init__(self, builder: Builder, draft: dict):
        self._builder = builder
        self._draft = draft

    def force_recreate(self) -> "StageBuilder":
        """
        Recreate containers even if matching ones are already running.

        Without this, containers with the same project and service name are
        reused, which is faster but lets state leak between runs. Volumes of
        the old container are still reused either way.
        """
        self._builder._check_open()
        self._draft["force_recreate"] = True
        return self

    def force_down(self) -> "StageBuilder":
        """
        Remove the stage's containers and networks at teardown.

        Without this, services keep running so later tests (and later runs)
        can reuse them without paying their startup time.
        """
        self._builder._check_open()
        self._draft["force_down"] = True
        return self

    def after_start(self, callback: StartupCallback) -> "StageBuilder":
        """Add a blocking callback run after the stage's containers are up, in order."""
        self._builder._check_open()
        if callback is None:
            raise ValueError("Callback must not be None")
        self._draft["startup_callbacks"].append(callback)
        return self

    def project_name(self, name: str) -> "StageBuilder":
        """Use a project name other than the compose file's directory name."""
        self._builder._check_open()
        if not name:
            raise ValueError("Project name must not be empty")
        self._draft["project_name"] = name
        return self

    def environment(self, name: str, value: str) -> "StageBuilder":
        """Pass a variable to every compose process of this stage."""
        self._builder._check_open()
        if not name:
            raise ValueError("Variable name must not be empty")
        self._draft["environment"][name] = str(value)
        return self

    def file(self, path: str | os.PathLike[str]) -> "StageBuilder":
        """Close this stage and open the next one."""
        return self._builder.file(path)

    def build(self, **options) -> DockerCompose:
        return self._builder.build(**options)

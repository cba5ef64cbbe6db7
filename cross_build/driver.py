"""
Compiler driver invocation.

Turns a resolved target plus a build profile into exactly one child process
of the compiler driver. The target's linker override is passed to the child
through its own environment; the calling process's environment is never
modified, so concurrent and repeated builds stay independent.

Per-invocation states:

    Idle -> EnvironmentPrepared -> ChildSpawned -> ChildExited
                                \\-> SpawnFailed   \\-> Cancelled

Failed builds are reported, never retried.
"""

from __future__ import annotations

import os
import shutil
import subprocess
import sys
import threading
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Final, Iterable, Mapping, Sequence

from cross_build.registry import TargetRegistry, TargetSpec
from cross_build.shared.errors import (
    BuildCancelledError,
    CrossBuildError,
    ProcessSpawnError,
    ToolchainNotFoundError,
)

DEFAULT_DRIVER: Final[str] = "cargo"
CANCEL_POLL_INTERVAL: Final[float] = 0.1
TERMINATE_TIMEOUT: Final[float] = 5.0
CANCELLED_EXIT_CODE: Final[int] = 130


def shell_exit_code(code: int) -> int:
    """Map a child return code to a process exit status.

    ``Popen`` reports death by signal N as ``-N``; shells report it as
    ``128 + N``.
    """
    return 128 - code if code < 0 else code


class BuildProfile(Enum):
    RELEASE = "release"
    DEBUG = "debug"

    @property
    def flags(self) -> tuple[str, ...]:
        if self is BuildProfile.RELEASE:
            return ("--release",)
        return ()


class InvocationState(Enum):
    IDLE = "idle"
    ENVIRONMENT_PREPARED = "environment-prepared"
    CHILD_SPAWNED = "child-spawned"
    CHILD_EXITED = "child-exited"
    SPAWN_FAILED = "spawn-failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True, slots=True)
class InvocationRequest:
    """A single build attempt: one target, one profile."""

    spec: TargetSpec
    profile: BuildProfile

    def command(self, driver: str, manifest_path: Path | None = None) -> list[str]:
        command = [driver, "build", *self.profile.flags, *self.spec.driver_args()]
        if manifest_path is not None:
            command.extend(["--manifest-path", str(manifest_path)])
        return command

    def environment(self, base: Mapping[str, str]) -> dict[str, str]:
        """Child environment: ``base`` plus the target's linker override."""
        return {**base, self.spec.linker_env_var: self.spec.linker_binary}


@dataclass
class BuildResult:
    """Outcome of a compiler driver run that exited normally."""

    target: str
    success: bool
    exit_code: int
    duration: float = 0.0


@dataclass
class BuildOutcome:
    """Result or error of one build within a concurrent batch."""

    target: str
    result: BuildResult | None = None
    error: CrossBuildError | None = None

    @property
    def success(self) -> bool:
        return self.result is not None and self.result.success

    @property
    def exit_code(self) -> int:
        if self.result is not None:
            return shell_exit_code(self.result.exit_code)
        if isinstance(self.error, BuildCancelledError):
            return CANCELLED_EXIT_CODE
        return 1


class InvocationDriver:
    """Runs the compiler driver for resolved targets.

    ``which`` and ``popen`` default to :func:`shutil.which` and
    :class:`subprocess.Popen`.
    ``on_transition`` is called with ``(target_name, state)`` on every state
    change.
    """

    def __init__(
        self,
        driver: str = DEFAULT_DRIVER,
        *,
        manifest_path: Path | None = None,
        cwd: Path | None = None,
        which: Callable[[str], str | None] | None = None,
        popen: Callable[..., subprocess.Popen] | None = None,
        on_transition: Callable[[str, InvocationState], None] | None = None,
    ) -> None:
        self.driver = driver
        self.manifest_path = manifest_path
        self.cwd = cwd
        self._which = which or shutil.which
        self._popen = popen or subprocess.Popen
        self._on_transition = on_transition

    def build(
        self,
        spec: TargetSpec,
        profile: BuildProfile = BuildProfile.RELEASE,
        *,
        cancel: threading.Event | None = None,
    ) -> BuildResult:
        """Build ``spec`` once and wait for the compiler driver to exit.

        Args:
            spec: The resolved target.
            profile: Build profile (release or debug).
            cancel: Optional event; setting it terminates the running child.

        Returns:
            The child's exit status. A non-zero exit is a normal result.

        Raises:
            ToolchainNotFoundError: If the target's linker is not on PATH.
                Raised before anything is spawned.
            ProcessSpawnError: If the compiler driver cannot be started.
            BuildCancelledError: If the build was cancelled or interrupted.
        """
        self._transition(spec, InvocationState.IDLE)

        if self._which(spec.linker_binary) is None:
            raise ToolchainNotFoundError(spec.name, spec.linker_binary, spec.linker_env_var)

        request = InvocationRequest(spec, profile)
        command = request.command(self.driver, self.manifest_path)
        env = request.environment(os.environ)
        self._transition(spec, InvocationState.ENVIRONMENT_PREPARED)

        print(f"\n$ {spec.linker_env_var}={spec.linker_binary} {' '.join(command)}")
        # On Windows, resolve the executable path to handle .cmd/.bat files
        resolved_cmd = list(command)
        if sys.platform == "win32":
            resolved = self._which(command[0])
            if resolved:
                resolved_cmd[0] = resolved

        start = time.perf_counter()
        try:
            process = self._popen(resolved_cmd, cwd=self.cwd, env=env)
        except OSError as e:
            self._transition(spec, InvocationState.SPAWN_FAILED)
            raise ProcessSpawnError(spec.name, self.driver, e.strerror or str(e)) from e
        self._transition(spec, InvocationState.CHILD_SPAWNED)

        try:
            exit_code = self._wait(process, cancel)
        except KeyboardInterrupt:
            exit_code = None
            terminate_process(process)

        if exit_code is None:
            self._transition(spec, InvocationState.CANCELLED)
            raise BuildCancelledError(spec.name)

        duration = time.perf_counter() - start
        self._transition(spec, InvocationState.CHILD_EXITED)
        return BuildResult(spec.name, exit_code == 0, exit_code, duration)

    def build_target(
        self,
        registry: TargetRegistry,
        name: str,
        profile: BuildProfile = BuildProfile.RELEASE,
    ) -> BuildResult:
        """Resolve ``name`` in ``registry`` and build it."""
        return self.build(registry.resolve(name), profile)

    def _wait(
        self, process: subprocess.Popen, cancel: threading.Event | None
    ) -> int | None:
        """Block until the child exits; None if it was cancelled."""
        if cancel is None:
            return process.wait()
        while True:
            try:
                return process.wait(timeout=CANCEL_POLL_INTERVAL)
            except subprocess.TimeoutExpired:
                if cancel.is_set():
                    terminate_process(process)
                    return None

    def _transition(self, spec: TargetSpec, state: InvocationState) -> None:
        if self._on_transition is not None:
            self._on_transition(spec.name, state)


def terminate_process(process: subprocess.Popen) -> None:
    """Stop a child gracefully, killing it if it ignores SIGTERM."""
    if process.poll() is not None:
        return
    try:
        process.terminate()
        process.wait(timeout=TERMINATE_TIMEOUT)
    except subprocess.TimeoutExpired:
        process.kill()
        process.wait()


def build_many(
    driver: InvocationDriver,
    specs: Iterable[TargetSpec],
    profile: BuildProfile = BuildProfile.RELEASE,
    *,
    cancel: threading.Event | None = None,
) -> list[BuildOutcome]:
    """Build several targets concurrently, one thread per target.

    A failing or erroring target does not stop its siblings. Ctrl+C cancels
    every running build. Outcomes are returned in input order, with repeated
    targets built once.
    """
    unique: dict[str, TargetSpec] = {}
    for spec in specs:
        unique.setdefault(spec.name, spec)

    cancel_event = cancel if cancel is not None else threading.Event()
    outcomes = [BuildOutcome(name) for name in unique]

    def run(outcome: BuildOutcome, spec: TargetSpec) -> None:
        try:
            outcome.result = driver.build(spec, profile, cancel=cancel_event)
        except CrossBuildError as e:
            outcome.error = e

    threads: list[threading.Thread] = []
    for outcome, spec in zip(outcomes, unique.values()):
        thread = threading.Thread(target=run, args=(outcome, spec), name=f"build-{spec.name}")
        thread.start()
        threads.append(thread)

    try:
        for thread in threads:
            thread.join()
    except KeyboardInterrupt:
        cancel_event.set()
        for thread in threads:
            thread.join()

    return outcomes


def summarize(outcomes: Sequence[BuildOutcome]) -> int:
    """Print a build summary and return the combined exit code."""
    print(f"\n{'=' * 60}")
    print("Build Summary")
    print("=" * 60)
    for outcome in outcomes:
        status = "[OK]" if outcome.success else "[FAIL]"
        if outcome.result is not None:
            detail = f"exit {outcome.result.exit_code}, {outcome.result.duration:.2f}s"
        else:
            detail = str(outcome.error) if outcome.error else "not run"
        print(f"  {status} {outcome.target}: {detail}")

    for outcome in outcomes:
        if not outcome.success:
            return outcome.exit_code
    return 0

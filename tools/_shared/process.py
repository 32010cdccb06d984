"""Launch cargo (and other allow-listed tools) as child processes.

:class:`ProcessRunner` resolves the executable against
``TOOLS_EXEC_ALLOWLIST``, checks any pinned SHA-256, runs the child in the
requested working directory with the caller's full environment, and records
the run through :func:`tools._shared.metrics.observe_tool_run`. Failures are
raised as :class:`ToolExecutionError` carrying a Problem Details payload.

The shared runner is swapped with :func:`set_process_runner`, e.g. in tests.
"""

from __future__ import annotations

import hashlib
import hmac
import os
import shutil
import subprocess
from collections.abc import Callable, Mapping, Sequence
from contextlib import AbstractContextManager
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from kwasm_common.logging import get_logger
from tools._shared.metrics import ToolRunObservation, observe_tool_run
from tools._shared.problem_details import (
    tool_digest_mismatch_problem_details,
    tool_disallowed_problem_details,
    tool_failure_problem_details,
    tool_missing_problem_details,
    tool_timeout_problem_details,
)
from tools._shared.settings import get_runtime_settings

if TYPE_CHECKING:
    from tools._shared.problem_details import ProblemDetailsDict
    from tools._shared.settings import ToolRuntimeSettings

__all__ = [
    "EnvironmentPolicy",
    "ExecutablePolicy",
    "InheritedEnvironment",
    "ProcessRunner",
    "ToolExecutionError",
    "ToolRunResult",
    "get_process_runner",
    "set_process_runner",
]

LOGGER = get_logger(__name__)

ObservationFactory = Callable[..., AbstractContextManager[ToolRunObservation]]


@dataclass(slots=True)
class ToolRunResult:
    """Result of a child that ran to completion.

    ``stdout`` and ``stderr`` are empty when the output went straight to the
    parent's streams instead of being captured.
    """

    command: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str
    duration_seconds: float
    timed_out: bool = False


class ToolExecutionError(RuntimeError):
    """A child could not be started, timed out, or exited non-zero under ``check``.

    ``returncode`` is ``None`` unless the child produced an exit status; a
    child killed by signal ``N`` reports ``-N``.
    """

    def __init__(
        self,
        message: str,
        *,
        command: Sequence[str],
        returncode: int | None = None,
        streams: tuple[str, str] = ("", ""),
        problem: ProblemDetailsDict | None = None,
    ) -> None:
        super().__init__(message)
        self.command: tuple[str, ...] = tuple(command)
        self.returncode = returncode
        self.stdout, self.stderr = streams
        self.problem = problem


def _sha256(path: Path) -> str:
    with path.open("rb") as handle:
        return hashlib.file_digest(handle, "sha256").hexdigest()


@dataclass(slots=True, frozen=True)
class ExecutablePolicy:
    """Resolve ``command[0]`` and enforce the allow-list and digest pins."""

    settings_loader: Callable[[], ToolRuntimeSettings] = get_runtime_settings

    def resolve(self, command: Sequence[str]) -> Path:
        """Return the absolute executable for ``command``.

        Raises
        ------
        ToolExecutionError
            When the executable is not on ``PATH``, is not allow-listed, or
            does not match its pinned digest.
        """
        settings = self.settings_loader()
        name = command[0]
        found = name if Path(name).is_absolute() else shutil.which(name)
        if found is None:
            message = f"Executable '{name}' was not found on PATH"
            problem = tool_missing_problem_details(command, executable=name, detail=message)
            raise ToolExecutionError(message, command=command, problem=problem)

        executable = Path(found)
        if not settings.is_allowed(executable):
            message = f"Executable '{executable}' is not permitted by TOOLS_EXEC_ALLOWLIST"
            LOGGER.warning(message, extra={"executable": executable.as_posix()})
            problem = tool_disallowed_problem_details(
                command, executable=executable, allowlist=settings.exec_allowlist
            )
            raise ToolExecutionError(message, command=command, problem=problem)

        expected = settings.expected_digest_for(executable)
        if expected is not None:
            self._verify_digest(executable, expected, command)
        return executable

    @staticmethod
    def _verify_digest(executable: Path, expected: str, command: Sequence[str]) -> None:
        try:
            actual = _sha256(executable)
        except FileNotFoundError as exc:
            message = f"Cannot verify the digest of missing executable '{executable}'"
            problem = tool_digest_mismatch_problem_details(
                command,
                executable=executable,
                expected_digest=expected,
                actual_digest=None,
                reason="executable-missing",
            )
            raise ToolExecutionError(message, command=command, problem=problem) from exc

        if not hmac.compare_digest(actual, expected):
            message = f"Executable '{executable}' does not match its pinned SHA-256"
            LOGGER.error(
                message,
                extra={"executable": executable.as_posix(), "expected_digest": expected},
            )
            problem = tool_digest_mismatch_problem_details(
                command,
                executable=executable,
                expected_digest=expected,
                actual_digest=actual,
                reason="digest-mismatch",
            )
            raise ToolExecutionError(message, command=command, problem=problem)


class EnvironmentPolicy(Protocol):
    """Builds the environment a child is started with."""

    def build(self, overrides: Mapping[str, str] | None) -> dict[str, str]: ...


@dataclass(slots=True, frozen=True)
class InheritedEnvironment:
    """Give the child the parent's whole environment, with ``overrides`` on top.

    cargo and the build scripts it runs read arbitrary variables (proxies,
    ``PKG_CONFIG_PATH``, ``CC``, ``SSL_CERT_FILE``...), so nothing is filtered.
    """

    def build(self, overrides: Mapping[str, str] | None) -> dict[str, str]:
        environment = dict(os.environ)
        if overrides:
            environment.update(overrides)
        return environment


def _text(stream: str | bytes | None) -> str:
    if isinstance(stream, bytes):
        return stream.decode("utf-8", errors="replace")
    return stream or ""


@dataclass(slots=True)
class ProcessRunner:
    """Run tooling children under the executable policy, observed and logged."""

    policy: ExecutablePolicy = field(default_factory=ExecutablePolicy)
    environment: EnvironmentPolicy = field(default_factory=InheritedEnvironment)
    observer_factory: ObservationFactory = observe_tool_run

    def run(
        self,
        command: Sequence[str],
        *,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
        timeout: float | None = None,
        check: bool = False,
        capture_output: bool = True,
    ) -> ToolRunResult:
        """Run ``command`` to completion.

        Parameters
        ----------
        command : Sequence[str]
            Executable followed by its arguments.
        cwd : Path | None, optional
            Working directory of the child. The parent's own working directory
            is never changed.
        env : Mapping[str, str] | None, optional
            Variables set on top of the inherited environment.
        timeout : float | None, optional
            Seconds before the child is killed; ``None`` waits indefinitely.
        check : bool, optional
            Raise on a non-zero exit status instead of returning it.
        capture_output : bool, optional
            Capture stdout/stderr into the result. When false the child
            writes straight to the parent's streams.

        Raises
        ------
        ToolExecutionError
            For an empty command, a rejected or missing executable, a missing
            ``cwd``, a timeout, or (with ``check``) a non-zero exit.
        """
        if not command:
            message = "Command must contain at least one argument"
            raise ToolExecutionError(message, command=())

        argv = (str(self.policy.resolve(command)), *command[1:])
        tool = Path(command[0]).name
        with self.observer_factory(argv, cwd=cwd, timeout=timeout) as observation:
            try:
                completed = subprocess.run(  # noqa: S603 - argv[0] passed ExecutablePolicy
                    argv,
                    cwd=cwd,
                    env=self.environment.build(env),
                    text=True,
                    capture_output=capture_output,
                    timeout=timeout,
                    check=False,
                )
            except subprocess.TimeoutExpired as exc:
                observation.failure("timeout", timed_out=True)
                message = f"'{tool}' timed out after {timeout} seconds"
                raise ToolExecutionError(
                    message,
                    command=command,
                    streams=(_text(exc.stdout), _text(exc.stderr)),
                    problem=tool_timeout_problem_details(command, timeout=timeout),
                ) from exc
            except (FileNotFoundError, NotADirectoryError) as exc:
                observation.failure("missing_executable")
                message = f"Could not start '{tool}': {exc}"
                raise ToolExecutionError(
                    message,
                    command=command,
                    problem=tool_missing_problem_details(
                        command, executable=command[0], detail=str(exc)
                    ),
                ) from exc

            stdout, stderr = _text(completed.stdout), _text(completed.stderr)
            if completed.returncode == 0:
                observation.success(0)
            else:
                observation.failure("non_zero_exit", returncode=completed.returncode)
                if check:
                    detail = stderr.strip() or f"'{tool}' exited with status {completed.returncode}"
                    raise ToolExecutionError(
                        detail,
                        command=command,
                        returncode=completed.returncode,
                        streams=(stdout, stderr),
                        problem=tool_failure_problem_details(
                            command, returncode=completed.returncode, detail=detail
                        ),
                    )

            return ToolRunResult(
                command=argv,
                returncode=completed.returncode,
                stdout=stdout,
                stderr=stderr,
                duration_seconds=observation.elapsed(),
            )


_runner = ProcessRunner()


def get_process_runner() -> ProcessRunner:
    return _runner


def set_process_runner(runner: ProcessRunner) -> ProcessRunner:
    """Install ``runner`` as the shared runner and return the previous one."""
    global _runner  # noqa: PLW0603
    previous, _runner = _runner, runner
    return previous

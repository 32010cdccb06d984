#!/usr/bin/env python3
"""Run ``cargo +nightly clippy --all`` over every crate of the workspace.

Crates are linted one after another in the order given by
:data:`tools.lint.clippy_targets.CLIPPY_TARGETS`. Each clippy invocation runs
with the crate directory as its working directory and its output goes straight
to the terminal. The run stops at the first crate that is missing or fails
clippy; later crates are never touched.

Examples
--------
Run from a checkout (the root is the parent of ``devel/``)::

    python devel/clippy.py

Print the invocations for another checkout without running them::

    kwasm-clippy --root /repo --dry-run

Keep a machine-readable report next to cargo's terminal output::

    kwasm-clippy --json clippy-report.json

The exit status is 0 when every crate is clean, otherwise the failing status
(``128 + N`` when clippy was killed by signal ``N``).
"""

from __future__ import annotations

import argparse
import json
import logging
import shlex
import sys
import uuid
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from kwasm_common.errors import ConfigurationError, ErrorCode, LintAbortedError
from kwasm_common.logging import CorrelationContext, get_logger, setup_logging, with_fields
from tools._shared.paths import Paths
from tools._shared.problem_details import (
    lint_target_missing_problem_details,
    render_problem,
    tool_failure_problem_details,
)
from tools._shared.process import ToolExecutionError, get_process_runner
from tools._shared.settings import (
    ClippySettings,
    SettingsError,
    get_clippy_settings,
    load_settings,
)
from tools._shared.validation import ValidationError, require_directory
from tools.lint.clippy_targets import CLIPPY_TARGETS, LintTarget

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from kwasm_common.logging import LoggerAdapter
    from tools._shared.problem_details import JsonValue, ProblemDetailsDict
    from tools._shared.process import ToolRunResult

LOGGER = get_logger(__name__)

__all__ = (
    "ClippyOrchestrator",
    "CommandRunner",
    "LintReport",
    "LintRunState",
    "TargetOutcome",
    "build_parser",
    "cli",
    "main",
)


class LintRunState(StrEnum):
    """Lifecycle of a lint run: ``running`` until it completes or aborts."""

    RUNNING = "running"
    COMPLETED = "completed"
    ABORTED = "aborted"


class CommandRunner(Protocol):
    """The part of :class:`tools._shared.process.ProcessRunner` the orchestrator uses."""

    def run(
        self,
        command: Sequence[str],
        *,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
        timeout: float | None = None,
        check: bool = False,
        capture_output: bool = True,
    ) -> ToolRunResult: ...


@dataclass(frozen=True, slots=True)
class TargetOutcome:
    """Result of linting one crate.

    ``returncode`` is ``None`` when clippy never produced an exit status
    (executable missing or disallowed, or timed out).
    """

    target: LintTarget
    directory: Path
    command: tuple[str, ...]
    returncode: int | None
    duration_seconds: float | None

    @property
    def succeeded(self) -> bool:
        return self.returncode == 0

    def to_payload(self) -> dict[str, JsonValue]:
        return {
            "target": self.target.relative_path,
            "directory": self.directory.as_posix(),
            "command": list(self.command),
            "returncode": self.returncode,
            "duration_seconds": self.duration_seconds,
        }


@dataclass(slots=True)
class LintReport:
    """Outcome of a whole lint run, in execution order."""

    root: Path
    state: LintRunState = LintRunState.RUNNING
    outcomes: list[TargetOutcome] = field(default_factory=list)
    failed_target: LintTarget | None = None
    problem: ProblemDetailsDict | None = None

    def complete(self) -> None:
        if self.state is not LintRunState.RUNNING:
            message = f"Cannot complete a lint run in state {self.state}"
            raise RuntimeError(message)
        self.state = LintRunState.COMPLETED

    def abort(self, target: LintTarget, problem: ProblemDetailsDict) -> None:
        if self.state is not LintRunState.RUNNING:
            message = f"Cannot abort a lint run in state {self.state}"
            raise RuntimeError(message)
        self.state = LintRunState.ABORTED
        self.failed_target = target
        self.problem = problem

    @property
    def exit_code(self) -> int:
        """Return 0 on success, the failing clippy status, or 1 for any other failure.

        A clippy killed by signal ``N`` (returncode ``-N``) maps to ``128 + N``,
        the status a shell reports for it.
        """
        if self.state is LintRunState.COMPLETED:
            return 0
        if self.state is LintRunState.RUNNING:
            return 1
        for outcome in reversed(self.outcomes):
            if outcome.target == self.failed_target and outcome.returncode:
                code = outcome.returncode
                return 128 - code if code < 0 else code
        return 1

    def to_payload(self) -> dict[str, JsonValue]:
        payload: dict[str, JsonValue] = {
            "root": self.root.as_posix(),
            "state": self.state.value,
            "exit_code": self.exit_code,
            "outcomes": [outcome.to_payload() for outcome in self.outcomes],
        }
        if self.failed_target is not None:
            payload["failed_target"] = self.failed_target.relative_path
        if self.problem is not None:
            payload["problem"] = self.problem
        return payload


def _default_runner() -> CommandRunner:
    return get_process_runner()


@dataclass(slots=True)
class ClippyOrchestrator:
    """Lint ``targets`` under ``root`` sequentially, stopping at the first failure."""

    root: Path
    targets: Sequence[LintTarget] = CLIPPY_TARGETS
    settings: ClippySettings = field(default_factory=get_clippy_settings)
    runner: CommandRunner = field(default_factory=_default_runner)
    logger: LoggerAdapter = field(default_factory=lambda: LOGGER)

    def command(self) -> tuple[str, ...]:
        """Return the clippy command run in every target directory."""
        return ("cargo", f"+{self.settings.toolchain}", "clippy", *self.settings.args)

    def plan(self) -> list[tuple[LintTarget, Path, tuple[str, ...]]]:
        """Return the ``(target, directory, command)`` sequence without running anything."""
        command = self.command()
        return [(target, target.resolve(self.root), command) for target in self.targets]

    def run(self) -> LintReport:
        """Lint every target in order and return the report.

        Failures never raise; they abort the run and are recorded on the
        report. Use :meth:`run_or_raise` to turn an aborted run into an
        exception.
        """
        report = LintReport(root=self.root)
        command = self.command()
        with CorrelationContext(uuid.uuid4().hex):
            logger = with_fields(self.logger, operation="clippy", root=self.root.as_posix())
            logger.info(
                "Lint run started",
                extra={"status": "started", "target_count": len(self.targets)},
            )
            for position, target in enumerate(self.targets, start=1):
                if not self._lint_target(report, target, position, command, logger):
                    break
            else:
                report.complete()

            if report.state is LintRunState.COMPLETED:
                logger.info("Lint run completed", extra={"linted": len(report.outcomes)})
            else:
                logger.error(
                    "Lint run aborted",
                    extra={
                        "failed_target": str(report.failed_target),
                        "exit_code": report.exit_code,
                        "skipped": len(self.targets) - len(report.outcomes),
                    },
                )
        return report

    def run_or_raise(self) -> LintReport:
        """Run like :meth:`run` but raise :class:`LintAbortedError` when the run aborts."""
        report = self.run()
        if report.state is LintRunState.COMPLETED:
            return report
        # A target that never got an outcome failed before clippy could start.
        attempted = any(outcome.target == report.failed_target for outcome in report.outcomes)
        code = ErrorCode.LINT_FAILED if attempted else ErrorCode.LINT_TARGET_MISSING
        message = f"Lint run aborted at '{report.failed_target}'"
        raise LintAbortedError(
            message,
            report=report,
            code=code,
            context={"failed_target": str(report.failed_target), "exit_code": report.exit_code},
        )

    def _lint_target(
        self,
        report: LintReport,
        target: LintTarget,
        position: int,
        command: tuple[str, ...],
        logger: LoggerAdapter,
    ) -> bool:
        candidate = target.resolve(self.root)
        try:
            directory = require_directory(candidate, description="lint target")
        except ValidationError as exc:
            logger.error(
                "Lint target unavailable",
                extra={"target": target.relative_path, "directory": candidate.as_posix()},
            )
            report.abort(
                target,
                lint_target_missing_problem_details(
                    target=target.relative_path, directory=candidate, detail=str(exc)
                ),
            )
            return False

        logger.info(
            "Linting target",
            extra={
                "status": "started",
                "target": target.relative_path,
                "position": position,
                "directory": directory.as_posix(),
            },
        )
        try:
            result = self.runner.run(
                command,
                cwd=directory,
                timeout=self.settings.timeout_seconds,
                check=True,
                capture_output=False,
            )
        except ToolExecutionError as exc:
            report.outcomes.append(
                TargetOutcome(
                    target=target,
                    directory=directory,
                    command=command,
                    returncode=exc.returncode,
                    duration_seconds=None,
                )
            )
            problem = exc.problem or tool_failure_problem_details(
                command, returncode=exc.returncode or 1, detail=str(exc)
            )
            report.abort(target, problem)
            logger.error(
                "Clippy failed",
                extra={
                    "target": target.relative_path,
                    "returncode": exc.returncode,
                    "problem_type": str(problem.get("type")),
                },
            )
            return False

        report.outcomes.append(
            TargetOutcome(
                target=target,
                directory=directory,
                command=command,
                returncode=result.returncode,
                duration_seconds=result.duration_seconds,
            )
        )
        logger.info(
            "Target clean",
            extra={
                "target": target.relative_path,
                "duration_ms": result.duration_seconds * 1000,
            },
        )
        return True


def build_parser() -> argparse.ArgumentParser:
    """Return the argument parser for the clippy runner."""
    parser = argparse.ArgumentParser(
        description="Run cargo clippy over every crate of the workspace, stopping at the first failure.",
    )
    parser.add_argument(
        "--root",
        type=Path,
        default=None,
        help="Existing repository root (default: parent of the directory holding the entry point)",
    )
    parser.add_argument(
        "--toolchain",
        default=None,
        help="rustup toolchain passed as '+<toolchain>' (default: CLIPPY_TOOLCHAIN or nightly)",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Per-crate timeout in seconds (default: CLIPPY_TIMEOUT_SECONDS or none)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Print the invocations without running them",
    )
    parser.add_argument(
        "--json",
        nargs="?",
        const="-",
        default=None,
        metavar="PATH",
        help=(
            "Write the run report (or the configuration problem) as JSON to PATH; "
            "without PATH, or with '-', it goes to stdout after cargo's own output"
        ),
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Threshold for the structured logs written to stderr",
    )
    return parser


def _load_clippy_settings(toolchain: str | None, timeout: float | None) -> ClippySettings:
    overrides: dict[str, object] = {}
    if toolchain is not None:
        overrides["toolchain"] = toolchain
    if timeout is not None:
        overrides["timeout_seconds"] = timeout
    if not overrides:
        return get_clippy_settings()

    def clippy_settings() -> ClippySettings:
        return ClippySettings(**overrides)  # type: ignore[arg-type]

    return load_settings(clippy_settings)


def _resolve_root(root: Path | None, entry_point: Path | None) -> Path:
    if root is not None:
        explicit = Paths.from_root(root).repo_root
        try:
            return require_directory(explicit, description="lint root")
        except ValidationError as exc:
            raise ConfigurationError(
                str(exc), cause=exc, context={"root": explicit.as_posix()}
            ) from exc
    if entry_point is not None:
        return Paths.from_entry_point(entry_point).repo_root
    return Path.cwd().resolve()


def _write_json(destination: str | None, document: str) -> None:
    if destination is None:
        return
    if destination == "-":
        sys.stdout.write(document + "\n")
    else:
        Path(destination).write_text(document + "\n", encoding="utf-8")


def main(argv: Sequence[str] | None = None, *, entry_point: Path | None = None) -> int:
    """Lint the workspace crates and return the process exit status.

    Parameters
    ----------
    argv : Sequence[str] | None, optional
        Command-line arguments; defaults to ``sys.argv[1:]``.
    entry_point : Path | None, optional
        Path of the invoking script. The root is the parent of its directory
        unless ``--root`` is given. Without either, the current directory is
        the root.

    Returns
    -------
    int
        0 when every crate is clean, otherwise non-zero.
    """
    args = build_parser().parse_args(list(argv) if argv is not None else sys.argv[1:])
    setup_logging(level=getattr(logging, str(args.log_level)))

    try:
        settings = _load_clippy_settings(args.toolchain, args.timeout)
    except SettingsError as exc:
        LOGGER.exception("Invalid clippy settings", extra={"errors": list(exc.errors)})
        _write_json(args.json, render_problem(exc.problem))
        return 2

    try:
        root = _resolve_root(args.root, entry_point)
    except ConfigurationError as exc:
        LOGGER.exception("Invalid lint root", extra=exc.context)
        problem = exc.to_problem_details(instance="urn:lint:root", title="Invalid lint root")
        _write_json(args.json, json.dumps(problem, default=str))
        return 2

    orchestrator = ClippyOrchestrator(root=root, settings=settings)

    if args.dry_run:
        for _, directory, command in orchestrator.plan():
            sys.stdout.write(f"cd {shlex.quote(str(directory))} && {shlex.join(command)}\n")
        return 0

    report = orchestrator.run()
    _write_json(args.json, json.dumps(report.to_payload(), indent=2))
    return report.exit_code


def cli() -> None:
    """Console-script entry point."""
    raise SystemExit(main())


if __name__ == "__main__":
    cli()

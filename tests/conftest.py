"""Shared pytest fixtures for the tooling tests.

This module provides:
- isolation of the ``TOOLS_*`` / ``CLIPPY_*`` settings between tests
- a workspace factory laying out the crate directories under a temporary root
- a fake ``cargo`` executable on ``PATH`` that records where it ran
- a recording runner that stands in for :class:`ProcessRunner`
"""

from __future__ import annotations

import os
import stat
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

import pytest
from tools._shared.process import ToolExecutionError, ToolRunResult
from tools._shared.problem_details import tool_failure_problem_details
from tools._shared.settings import reset_settings_cache
from tools.lint.clippy_targets import CLIPPY_TARGETS

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator, Mapping, Sequence

FAKE_CARGO = """#!/bin/sh
if [ -f "$CARGO_FAKE_LOG.require-env" ]; then
    for name in $(cat "$CARGO_FAKE_LOG.require-env"); do
        eval "value=\\${$name:-}"
        if [ -z "$value" ]; then
            echo "error: $name is not set" >&2
            exit 101
        fi
    done
fi
printf '%s|%s\\n' "$(pwd -P)" "$*" >> "$CARGO_FAKE_LOG"
if [ -f .clippy-status ]; then
    echo "clippy: warnings found" >&2
    exit "$(cat .clippy-status)"
fi
echo "clippy: no issues"
exit 0
"""


@pytest.fixture(autouse=True)
def _isolated_settings(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Drop cached settings and any ``TOOLS_*``/``CLIPPY_*`` overrides from the environment."""
    for key in list(os.environ):
        if key.startswith(("TOOLS_", "CLIPPY_")):
            monkeypatch.delenv(key, raising=False)
    reset_settings_cache()
    yield
    reset_settings_cache()


@pytest.fixture
def workspace(tmp_path: Path) -> Callable[..., Path]:
    """Return a factory creating the crate directories under a fresh root.

    ``missing`` lists target paths to leave out; ``failing`` maps target paths
    to the exit status the fake cargo should return there.
    """

    def _build(
        missing: Sequence[str] = (),
        failing: Mapping[str, int] | None = None,
    ) -> Path:
        root = (tmp_path / "repo").resolve()
        (root / "devel").mkdir(parents=True, exist_ok=True)
        for target in CLIPPY_TARGETS:
            if target.relative_path in missing:
                continue
            directory = target.resolve(root)
            directory.mkdir(parents=True, exist_ok=True)
            (directory / "Cargo.toml").write_text("[package]\n", encoding="utf-8")
        for relative_path, status in (failing or {}).items():
            (root / relative_path / ".clippy-status").write_text(str(status), encoding="utf-8")
        return root

    return _build


@pytest.fixture
def fake_cargo(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Install a fake ``cargo`` first on ``PATH`` and return its invocation log.

    Each call appends ``<cwd>|<args>`` to the log. A ``.clippy-status`` file in
    the crate sets the exit status. Variable names listed in
    ``<log>.require-env`` must be set in cargo's environment or it exits 101,
    as a build script missing its configuration would.
    """
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    cargo = bin_dir / "cargo"
    cargo.write_text(FAKE_CARGO, encoding="utf-8")
    cargo.chmod(cargo.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    log_path = tmp_path / "cargo.log"
    log_path.touch()
    monkeypatch.setenv("PATH", f"{bin_dir}{os.pathsep}{os.environ.get('PATH', '')}")
    monkeypatch.setenv("CARGO_FAKE_LOG", str(log_path))
    return log_path


@dataclass
class RecordingRunner:
    """Stand-in for :class:`ProcessRunner` that records every call.

    ``statuses`` maps a working directory to the exit status to report there;
    ``errors`` maps a working directory to an exception to raise instead.
    """

    statuses: dict[Path, int] = field(default_factory=dict)
    errors: dict[Path, ToolExecutionError] = field(default_factory=dict)
    calls: list[tuple[tuple[str, ...], Path | None, dict[str, object]]] = field(
        default_factory=list
    )

    @property
    def directories(self) -> list[Path | None]:
        return [cwd for _, cwd, _ in self.calls]

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
        self.calls.append(
            (
                tuple(command),
                cwd,
                {"env": env, "timeout": timeout, "check": check, "capture_output": capture_output},
            )
        )
        if cwd in self.errors:
            raise self.errors[cwd]
        returncode = self.statuses.get(cwd, 0) if cwd is not None else 0
        if check and returncode != 0:
            message = "Subprocess returned a non-zero exit status"
            raise ToolExecutionError(
                message,
                command=command,
                returncode=returncode,
                problem=tool_failure_problem_details(
                    command, returncode=returncode, detail="clippy failed"
                ),
            )
        return ToolRunResult(
            command=tuple(command),
            returncode=returncode,
            stdout="",
            stderr="",
            duration_seconds=0.01,
            timed_out=False,
        )


@pytest.fixture
def recording_runner() -> RecordingRunner:
    """Return a fresh :class:`RecordingRunner`."""
    return RecordingRunner()


@pytest.fixture
def shell_allowed(monkeypatch: pytest.MonkeyPatch) -> None:
    """Allow-list the POSIX utilities the subprocess tests launch alongside cargo."""
    monkeypatch.setenv("TOOLS_EXEC_ALLOWLIST", "cargo,sh,true,env,sleep")
    reset_settings_cache()

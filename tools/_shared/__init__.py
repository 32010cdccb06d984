"""Helpers shared by the lint tooling: settings, subprocesses, metrics and paths."""

from __future__ import annotations

from tools._shared.metrics import ToolRunObservation, observe_tool_run
from tools._shared.paths import Paths
from tools._shared.problem_details import (
    ProblemDetailsDict,
    lint_target_missing_problem_details,
    problem_details,
    render_problem,
    tool_failure_problem_details,
)
from tools._shared.process import (
    ProcessRunner,
    ToolExecutionError,
    ToolRunResult,
    get_process_runner,
    set_process_runner,
)
from tools._shared.settings import (
    ClippySettings,
    SettingsError,
    ToolRuntimeSettings,
    get_clippy_settings,
    get_runtime_settings,
    load_settings,
    reset_settings_cache,
)
from tools._shared.validation import ValidationError, require_directory

__all__ = [
    "ClippySettings",
    "Paths",
    "ProblemDetailsDict",
    "ProcessRunner",
    "SettingsError",
    "ToolExecutionError",
    "ToolRunObservation",
    "ToolRunResult",
    "ToolRuntimeSettings",
    "ValidationError",
    "get_clippy_settings",
    "get_process_runner",
    "get_runtime_settings",
    "lint_target_missing_problem_details",
    "load_settings",
    "observe_tool_run",
    "problem_details",
    "render_problem",
    "require_directory",
    "reset_settings_cache",
    "set_process_runner",
    "tool_failure_problem_details",
]

"""Developer tooling for the kube/wasm controller workspace.

Runtime failures follow :mod:`kwasm_common.errors` and carry RFC 9457 Problem
Details payloads built by :mod:`tools._shared.problem_details`.
"""

from __future__ import annotations

from tools._shared import (
    ClippySettings,
    Paths,
    ProcessRunner,
    SettingsError,
    ToolExecutionError,
    ToolRunResult,
    ValidationError,
    require_directory,
)

__all__ = [
    "ClippySettings",
    "Paths",
    "ProcessRunner",
    "SettingsError",
    "ToolExecutionError",
    "ToolRunResult",
    "ValidationError",
    "require_directory",
]

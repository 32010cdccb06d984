"""RFC 9457 Problem Details payloads describing why a lint run stopped.

A payload is stored on the run report, carried by
:class:`~tools._shared.process.ToolExecutionError`, and printed by the CLI's
``--json`` option. Extension members sit at the top level of the payload.

Examples
--------
>>> problem = tool_failure_problem_details(
...     ["cargo", "+nightly", "clippy", "--all"], returncode=101, detail="clippy failed"
... )
>>> problem["instance"]
'urn:tool:cargo:exit-101'
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import TYPE_CHECKING

from kwasm_common.errors import BASE_TYPE_URI

if TYPE_CHECKING:
    from collections.abc import Sequence

__all__ = [
    "JsonValue",
    "ProblemDetailsDict",
    "lint_target_missing_problem_details",
    "problem_details",
    "render_problem",
    "settings_invalid_problem_details",
    "tool_digest_mismatch_problem_details",
    "tool_disallowed_problem_details",
    "tool_failure_problem_details",
    "tool_missing_problem_details",
    "tool_timeout_problem_details",
]

JsonValue = str | int | float | bool | None | list["JsonValue"] | dict[str, "JsonValue"]
ProblemDetailsDict = dict[str, JsonValue]


def problem_details(
    kind: str,
    *,
    title: str,
    status: int,
    detail: str,
    instance: str,
    **extensions: JsonValue,
) -> ProblemDetailsDict:
    """Return a payload whose ``type`` is ``<BASE_TYPE_URI>/<kind>``.

    >>> problem_details("lint-failed", title="t", status=422, detail="d", instance="urn:x")["type"]
    'https://kube-wasm.dev/problems/lint-failed'
    """
    payload: ProblemDetailsDict = {
        "type": f"{BASE_TYPE_URI}/{kind}",
        "title": title,
        "status": status,
        "detail": detail,
        "instance": instance,
    }
    payload.update(extensions)
    return payload


def _tool_problem(
    kind: str,
    command: Sequence[str],
    *,
    title: str,
    status: int,
    detail: str,
    suffix: str,
    **extensions: JsonValue,
) -> ProblemDetailsDict:
    argv: list[JsonValue] = [str(part) for part in command]
    tool = Path(str(argv[0])).name if argv else "<unknown>"
    return problem_details(
        kind,
        title=title,
        status=status,
        detail=detail,
        instance=f"urn:tool:{tool}:{suffix}",
        command=argv,
        **extensions,
    )


def tool_failure_problem_details(
    command: Sequence[str], *, returncode: int, detail: str
) -> ProblemDetailsDict:
    """Describe a tool that ran and exited with ``returncode``."""
    return _tool_problem(
        "tool-failure",
        command,
        title="Tool returned a non-zero exit code",
        status=500,
        detail=detail,
        suffix=f"exit-{returncode}",
        returncode=returncode,
    )


def tool_missing_problem_details(
    command: Sequence[str], *, executable: str, detail: str
) -> ProblemDetailsDict:
    """Describe an executable (or working directory) that could not be found."""
    return _tool_problem(
        "tool-missing",
        command or [executable],
        title="Executable not found",
        status=500,
        detail=detail,
        suffix="missing",
    )


def tool_timeout_problem_details(
    command: Sequence[str], *, timeout: float | None
) -> ProblemDetailsDict:
    """Describe a tool killed after ``timeout`` seconds."""
    tool = Path(command[0]).name if command else "command"
    if timeout is None:
        return _tool_problem(
            "tool-timeout",
            command,
            title="Tool execution timed out",
            status=504,
            detail=f"Command '{tool}' timed out",
            suffix="timeout",
        )
    return _tool_problem(
        "tool-timeout",
        command,
        title="Tool execution timed out",
        status=504,
        detail=f"Command '{tool}' timed out after {timeout} seconds",
        suffix="timeout",
        timeout=timeout,
    )


def tool_disallowed_problem_details(
    command: Sequence[str], *, executable: Path, allowlist: Sequence[str]
) -> ProblemDetailsDict:
    """Describe an executable rejected by ``TOOLS_EXEC_ALLOWLIST``."""
    return _tool_problem(
        "tool-exec-disallowed",
        command,
        title="Executable not allowed",
        status=403,
        detail=f"Executable '{executable.name}' is not permitted by TOOLS_EXEC_ALLOWLIST",
        suffix="disallowed",
        executable=executable.as_posix(),
        allowlist=list(allowlist),
    )


def tool_digest_mismatch_problem_details(
    command: Sequence[str],
    *,
    executable: Path,
    expected_digest: str,
    actual_digest: str | None,
    reason: str,
) -> ProblemDetailsDict:
    """Describe an executable whose SHA-256 does not match ``TOOLS_EXEC_DIGESTS``.

    ``reason`` is ``digest-mismatch`` or ``executable-missing``; ``actualDigest``
    is only present when the file could be hashed.
    """
    problem = _tool_problem(
        "tool-exec-digest-mismatch",
        command,
        title="Executable digest mismatch",
        status=403,
        detail=f"Executable '{executable}' failed SHA-256 verification ({reason})",
        suffix="digest",
        executable=executable.as_posix(),
        expectedDigest=expected_digest,
        reason=reason,
    )
    if actual_digest is not None:
        problem["actualDigest"] = actual_digest
    return problem


def lint_target_missing_problem_details(
    *, target: str, directory: Path, detail: str
) -> ProblemDetailsDict:
    """Describe a crate directory that does not exist or is not a directory."""
    return problem_details(
        "lint-target-missing",
        title="Lint target directory unavailable",
        status=404,
        detail=detail,
        instance=f"urn:lint:target:{target}",
        target=target,
        directory=directory.as_posix(),
    )


def settings_invalid_problem_details(
    settings_name: str, errors: Sequence[dict[str, JsonValue]]
) -> ProblemDetailsDict:
    """Describe ``CLIPPY_*`` / ``TOOLS_*`` values that failed validation."""
    return problem_details(
        "tool-settings-invalid",
        title="Invalid tooling settings",
        status=500,
        detail="Failed to load tooling configuration",
        instance=f"urn:tool-settings:{settings_name}:invalid",
        settings_class=settings_name,
        errors=list(errors),
    )


def render_problem(problem: ProblemDetailsDict) -> str:
    """Render ``problem`` as single-line JSON."""
    return json.dumps(problem, default=str)

"""Prometheus metrics and OpenTelemetry spans around each tooling subprocess.

One :func:`observe_tool_run` block wraps one child process. The caller marks
the yielded :class:`ToolRunObservation` as a success or a failure; when the
block exits the run is counted, timed and logged, inside a
``tools.run.<tool>`` span. ``TOOLS_METRICS_ENABLED`` and
``TOOLS_TRACING_ENABLED`` switch the two sinks off.
"""

from __future__ import annotations

import time
from contextlib import contextmanager, nullcontext
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Final

from prometheus_client import Counter, Histogram

from kwasm_common.logging import get_logger, with_fields
from kwasm_common.observability import start_span
from tools._shared.settings import get_runtime_settings

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence

LOGGER = get_logger(__name__)

TOOL_RUNS_TOTAL: Final = Counter(
    "kwasm_tool_runs_total", "Tooling subprocess invocations", ["tool", "status"]
)
TOOL_FAILURES_TOTAL: Final = Counter(
    "kwasm_tool_failures_total", "Tooling subprocess failures by reason", ["tool", "reason"]
)
# clippy on a cold cache can take many minutes per crate.
TOOL_DURATION_SECONDS: Final = Histogram(
    "kwasm_tool_duration_seconds",
    "Tooling subprocess wall time",
    ["tool", "status"],
    buckets=(0.5, 1.0, 5.0, 15.0, 30.0, 60.0, 120.0, 300.0, 600.0, 1800.0),
)


@dataclass(slots=True)
class ToolRunObservation:
    """Outcome of one subprocess run, filled in by the caller."""

    tool: str
    status: str = "success"
    failure_reason: str | None = None
    returncode: int | None = None
    timed_out: bool = False
    started: float = field(default_factory=time.monotonic)

    def success(self, returncode: int) -> None:
        self.status = "success"
        self.failure_reason = None
        self.returncode = returncode

    def failure(
        self, reason: str, *, returncode: int | None = None, timed_out: bool = False
    ) -> None:
        self.status = "error"
        self.failure_reason = reason
        self.returncode = returncode
        self.timed_out = timed_out

    def elapsed(self) -> float:
        return time.monotonic() - self.started


@contextmanager
def observe_tool_run(
    command: Sequence[str],
    *,
    cwd: Path | None,
    timeout: float | None,
) -> Iterator[ToolRunObservation]:
    """Observe the subprocess run inside the block.

    An exception escaping the block is recorded as reason ``exception`` unless
    the caller already marked a failure, and then propagates.
    """
    settings = get_runtime_settings()
    observation = ToolRunObservation(tool=Path(command[0]).name if command else "<unknown>")
    span = (
        start_span(
            f"tools.run.{observation.tool}",
            attributes={
                "tool": observation.tool,
                "cwd": str(cwd) if cwd else "",
                "timeout_s": timeout if timeout is not None else -1.0,
            },
        )
        if settings.tracing_enabled
        else nullcontext()
    )
    with span:
        try:
            yield observation
        except Exception:
            if observation.failure_reason is None:
                observation.failure("exception")
            raise
        finally:
            _record(observation, command=command, cwd=cwd, metrics=settings.metrics_enabled)


def _record(
    observation: ToolRunObservation,
    *,
    command: Sequence[str],
    cwd: Path | None,
    metrics: bool,
) -> None:
    duration = observation.elapsed()
    if metrics:
        TOOL_RUNS_TOTAL.labels(tool=observation.tool, status=observation.status).inc()
        TOOL_DURATION_SECONDS.labels(tool=observation.tool, status=observation.status).observe(
            duration
        )
        if observation.failure_reason is not None:
            TOOL_FAILURES_TOTAL.labels(
                tool=observation.tool, reason=observation.failure_reason
            ).inc()

    log = with_fields(
        LOGGER,
        operation="tool_run",
        tool=observation.tool,
        command=list(command),
        cwd=str(cwd) if cwd else None,
    )
    extra: dict[str, object] = {
        "status": observation.status,
        "returncode": observation.returncode,
        "timed_out": observation.timed_out,
        "duration_ms": duration * 1000,
    }
    if observation.failure_reason is None:
        log.info("Tool run succeeded", extra=extra)
    else:
        log.error("Tool run failed", extra={**extra, "reason": observation.failure_reason})


__all__ = [
    "TOOL_DURATION_SECONDS",
    "TOOL_FAILURES_TOTAL",
    "TOOL_RUNS_TOTAL",
    "ToolRunObservation",
    "observe_tool_run",
]

"""JSON-lines logging with a per-run correlation id.

Library modules call :func:`get_logger` and never install handlers; the CLI
calls :func:`setup_logging` once. Every record carries ``correlation_id``,
``operation`` and ``status`` so a single lint run can be followed from the
orchestrator down to each cargo invocation.

Examples
--------
>>> from kwasm_common.logging import get_logger, with_fields
>>> log = with_fields(get_logger(__name__), operation="clippy")
>>> log.info("Linting target", extra={"target": "pkg/kube-rs"})
"""

from __future__ import annotations

import contextvars
import json
import logging
import sys
import time
from typing import IO, Any, Self

__all__ = [
    "CorrelationContext",
    "JsonFormatter",
    "LoggerAdapter",
    "get_correlation_id",
    "get_logger",
    "set_correlation_id",
    "setup_logging",
    "with_fields",
]

_CORRELATION_ID: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "kwasm_correlation_id", default=None
)

# Anything on a record that is not a stock LogRecord attribute came from ``extra``.
_STOCK_ATTRIBUTES = frozenset(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {
    "message",
    "asctime",
}


class JsonFormatter(logging.Formatter):
    """Render each record as one JSON object per line.

    The object holds ``ts`` (UTC, millisecond precision), ``level``, ``name``
    and ``message``, followed by every JSON-compatible ``extra`` field. The
    active correlation id is filled in when the record has none.
    """

    converter = time.gmtime

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, object] = {
            "ts": f"{self.formatTime(record, '%Y-%m-%dT%H:%M:%S')}.{int(record.msecs):03d}Z",
            "level": record.levelname,
            "name": record.name,
            "message": record.getMessage(),
        }
        correlation_id = getattr(record, "correlation_id", None) or _CORRELATION_ID.get()
        if correlation_id is not None:
            entry["correlation_id"] = correlation_id
        for key, value in vars(record).items():
            if key in _STOCK_ATTRIBUTES or key in entry or key.startswith("_"):
                continue
            if isinstance(value, (str, int, float, bool, list, dict)):
                entry[key] = value
        if record.exc_info:
            entry["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def _status_for(level: int) -> str:
    if level >= logging.ERROR:
        return "error"
    if level >= logging.WARNING:
        return "warning"
    return "success"


class LoggerAdapter(logging.LoggerAdapter):  # type: ignore[type-arg]
    """Adapter that merges bound fields and the run context into ``extra``.

    Keys passed explicitly through ``extra`` win over bound fields.
    ``operation`` defaults to ``"unknown"`` and ``status`` follows the level
    (``error``, ``warning`` or ``success``) unless given.
    """

    logger: logging.Logger

    def log(self, level: int, msg: object, *args: object, **kwargs: Any) -> None:
        if not self.isEnabledFor(level):
            return
        fields: dict[str, Any] = dict(self.extra or {})
        explicit = kwargs.get("extra")
        if isinstance(explicit, dict):
            fields.update(explicit)
        correlation_id = _CORRELATION_ID.get()
        if correlation_id is not None:
            fields.setdefault("correlation_id", correlation_id)
        fields.setdefault("operation", "unknown")
        fields.setdefault("status", _status_for(level))
        kwargs["extra"] = fields
        self.logger.log(level, msg, *args, **kwargs)


def get_logger(name: str) -> LoggerAdapter:
    """Return a structured adapter for ``name``; the logger gets a ``NullHandler``."""
    logger = logging.getLogger(name)
    if not logger.handlers:
        logger.addHandler(logging.NullHandler())
    return LoggerAdapter(logger, {})


def with_fields(logger: logging.Logger | LoggerAdapter, **fields: object) -> LoggerAdapter:
    """Return an adapter over ``logger``'s underlying logger bound to ``fields``.

    Fields bound on an existing adapter are replaced, not merged.
    """
    base = logger.logger if isinstance(logger, logging.LoggerAdapter) else logger
    return LoggerAdapter(base, fields)


def setup_logging(level: int = logging.INFO, stream: IO[str] | None = None) -> None:
    """Send JSON lines at ``level`` and above to ``stream`` (``sys.stderr`` by default).

    stdout stays free for cargo's own output and the ``--json`` report.
    """
    handler = logging.StreamHandler(stream if stream is not None else sys.stderr)
    handler.setFormatter(JsonFormatter())
    logging.basicConfig(level=level, handlers=[handler], force=True)


def set_correlation_id(correlation_id: str | None) -> None:
    _CORRELATION_ID.set(correlation_id)


def get_correlation_id() -> str | None:
    return _CORRELATION_ID.get()


class CorrelationContext:
    """Scope a correlation id to a ``with`` block.

    The previous id is restored on exit.

    Examples
    --------
    >>> with CorrelationContext("run-123"):
    ...     get_correlation_id()
    'run-123'
    """

    def __init__(self, correlation_id: str | None) -> None:
        self.correlation_id = correlation_id
        self._tokens: list[contextvars.Token[str | None]] = []

    def __enter__(self) -> Self:
        self._tokens.append(_CORRELATION_ID.set(self.correlation_id))
        return self

    def __exit__(self, *exc_info: object) -> None:
        _CORRELATION_ID.reset(self._tokens.pop())

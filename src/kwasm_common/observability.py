"""OpenTelemetry tracing helpers.

Spans go to whatever tracer provider the application installed; with the
default no-op provider of ``opentelemetry-api`` they cost next to nothing.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import TYPE_CHECKING

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode

if TYPE_CHECKING:
    from collections.abc import Iterator, Mapping

__all__ = ["start_span"]


@contextmanager
def start_span(
    name: str,
    attributes: Mapping[str, str | int | float | bool] | None = None,
) -> Iterator[None]:
    """Run the enclosed block inside an OpenTelemetry span named ``name``.

    Exceptions are recorded on the span, which is marked as an error, and then
    re-raised.
    """
    tracer = trace.get_tracer(__name__)
    with tracer.start_as_current_span(name, record_exception=False) as span:
        if attributes:
            for key, value in attributes.items():
                span.set_attribute(key, value)
        try:
            yield
        except Exception as exc:
            span.record_exception(exc)
            span.set_status(Status(StatusCode.ERROR))
            raise

"""Typed exception hierarchy with Problem Details support.

All tooling exceptions inherit from :class:`KwasmError`, which carries a stable
:class:`ErrorCode`, an HTTP-style status and a log level, and renders itself as
an RFC 9457 Problem Details payload.

Examples
--------
>>> from kwasm_common.errors import ConfigurationError, ErrorCode
>>> try:
...     raise ConfigurationError("Lint root does not exist", context={"root": "/repo"})
... except ConfigurationError as e:
...     assert e.code == ErrorCode.CONFIGURATION_ERROR
...     details = e.to_problem_details(instance="urn:lint:root")
"""

from __future__ import annotations

import logging
from enum import StrEnum
from typing import TYPE_CHECKING, Final

if TYPE_CHECKING:
    from collections.abc import Mapping

__all__ = [
    "BASE_TYPE_URI",
    "ConfigurationError",
    "ErrorCode",
    "KwasmError",
    "LintAbortedError",
    "get_type_uri",
]

BASE_TYPE_URI: Final[str] = "https://kube-wasm.dev/problems"


class ErrorCode(StrEnum):
    """Stable error codes used in Problem Details ``type`` URIs."""

    CONFIGURATION_ERROR = "configuration-error"
    LINT_TARGET_MISSING = "lint-target-missing"
    LINT_FAILED = "lint-failed"
    RUNTIME_ERROR = "runtime-error"


def get_type_uri(code: ErrorCode) -> str:
    """Return the Problem Details type URI for ``code``.

    >>> get_type_uri(ErrorCode.LINT_FAILED)
    'https://kube-wasm.dev/problems/lint-failed'
    """
    return f"{BASE_TYPE_URI}/{code.value}"


class KwasmError(Exception):
    """Base exception for all tooling errors.

    Parameters
    ----------
    message : str
        Human-readable error message.
    code : ErrorCode, optional
        Stable error code. Defaults to ``ErrorCode.RUNTIME_ERROR``.
    http_status : int, optional
        Status used in Problem Details payloads. Defaults to 500.
    log_level : int, optional
        Level at which callers should log the error. Defaults to ERROR.
    cause : Exception | None, optional
        Underlying exception, chained as ``__cause__``.
    context : Mapping[str, object] | None, optional
        Extra structured context rendered as Problem Details extensions.
    """

    def __init__(
        self,
        message: str,
        *,
        code: ErrorCode = ErrorCode.RUNTIME_ERROR,
        http_status: int = 500,
        log_level: int = logging.ERROR,
        cause: Exception | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.http_status = http_status
        self.log_level = log_level
        self.context: dict[str, object] = dict(context) if context else {}
        if cause is not None:
            self.__cause__ = cause

    def to_problem_details(
        self,
        instance: str | None = None,
        title: str | None = None,
    ) -> dict[str, object]:
        """Convert to an RFC 9457 Problem Details payload.

        Parameters
        ----------
        instance : str | None, optional
            URI identifying the specific occurrence.
        title : str | None, optional
            Short summary. Defaults to the exception class name.

        Returns
        -------
        dict[str, object]
            Problem Details payload with ``code`` and any context extensions.
        """
        payload: dict[str, object] = {
            "type": get_type_uri(self.code),
            "title": title or self.__class__.__name__,
            "status": self.http_status,
            "detail": self.message,
            "instance": instance or "urn:kwasm:error",
            "code": self.code.value,
        }
        for key, value in self.context.items():
            payload.setdefault(key, value)
        return payload

    def __str__(self) -> str:
        base = f"{self.__class__.__name__}[{self.code.value}]: {self.message}"
        if self.__cause__:
            base += f" (caused by: {type(self.__cause__).__name__})"
        return base


class ConfigurationError(KwasmError):
    """Error raised when tooling configuration or inputs are invalid.

    Examples
    --------
    >>> str(ConfigurationError("Lint target does not exist: pkg/controller"))
    'ConfigurationError[configuration-error]: Lint target does not exist: pkg/controller'
    """

    def __init__(
        self,
        message: str,
        cause: Exception | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        super().__init__(
            message,
            code=ErrorCode.CONFIGURATION_ERROR,
            http_status=500,
            log_level=logging.CRITICAL,
            cause=cause,
            context=context,
        )


class LintAbortedError(KwasmError):
    """Raised when a lint run stops at its first failing target.

    The ``report`` attribute holds the run report (typed loosely here so the
    error hierarchy does not depend on the tooling package).
    """

    def __init__(
        self,
        message: str,
        *,
        report: object,
        code: ErrorCode = ErrorCode.LINT_FAILED,
        cause: Exception | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        super().__init__(
            message,
            code=code,
            http_status=422,
            cause=cause,
            context=context,
        )
        self.report = report

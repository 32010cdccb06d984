"""Environment-backed settings for the clippy runner.

``CLIPPY_*`` variables shape the cargo command and ``TOOLS_*`` variables the
subprocess policy. Each model is read once and cached until
:func:`reset_settings_cache`. Values that fail validation raise
:class:`SettingsError`, which carries a ``tool-settings-invalid`` Problem
Details payload for the CLI to print before it exits with status 2.
"""

from __future__ import annotations

import json
from collections.abc import Callable, Mapping, Sequence
from fnmatch import fnmatch
from pathlib import Path
from typing import Annotated, Final, cast

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from tools._shared.problem_details import (
    JsonValue,
    ProblemDetailsDict,
    settings_invalid_problem_details,
)

__all__: Final[list[str]] = [
    "ClippySettings",
    "SettingsError",
    "ToolRuntimeSettings",
    "get_clippy_settings",
    "get_runtime_settings",
    "load_settings",
    "reset_settings_cache",
]


class SettingsError(RuntimeError):
    """Raised when ``CLIPPY_*`` or ``TOOLS_*`` values fail validation."""

    def __init__(
        self,
        message: str,
        *,
        problem: ProblemDetailsDict,
        errors: Sequence[dict[str, JsonValue]],
    ) -> None:
        super().__init__(message)
        self.problem = problem
        self.errors: tuple[dict[str, JsonValue], ...] = tuple(errors)


def _split_commas(value: object) -> object:
    if isinstance(value, str):
        return tuple(part.strip() for part in value.split(",") if part.strip())
    return value


class ClippySettings(BaseSettings):
    """How cargo lints each crate.

    The defaults give ``cargo +nightly clippy --all`` with no timeout.
    ``CLIPPY_ARGS`` is comma-separated, e.g. ``--all,--,-D,warnings``.
    """

    model_config = SettingsConfigDict(env_prefix="CLIPPY_", extra="ignore")

    toolchain: str = Field(default="nightly", min_length=1)
    args: Annotated[tuple[str, ...], NoDecode] = ("--all",)
    timeout_seconds: float | None = Field(default=None, gt=0)

    @field_validator("toolchain", mode="before")
    @classmethod
    def _strip_plus(cls, value: object) -> object:
        # Accept both "nightly" and "+nightly".
        return value.strip().removeprefix("+") if isinstance(value, str) else value

    @field_validator("args", mode="before")
    @classmethod
    def _split_args(cls, value: object) -> object:
        return _split_commas(value)


class ToolRuntimeSettings(BaseSettings):
    """Which executables the runner may launch, and whether runs are observed.

    Allow-list patterns are globbed against the executable's basename, except
    absolute patterns, which must equal the resolved path.
    ``TOOLS_EXEC_DIGESTS`` pins executables (by path or basename) to a SHA-256.
    """

    model_config = SettingsConfigDict(env_prefix="TOOLS_", extra="ignore")

    exec_allowlist: Annotated[tuple[str, ...], NoDecode] = ("cargo", "rustup")
    exec_digests: Annotated[dict[str, str], NoDecode] = Field(default_factory=dict)
    metrics_enabled: bool = True
    tracing_enabled: bool = True

    @field_validator("exec_allowlist", mode="before")
    @classmethod
    def _split_allowlist(cls, value: object) -> object:
        return _split_commas(value)

    @field_validator("exec_digests", mode="before")
    @classmethod
    def _parse_digests(cls, value: object) -> object:
        if isinstance(value, str):
            pairs = [token.split("=", 1) for token in value.split(",") if token.strip()]
            if any(len(pair) != 2 for pair in pairs):
                message = "TOOLS_EXEC_DIGESTS entries must look like '<executable>=<sha256>'"
                raise ValueError(message)
            value = {key.strip(): digest for key, digest in pairs}
        if isinstance(value, Mapping):
            return {str(key): str(digest).strip().lower() for key, digest in value.items()}
        return value

    def is_allowed(self, executable: Path) -> bool:
        return any(
            executable.as_posix() == pattern
            if Path(pattern).is_absolute()
            else fnmatch(executable.name, pattern)
            for pattern in self.exec_allowlist
        )

    def expected_digest_for(self, executable: Path) -> str | None:
        return self.exec_digests.get(executable.as_posix()) or self.exec_digests.get(
            executable.name
        )


def load_settings[SettingsT: BaseSettings](factory: Callable[[], SettingsT]) -> SettingsT:
    """Call ``factory``, turning pydantic validation failures into :class:`SettingsError`.

    Parameters
    ----------
    factory : Callable[[], SettingsT]
        Settings class, or a zero-argument callable building one with overrides.

    Returns
    -------
    SettingsT
        The validated settings.

    Raises
    ------
    SettingsError
        When validation fails. ``problem["settings_class"]`` names ``factory``.
    """
    try:
        return factory()
    except ValidationError as exc:
        name = str(getattr(factory, "__name__", type(factory).__name__))
        errors = tuple(
            cast("dict[str, JsonValue]", json.loads(json.dumps(error, default=str)))
            for error in exc.errors(include_url=False)
        )
        message = f"Invalid {name}: {exc.error_count()} validation error(s)"
        raise SettingsError(
            message, problem=settings_invalid_problem_details(name, errors), errors=errors
        ) from exc


_CACHE: dict[type[BaseSettings], BaseSettings] = {}


def _cached[SettingsT: BaseSettings](settings_cls: type[SettingsT]) -> SettingsT:
    if settings_cls not in _CACHE:
        _CACHE[settings_cls] = load_settings(settings_cls)
    return cast("SettingsT", _CACHE[settings_cls])


def get_clippy_settings() -> ClippySettings:
    return _cached(ClippySettings)


def get_runtime_settings() -> ToolRuntimeSettings:
    return _cached(ToolRuntimeSettings)


def reset_settings_cache() -> None:
    """Forget cached settings so the next access re-reads the environment."""
    _CACHE.clear()

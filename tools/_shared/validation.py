"""Directory checks done before cargo is pointed at a crate or a root."""

from __future__ import annotations

from pathlib import Path

__all__ = ["ValidationError", "require_directory"]


class ValidationError(ValueError):
    """A path handed to the lint tooling cannot be used."""


def require_directory(value: str | Path, *, description: str = "directory") -> Path:
    """Return ``value`` resolved (symlinks followed) when it is an existing directory.

    Parameters
    ----------
    value : str | Path
        Candidate path; ``~`` is expanded.
    description : str, optional
        Noun used in the error message, e.g. ``"lint target"``.

    Returns
    -------
    Path
        Absolute, resolved directory.

    Raises
    ------
    ValidationError
        ``"<Description> '<path>' does not exist"`` or
        ``"<Description> '<path>' must be a directory"``.
    """
    path = Path(value).expanduser().resolve()
    if path.is_dir():
        return path
    problem = "must be a directory" if path.exists() else "does not exist"
    message = f"{description.capitalize()} '{path}' {problem}"
    raise ValidationError(message)

"""Filesystem locations the lint tooling works against."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class Paths:
    """Resolved repository locations."""

    repo_root: Path

    @staticmethod
    def from_entry_point(entry_point: Path) -> Paths:
        """Return paths rooted at the parent of the directory holding ``entry_point``.

        Entry points live one level below the repository root (for example
        ``devel/clippy.py``), so ``/repo/devel/clippy.py`` yields ``/repo``.
        Symlinks are resolved first.

        Parameters
        ----------
        entry_point : Path
            Path of the script being executed.

        Returns
        -------
        Paths
            Frozen dataclass containing the resolved repository root.
        """
        resolved = entry_point.resolve()
        return Paths(repo_root=resolved.parent.parent)

    @staticmethod
    def from_root(root: str | Path) -> Paths:
        """Return paths for an explicitly chosen root directory."""
        return Paths(repo_root=Path(root).expanduser().resolve())


__all__ = ["Paths"]

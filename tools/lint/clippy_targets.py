"""Crates linted by :mod:`tools.lint.run_clippy`, in the order they are linted."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import TYPE_CHECKING, Final

if TYPE_CHECKING:
    from pathlib import Path

__all__ = ["CLIPPY_TARGETS", "LintTarget"]


@dataclass(frozen=True, slots=True)
class LintTarget:
    """A crate directory relative to the repository root."""

    relative_path: str

    def __post_init__(self) -> None:
        path = PurePosixPath(self.relative_path)
        if not self.relative_path or path.is_absolute() or ".." in path.parts:
            message = f"Lint target must be a relative path inside the root: {self.relative_path!r}"
            raise ValueError(message)

    def resolve(self, root: Path) -> Path:
        """Return the target directory under ``root`` (existence is not checked)."""
        return root.joinpath(*PurePosixPath(self.relative_path).parts)

    def __str__(self) -> str:
        return self.relative_path


# Libraries first, then the controllers built on them.
CLIPPY_TARGETS: Final[tuple[LintTarget, ...]] = (
    LintTarget("pkg/controller"),
    LintTarget("pkg/kube-rs"),
    LintTarget("pkg/kube-runtime-abi"),
    LintTarget("pkg/wasm-delay-queue"),
    LintTarget("controllers/ring-rust-controller"),
    LintTarget("controllers/simple-rust-controller"),
)

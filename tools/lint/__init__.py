"""Lint runners for the Rust crates of the controller workspace.

:mod:`tools.lint.clippy_targets` lists the crates; :mod:`tools.lint.run_clippy`
runs clippy over them in order and stops at the first failure.
"""

from __future__ import annotations

__all__: list[str] = ["clippy_targets", "run_clippy"]

#!/usr/bin/env python3
"""Lint every crate of the workspace with ``cargo +nightly clippy --all``.

The repository root is the parent of this script's directory.
"""

from __future__ import annotations

import sys
from pathlib import Path

from tools.lint.run_clippy import main

if __name__ == "__main__":
    sys.exit(main(entry_point=Path(__file__)))

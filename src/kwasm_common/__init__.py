"""Shared runtime helpers for the kube/wasm developer tooling.

The package bundles the structured logging, error hierarchy and tracing helpers
that the ``tools`` namespace builds on.
"""

from __future__ import annotations

__all__: list[str] = ["errors", "logging", "observability"]

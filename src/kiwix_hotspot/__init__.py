"""kiwix-hotspot package bootstrap.

Exposes lightweight metadata that the CLI and packaging machinery rely upon.
"""
from __future__ import annotations

__all__ = ["__version__"]

# NOTE: Hatch reads the project version from this assignment.
__version__ = "0.1.0"

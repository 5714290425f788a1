"""Lodestar: Subversion working-copy operation and status engine."""

from __future__ import annotations

__version__ = "0.1.0"

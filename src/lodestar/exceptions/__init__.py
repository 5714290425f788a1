"""Lodestar exception hierarchy.

All exceptions can be imported from this package:
    from lodestar.exceptions import SvnError, RepositoryNotIdleError
"""

from __future__ import annotations

# Base exception
from lodestar.exceptions.base import LodestarError

# Configuration exceptions
from lodestar.exceptions.config import ConfigError

# Operation engine exceptions
from lodestar.exceptions.repository import (
    RepositoryDisposedError,
    RepositoryError,
    RepositoryNotIdleError,
)

# Subversion client exceptions
from lodestar.exceptions.svn import SvnError

__all__ = [
    "ConfigError",
    "LodestarError",
    "RepositoryDisposedError",
    "RepositoryError",
    "RepositoryNotIdleError",
    "SvnError",
]

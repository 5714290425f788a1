"""Shared helpers: asyncio concurrency wrappers, glob matching, redaction."""

from __future__ import annotations

from lodestar.utils.async_utils import (
    cancel_debounced,
    debounce,
    global_sequentialize,
    memoize,
    spawn,
    throttle,
)
from lodestar.utils.globs import exclude_patterns, is_descendant, match_all
from lodestar.utils.sanitize import (
    sanitize_error,
    sanitize_error_log,
    sanitize_object,
    sanitize_string,
)

__all__ = [
    "cancel_debounced",
    "debounce",
    "exclude_patterns",
    "global_sequentialize",
    "is_descendant",
    "match_all",
    "memoize",
    "sanitize_error",
    "sanitize_error_log",
    "sanitize_object",
    "sanitize_string",
    "spawn",
    "throttle",
]

"""Path helpers: gitignore-style glob matching and path containment."""

from __future__ import annotations

import os
from collections.abc import Iterable, Mapping
from functools import lru_cache

import pathspec

__all__ = ["build_spec", "exclude_patterns", "is_descendant", "match_all"]


@lru_cache(maxsize=64)
def _compile(patterns: tuple[str, ...]) -> pathspec.PathSpec:
    return pathspec.PathSpec.from_lines("gitwildmatch", patterns)


def build_spec(patterns: Iterable[str]) -> pathspec.PathSpec:
    """Compile *patterns* (gitwildmatch syntax, ``!`` negates)."""
    return _compile(tuple(p for p in patterns if p and p.strip()))


def match_all(path: str, patterns: Iterable[str]) -> bool:
    """Return True if *path* is matched by *patterns*.

    Patterns follow .gitignore rules: a pattern without a slash matches a
    basename at any depth, later patterns override earlier ones and ``!``
    re-includes. Dotfiles are matched like any other name.
    """
    spec = build_spec(patterns)
    if not spec.patterns:
        return False
    return spec.match_file(path.replace(os.sep, "/"))


def exclude_patterns(exclude: Mapping[str, bool]) -> list[str]:
    """Turn a ``{glob: enabled}`` mapping into a pattern list.

    Disabled entries become negations so they can re-include paths an
    earlier pattern excluded.
    """
    return [pattern if enabled else f"!{pattern}" for pattern, enabled in exclude.items()]


def is_descendant(parent: str, descendant: str) -> bool:
    """Return True if *descendant* equals *parent* or lives beneath it."""
    parent = os.path.normpath(parent)
    descendant = os.path.normpath(descendant)
    if parent == descendant:
        return True
    if parent == os.curdir:
        return not os.path.isabs(descendant)
    prefix = parent if parent.endswith(os.sep) else parent + os.sep
    return descendant.startswith(prefix)

"""Unit tests for glob matching and path containment."""

from __future__ import annotations

import pytest

from lodestar.utils.globs import exclude_patterns, is_descendant, match_all


class TestMatchAll:
    """Tests for match_all."""

    def test_no_patterns_never_match(self) -> None:
        assert match_all("a.txt", []) is False

    def test_basename_pattern_matches_at_any_depth(self) -> None:
        assert match_all("src/deep/build.log", ["*.log"])
        assert match_all("build.log", ["*.log"])

    def test_pattern_with_slash_is_anchored(self) -> None:
        assert match_all("out/a.o", ["out/*.o"])
        assert not match_all("src/out/a.o", ["/out/*.o"])

    def test_dotfiles_match(self) -> None:
        assert match_all(".DS_Store", ["**/.DS_Store"])
        assert match_all("sub/.DS_Store", ["**/.DS_Store"])

    def test_negation_reincludes(self) -> None:
        patterns = ["*.log", "!keep.log"]
        assert match_all("drop.log", patterns)
        assert not match_all("keep.log", patterns)

    def test_blank_patterns_ignored(self) -> None:
        assert not match_all("a.txt", ["", "   "])


class TestExcludePatterns:
    """Tests for exclude_patterns."""

    def test_disabled_entries_become_negations(self) -> None:
        assert exclude_patterns({"**/.git": True, "**/dist": False}) == [
            "**/.git",
            "!**/dist",
        ]


class TestIsDescendant:
    """Tests for is_descendant."""

    @pytest.mark.parametrize(
        ("parent", "child", "expected"),
        [
            ("libs", "libs", True),
            ("libs", "libs/a.c", True),
            ("libs", "libs/sub/b.c", True),
            ("libs", "libsx/a.c", False),
            ("libs", "other/libs/a.c", False),
            ("/repo/libs", "/repo/libs/x", True),
            ("/repo/libs/", "/repo/libs/x", True),
            (".", "anything", True),
        ],
    )
    def test_containment(self, parent: str, child: str, expected: bool) -> None:
        assert is_descendant(parent, child) is expected

"""Tests for workspace path filtering."""

from __future__ import annotations

from pathlib import Path

import pytest

from coderecall.index._internal.ignore import ExcludeMatcher, matches_glob


class TestMatchesGlob:
    @pytest.mark.parametrize(
        ("path", "pattern", "expected"),
        [
            ("node_modules/x/y.js", "**/node_modules/**", True),
            ("pkg/node_modules/x.js", "**/node_modules/**", True),
            ("src/app.min.js", "**/*.min.js", True),
            ("app.min.js", "**/*.min.js", True),
            ("src/app.js", "**/*.min.js", False),
        ],
    )
    def test_double_star_patterns(self, path: str, pattern: str, expected: bool) -> None:
        assert matches_glob(path, pattern) is expected


class TestExcludeMatcher:
    """Include and exclude decisions."""

    def test_extension_allowlist(self, tmp_path: Path) -> None:
        matcher = ExcludeMatcher(tmp_path, include_extensions=["ts", ".PY"])

        assert matcher.is_included("src/a.ts")
        assert matcher.is_included("b.py")
        assert not matcher.is_included("c.rb")

    def test_hardcoded_dirs_always_excluded(self, tmp_path: Path) -> None:
        matcher = ExcludeMatcher(tmp_path, include_extensions=[".ts"])

        assert matcher.should_prune_dir(".git")
        assert not matcher.is_included(".git/x.ts")
        assert not matcher.should_prune_dir("src")

    def test_given_negated_gitignore_pattern_when_matched_then_reincluded(self, tmp_path: Path) -> None:
        # Given
        (tmp_path / ".gitignore").write_text("# comment\n*.log.ts\n!keep.log.ts\n/dist/\n")

        # When
        matcher = ExcludeMatcher(tmp_path, include_extensions=[".ts"], respect_gitignore=True)

        # Then
        assert not matcher.is_included("a.log.ts")
        assert matcher.is_included("keep.log.ts")
        assert matcher.should_prune_dir("dist")
        assert "**/*.log.ts" in matcher.patterns

    def test_gitignore_ignored_when_not_respected(self, tmp_path: Path) -> None:
        (tmp_path / ".gitignore").write_text("*.ts\n")

        matcher = ExcludeMatcher(tmp_path, include_extensions=[".ts"])

        assert matcher.is_included("a.ts")

    def test_relativize(self, tmp_path: Path) -> None:
        matcher = ExcludeMatcher(tmp_path, include_extensions=[".ts"])

        assert matcher.relativize(tmp_path / "src" / "a.ts") == "src/a.ts"
        assert matcher.relativize(Path("/elsewhere/a.ts")) is None

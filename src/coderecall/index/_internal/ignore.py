"""Workspace path filtering.

ExcludeMatcher combines:
- HARDCODED_DIRS: always pruned (VCS internals, .coderecall)
- Configured exclude globs (``**/node_modules/**`` style)
- Optionally the workspace's top-level .gitignore
- The include-extension allowlist

Patterns are matched against workspace-relative POSIX paths.
"""

from __future__ import annotations

import fnmatch
from collections.abc import Iterable
from pathlib import Path, PurePosixPath

import structlog

from coderecall.core.excludes import HARDCODED_DIRS
from coderecall.core.languages import normalize_extension

log = structlog.get_logger()

__all__ = ["ExcludeMatcher", "matches_glob"]


def matches_glob(rel_path: str, pattern: str) -> bool:
    """Check if a path matches a glob pattern, with ** support."""
    if fnmatch.fnmatch(rel_path, pattern):
        return True
    # **/pattern also matches at the workspace root
    if pattern.startswith("**/"):
        return fnmatch.fnmatch(rel_path, pattern[3:])
    return False


def _gitignore_patterns(path: Path) -> list[str]:
    try:
        content = path.read_text()
    except OSError as e:
        log.warning("ignore.gitignore_unreadable", path=str(path), error=str(e))
        return []

    patterns: list[str] = []
    for raw in content.splitlines():
        line = raw.strip()
        if not line or line.startswith("#"):
            continue

        is_negation = line.startswith("!")
        if is_negation:
            line = line[1:]

        anchored = line.startswith("/")
        line = line.lstrip("/")
        if not line:
            continue

        # Directory patterns match all contents
        pattern = f"{line}**" if line.endswith("/") else line
        if not anchored and "/" not in line.rstrip("/"):
            pattern = f"**/{pattern}"

        patterns.append(f"!{pattern}" if is_negation else pattern)
    return patterns


class ExcludeMatcher:
    """Decides which workspace files are indexable."""

    def __init__(
        self,
        root: Path,
        *,
        include_extensions: Iterable[str],
        exclude_patterns: Iterable[str] = (),
        respect_gitignore: bool = False,
    ) -> None:
        self._root = root
        self._extensions = frozenset(normalize_extension(e) for e in include_extensions)
        self._patterns: list[str] = list(exclude_patterns)
        if respect_gitignore:
            gitignore = root / ".gitignore"
            if gitignore.is_file():
                self._patterns.extend(_gitignore_patterns(gitignore))

    @property
    def root(self) -> Path:
        return self._root

    @property
    def patterns(self) -> list[str]:
        return self._patterns.copy()

    def should_prune_dir(self, rel_dir: str) -> bool:
        """True when no file below ``rel_dir`` can be indexed."""
        name = PurePosixPath(rel_dir).name
        if name in HARDCODED_DIRS:
            return True
        return self._is_excluded(rel_dir.rstrip("/") + "/")

    def is_excluded_rel(self, rel_path: str) -> bool:
        """Glob exclusion only, ignoring the extension allowlist."""
        rel_posix = rel_path.replace("\\", "/")
        if any(part in HARDCODED_DIRS for part in PurePosixPath(rel_posix).parts[:-1]):
            return True
        return self._is_excluded(rel_posix)

    def is_included(self, rel_path: str) -> bool:
        """Extension allowed and not excluded."""
        rel_posix = rel_path.replace("\\", "/")
        if PurePosixPath(rel_posix).suffix.lower() not in self._extensions:
            return False
        return not self.is_excluded_rel(rel_posix)

    def relativize(self, path: Path) -> str | None:
        """Workspace-relative POSIX path, None when outside the root."""
        try:
            return path.relative_to(self._root).as_posix()
        except ValueError:
            return None

    def _is_excluded(self, rel_posix: str) -> bool:
        excluded = False
        # Last matching pattern wins, so negations can re-include
        for pattern in self._patterns:
            if pattern.startswith("!"):
                if excluded and matches_glob(rel_posix, pattern[1:]):
                    excluded = False
            elif not excluded and matches_glob(rel_posix, pattern):
                excluded = True
        return excluded

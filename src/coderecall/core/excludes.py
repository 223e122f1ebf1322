"""Canonical exclude patterns.

HARDCODED_DIRS are never traversed and cannot be re-included.
DEFAULT_EXCLUDE_GLOBS seed ``IndexingConfig.exclude_patterns`` and can be
replaced from config.
"""

from __future__ import annotations

HARDCODED_DIRS: frozenset[str] = frozenset(
    (
        ".git",
        ".svn",
        ".hg",
        ".bzr",
        ".coderecall",
    )
)

DEFAULT_EXCLUDE_GLOBS: tuple[str, ...] = (
    "**/node_modules/**",
    "**/.git/**",
    "**/dist/**",
    "**/build/**",
    "**/__pycache__/**",
    "**/.venv/**",
    "**/*.min.js",
    "**/*.map",
    "**/package-lock.json",
    "**/yarn.lock",
    "**/pnpm-lock.yaml",
)

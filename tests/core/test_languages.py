"""Tests for language detection and extension normalization."""

import pytest

from coderecall.core.languages import (
    DEFAULT_INCLUDE_EXTENSIONS,
    UNKNOWN_LANGUAGE,
    detect_language,
    normalize_extension,
)


class TestDetectLanguage:
    @pytest.mark.parametrize(
        ("path", "language"),
        [
            ("src/app.ts", "typescript"),
            ("src/App.tsx", "tsx"),
            ("lib/util.py", "python"),
            ("main.go", "go"),
            ("Cargo/src/lib.rs", "rust"),
            ("scripts/run.sh", "bash"),
        ],
    )
    def test_known_extensions(self, path: str, language: str) -> None:
        assert detect_language(path) == language

    def test_extension_match_is_case_insensitive(self) -> None:
        assert detect_language("LEGACY.PY") == "python"

    def test_unknown_extension_is_text(self) -> None:
        assert detect_language("notes.unknownext") == UNKNOWN_LANGUAGE
        assert detect_language("Makefile") == UNKNOWN_LANGUAGE


class TestNormalizeExtension:
    @pytest.mark.parametrize(
        ("raw", "expected"),
        [(".ts", ".ts"), ("ts", ".ts"), (" .PY ", ".py"), ("", "")],
    )
    def test_normalizes(self, raw: str, expected: str) -> None:
        assert normalize_extension(raw) == expected

    def test_default_includes_are_normalized(self) -> None:
        assert all(ext == normalize_extension(ext) for ext in DEFAULT_INCLUDE_EXTENSIONS)

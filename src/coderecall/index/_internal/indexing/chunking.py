"""Chunk sources: split file content into embeddable code chunks."""

from __future__ import annotations

import hashlib
import math
from collections.abc import Iterator
from typing import Protocol, runtime_checkable

from coderecall.config.constants import CHARS_PER_TOKEN
from coderecall.core.languages import detect_language
from coderecall.index.models import CodeChunk


@runtime_checkable
class ChunkSource(Protocol):
    """Lazily yields chunks for one file.

    Each call returns a fresh single-pass iterator. Consumers may stop early;
    generator-based implementations are closed by the caller.
    """

    def chunk(self, path: str, content: str, max_chunk_size: int) -> Iterator[CodeChunk]: ...


def chunk_digest(content: str) -> str:
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def estimate_tokens(text: str) -> int:
    return math.ceil(len(text) / CHARS_PER_TOKEN)


class LineChunker:
    """Packs whole lines into chunks of at most ``max_chunk_size`` estimated tokens.

    A single line longer than the limit becomes its own chunk. Line numbers
    are 1-based and inclusive. Whitespace-only chunks are dropped.
    """

    def chunk(self, path: str, content: str, max_chunk_size: int) -> Iterator[CodeChunk]:
        language = detect_language(path)
        lines = content.splitlines()
        current: list[str] = []
        tokens = 0
        start = 1

        for lineno, line in enumerate(lines, start=1):
            line_tokens = estimate_tokens(line)
            if current and tokens + line_tokens > max_chunk_size:
                chunk = _make_chunk(path, current, start, language)
                if chunk is not None:
                    yield chunk
                current = []
                tokens = 0
                start = lineno
            current.append(line)
            tokens += line_tokens

        if current:
            chunk = _make_chunk(path, current, start, language)
            if chunk is not None:
                yield chunk


def _make_chunk(path: str, lines: list[str], start: int, language: str) -> CodeChunk | None:
    text = "\n".join(lines)
    if not text.strip():
        return None
    return CodeChunk(
        filepath=path,
        content=text,
        start_line=start,
        end_line=start + len(lines) - 1,
        language=language,
        digest=chunk_digest(text),
    )

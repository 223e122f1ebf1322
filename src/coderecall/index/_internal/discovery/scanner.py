"""Workspace scanning and content hashing.

Walks run in a worker thread; the walk prunes excluded directories and
hashes every indexable file with SHA-256. Files over the size cap are
skipped with a warning. Unreadable files are left out of the listing so
the change detector treats them as deleted.
"""

from __future__ import annotations

import asyncio
import hashlib
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path

import structlog

from coderecall.index._internal.concurrency import CancellationToken
from coderecall.index._internal.ignore import ExcludeMatcher
from coderecall.index.models import FileRecord

log = structlog.get_logger()

_HASH_BLOCK = 1 << 16


def hash_file(path: Path) -> str:
    hasher = hashlib.sha256()
    with path.open("rb") as f:
        while block := f.read(_HASH_BLOCK):
            hasher.update(block)
    return hasher.hexdigest()


def read_text(path: Path) -> str:
    """Decode file content for chunking; undecodable bytes are replaced."""
    return path.read_bytes().decode("utf-8", errors="replace")


@dataclass
class ScanResult:
    records: list[FileRecord] = field(default_factory=list)
    oversized: list[str] = field(default_factory=list)
    unreadable: list[str] = field(default_factory=list)


def _record_for(path: Path, rel: str, max_file_size: int, result: ScanResult) -> FileRecord | None:
    try:
        st = path.stat()
        if st.st_size > max_file_size:
            result.oversized.append(rel)
            log.warning("scanner.file_too_large", path=rel, size=st.st_size, limit=max_file_size)
            return None
        return FileRecord(path=rel, content_hash=hash_file(path), mtime=st.st_mtime)
    except OSError as e:
        result.unreadable.append(rel)
        log.warning("scanner.file_unreadable", path=rel, error=str(e))
        return None


def _scan_sync(
    matcher: ExcludeMatcher,
    max_file_size: int,
    token: CancellationToken | None,
) -> ScanResult:
    root = matcher.root
    result = ScanResult()
    for dirpath, dirnames, filenames in root.walk():
        if token is not None:
            token.raise_if_cancelled("scan")
        rel_dir = "" if dirpath == root else dirpath.relative_to(root).as_posix()
        dirnames[:] = sorted(
            d for d in dirnames if not matcher.should_prune_dir(f"{rel_dir}/{d}" if rel_dir else d)
        )
        for name in sorted(filenames):
            rel = f"{rel_dir}/{name}" if rel_dir else name
            if not matcher.is_included(rel):
                continue
            record = _record_for(dirpath / name, rel, max_file_size, result)
            if record is not None:
                result.records.append(record)
    return result


async def scan_workspace(
    matcher: ExcludeMatcher,
    *,
    max_file_size: int,
    token: CancellationToken | None = None,
) -> ScanResult:
    """Walk the workspace and hash every indexable file."""
    result = await asyncio.to_thread(_scan_sync, matcher, max_file_size, token)
    log.debug(
        "scanner.done",
        root=str(matcher.root),
        files=len(result.records),
        oversized=len(result.oversized),
        unreadable=len(result.unreadable),
    )
    return result


def _stat_sync(matcher: ExcludeMatcher, rel_paths: Iterable[str], max_file_size: int) -> ScanResult:
    result = ScanResult()
    for rel in sorted(set(rel_paths)):
        path = matcher.root / rel
        if not path.is_file():
            continue
        record = _record_for(path, rel, max_file_size, result)
        if record is not None:
            result.records.append(record)
    return result


async def stat_paths(
    matcher: ExcludeMatcher,
    rel_paths: Iterable[str],
    *,
    max_file_size: int,
) -> ScanResult:
    """Hash only the named paths. Missing files are simply absent from the result."""
    return await asyncio.to_thread(_stat_sync, matcher, list(rel_paths), max_file_size)

"""Workspace scanning."""

from coderecall.index._internal.discovery.scanner import (
    ScanResult,
    hash_file,
    read_text,
    scan_workspace,
    stat_paths,
)

__all__ = [
    "ScanResult",
    "hash_file",
    "read_text",
    "scan_workspace",
    "stat_paths",
]

"""Content-hash change detection.

``compute_refresh_plan`` classifies every currently scanned file into
``compute`` (new or modified) or ``reuse`` (hash unchanged), and every
previously known file that vanished into ``delete``. Each current path
lands in exactly one of compute/reuse; deleted paths only in delete.
"""

from __future__ import annotations

from collections.abc import Collection, Iterable, Mapping

from coderecall.index.models import FileChangeItem, FileRecord, RefreshPlan


def compute_refresh_plan(
    previous: Mapping[str, FileRecord],
    current: Iterable[FileRecord],
    *,
    scope: Collection[str] | None = None,
) -> RefreshPlan:
    """Diff the previous FileRecord table against a fresh listing.

    Args:
        previous: Known records keyed by path.
        current: Freshly scanned records. Duplicate paths keep the last one.
        scope: When given, only these previous paths are deletion candidates.
            Used by incremental updates where ``current`` covers a subset of
            the workspace.
    """
    plan = RefreshPlan()
    seen: dict[str, FileRecord] = {}
    for record in current:
        seen[record.path] = record

    for path in sorted(seen):
        record = seen[path]
        known = previous.get(path)
        item = FileChangeItem(path=path, content_hash=record.content_hash)
        if known is not None and known.content_hash == record.content_hash:
            plan.reuse.append(item)
        else:
            plan.compute.append(item)

    candidates = previous.keys() if scope is None else [p for p in scope if p in previous]
    for path in sorted(candidates):
        if path not in seen:
            plan.delete.append(FileChangeItem(path=path, content_hash=previous[path].content_hash))

    return plan

"""Tests for content-hash change detection."""

from __future__ import annotations

from coderecall.index._internal.state.changes import compute_refresh_plan
from coderecall.index.models import FileRecord


def _records(**hashes: str) -> list[FileRecord]:
    return [FileRecord(path=f"{name}.ts", content_hash=h, mtime=0.0) for name, h in hashes.items()]


def _table(records: list[FileRecord]) -> dict[str, FileRecord]:
    return {r.path: r for r in records}


class TestComputeRefreshPlan:
    """Classification of current and previous files."""

    def test_given_empty_previous_when_diffed_then_everything_computed(self) -> None:
        # Given
        current = _records(a="h1", b="h2")

        # When
        plan = compute_refresh_plan({}, current)

        # Then
        assert [i.path for i in plan.compute] == ["a.ts", "b.ts"]
        assert plan.delete == []
        assert plan.reuse == []

    def test_given_modified_added_deleted_when_diffed_then_classified(self) -> None:
        """a changed, c added, b removed."""
        # Given
        previous = _table(_records(a="x", b="y"))
        current = _records(a="x2", c="z")

        # When
        plan = compute_refresh_plan(previous, current)

        # Then
        assert plan.to_dict() == {"compute": ["a.ts", "c.ts"], "delete": ["b.ts"], "reuse": []}
        assert plan.delete[0].content_hash == "y"

    def test_given_no_changes_when_diffed_then_only_reuse(self) -> None:
        # Given
        records = _records(a="x", b="y")

        # When
        plan = compute_refresh_plan(_table(records), records)

        # Then
        assert [i.path for i in plan.reuse] == ["a.ts", "b.ts"]
        assert not plan.has_pending_writes
        assert not plan.is_empty

    def test_given_any_input_when_diffed_then_sets_partition_current_files(self) -> None:
        """compute and reuse are disjoint and together equal the current set."""
        # Given
        previous = _table(_records(a="1", b="2", c="3", d="4"))
        current = _records(a="1", b="changed", e="5")

        # When
        plan = compute_refresh_plan(previous, current)

        # Then
        compute = {i.path for i in plan.compute}
        reuse = {i.path for i in plan.reuse}
        delete = {i.path for i in plan.delete}
        assert compute.isdisjoint(reuse)
        assert delete.isdisjoint(compute | reuse)
        assert compute | reuse == {r.path for r in current}
        assert delete == {"c.ts", "d.ts"}

    def test_given_duplicate_paths_when_diffed_then_last_wins(self) -> None:
        current = [
            FileRecord(path="a.ts", content_hash="old", mtime=0.0),
            FileRecord(path="a.ts", content_hash="new", mtime=1.0),
        ]

        plan = compute_refresh_plan(_table(_records(a="new")), current)

        assert [i.path for i in plan.reuse] == ["a.ts"]

    def test_given_scope_when_diffed_then_only_scoped_paths_deleted(self) -> None:
        """Incremental updates only delete within the changed set."""
        # Given
        previous = _table(_records(a="1", b="2", c="3"))
        current = _records(a="1-new")

        # When
        plan = compute_refresh_plan(previous, current, scope={"a.ts", "b.ts", "zzz.ts"})

        # Then
        assert [i.path for i in plan.compute] == ["a.ts"]
        assert [i.path for i in plan.delete] == ["b.ts"]

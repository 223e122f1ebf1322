"""Progress reporting helpers shared by the store and the orchestrator."""

from __future__ import annotations

from coderecall.index.models import IndexProgressEvent, ProgressCallback


class ProgressReporter:
    """Forwards progress events with the fraction clamped and non-decreasing.

    ``scaled(start, end)`` returns a child reporter whose [0, 1] range maps
    onto ``[start, end]`` of this reporter.
    """

    def __init__(
        self,
        callback: ProgressCallback | None,
        *,
        start: float = 0.0,
        end: float = 1.0,
        parent: ProgressReporter | None = None,
    ) -> None:
        self._callback = callback
        self._start = start
        self._end = end
        self._parent = parent
        self._last = 0.0

    @property
    def last(self) -> float:
        return self._root()._last

    def scaled(self, start: float, end: float) -> ProgressReporter:
        return ProgressReporter(None, start=start, end=end, parent=self)

    def report(
        self,
        progress: float,
        description: str,
        *,
        current_file: str | None = None,
        indexed_count: int | None = None,
        total_count: int | None = None,
    ) -> None:
        value = self._start + (self._end - self._start) * min(max(progress, 0.0), 1.0)
        if self._parent is not None:
            self._parent.report(
                value,
                description,
                current_file=current_file,
                indexed_count=indexed_count,
                total_count=total_count,
            )
            return

        value = max(self._last, value)
        self._last = value
        if self._callback is not None:
            self._callback(
                IndexProgressEvent(
                    progress=value,
                    description=description,
                    current_file=current_file,
                    indexed_count=indexed_count,
                    total_count=total_count,
                )
            )

    def done(self, description: str = "Indexing complete") -> None:
        """Report exactly 1.0 on the root callback."""
        root = self._root()
        root._last = 1.0
        if root._callback is not None:
            root._callback(IndexProgressEvent(progress=1.0, description=description))

    def _root(self) -> ProgressReporter:
        node = self
        while node._parent is not None:
            node = node._parent
        return node

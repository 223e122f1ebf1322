"""Change detection."""

from coderecall.index._internal.state.changes import compute_refresh_plan

__all__ = ["compute_refresh_plan"]

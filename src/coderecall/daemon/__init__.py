"""CodeRecall daemon - filesystem watching and incremental indexing."""

from coderecall.daemon.watcher import WorkspaceWatcher

__all__ = ["WorkspaceWatcher"]

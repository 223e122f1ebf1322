"""crl watch command - keep a workspace index fresh."""

import asyncio
import contextlib
from pathlib import Path

import click

from coderecall.cli.utils import create_indexer, load_workspace_config
from coderecall.core.errors import CodeRecallError
from coderecall.core.progress import fraction_bar, pluralize, status
from coderecall.daemon.watcher import WorkspaceWatcher
from coderecall.index.models import UpdateSummary


def _report(summary: UpdateSummary) -> None:
    if summary.skipped:
        return
    parts = []
    if summary.computed_files:
        parts.append(f"{summary.computed_files} updated")
    if summary.deleted_files:
        parts.append(f"{summary.deleted_files} removed")
    message = ", ".join(parts) if parts else "no changes"
    style = "warning" if summary.failed_batches else "success"
    status(f"{message} in {summary.duration_s:.2f}s", style=style)


async def _watch(workspace: Path) -> None:
    config = load_workspace_config(workspace)
    indexer = create_indexer(config)
    watcher = WorkspaceWatcher(
        indexer,
        workspace,
        debounce_window=config.watch.debounce_sec,
        on_update=_report,
    )
    try:
        with fraction_bar("Indexing") as report:
            summary = await indexer.index_workspace(workspace, on_progress=report)
        status(f"Index ready ({pluralize(summary.computed_files + summary.reused_files, 'file')})", style="success")
        await watcher.start()
        status(f"Watching {workspace} (Ctrl+C to stop)")
        await asyncio.Event().wait()
    finally:
        await watcher.stop()
        await indexer.dispose()


@click.command()
@click.argument("path", default=".", type=click.Path(exists=True, file_okay=False, path_type=Path))
def watch_command(path: Path) -> None:
    """Index a workspace, then re-index changed files as they are saved.

    PATH is the workspace root (default: current directory).
    """
    workspace = path.resolve()
    try:
        with contextlib.suppress(KeyboardInterrupt):
            asyncio.run(_watch(workspace))
    except CodeRecallError as e:
        raise click.ClickException(str(e)) from e

"""crl index command - build or refresh a workspace index."""

from pathlib import Path

import click

from coderecall.cli.utils import run_with_indexer
from coderecall.core.progress import fraction_bar, pluralize, status
from coderecall.index.models import UpdateSummary
from coderecall.index.ops import CodebaseIndexer


def _on_model_download(state: str, file: str | None, _progress: float | None) -> None:
    if state == "initiate":
        status(f"Loading embedding model {file or ''}".rstrip())


@click.command()
@click.argument("path", default=".", type=click.Path(exists=True, file_okay=False, path_type=Path))
@click.option("--branch", default=None, help="Keep a separate index for this branch")
def index_command(path: Path, branch: str | None) -> None:
    """Index a workspace for semantic search.

    Only new and modified files are embedded; unchanged chunks are
    restored from the vector cache.

    PATH is the workspace root (default: current directory).
    """
    workspace = path.resolve()

    async def _index(indexer: CodebaseIndexer) -> UpdateSummary:
        indexer.set_model_download_progress_callback(_on_model_download)
        with fraction_bar("Indexing") as report:
            return await indexer.index_workspace(workspace, on_progress=report, branch=branch)

    summary = run_with_indexer(workspace, _index)

    if summary.skipped:
        status(f"Index up to date ({pluralize(summary.reused_files, 'file')})", style="success")
        return

    parts = [f"{pluralize(summary.computed_files, 'file')} indexed"]
    if summary.reused_files:
        parts.append(f"{summary.reused_files} unchanged")
    if summary.deleted_files:
        parts.append(f"{summary.deleted_files} removed")
    status(f"{', '.join(parts)} in {summary.duration_s:.2f}s", style="success")
    status(
        f"{pluralize(summary.embedded_chunks, 'chunk')} embedded, {summary.cache_hits} from cache",
        indent=2,
    )
    if summary.failed_batches:
        status(
            f"{pluralize(summary.failed_batches, 'batch', 'batches')} failed "
            f"({pluralize(len(summary.failed_paths), 'file')}); run again to retry",
            style="warning",
        )

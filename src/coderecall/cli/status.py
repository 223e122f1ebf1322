"""crl status / crl stats commands - inspect a workspace index."""

import json
from pathlib import Path

import click

from coderecall.cli.utils import run_with_indexer
from coderecall.index.models import DetailedStats, IndexStatus
from coderecall.index.ops import CodebaseIndexer


def _format_bytes(size: int) -> str:
    if size < 1024:
        return f"{size} B"
    value = size / 1024
    for unit in ("KB", "MB"):
        if value < 1024:
            return f"{value:.1f} {unit}"
        value /= 1024
    return f"{value:.1f} GB"


@click.command()
@click.argument("path", default=".", type=click.Path(exists=True, file_okay=False, path_type=Path))
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def status_command(path: Path, as_json: bool) -> None:
    """Show whether a workspace is indexed.

    PATH is the workspace root (default: current directory).
    """
    workspace = path.resolve()

    async def _status(indexer: CodebaseIndexer) -> tuple[IndexStatus, str]:
        return await indexer.get_index_status(workspace), indexer.embedding_id

    index_status, embedding_id = run_with_indexer(workspace, _status)

    if as_json:
        click.echo(json.dumps({"workspace": str(workspace), "embedding_id": embedding_id, **index_status.to_dict()}))
        return

    click.echo(f"Workspace: {workspace}")
    click.echo(f"Model: {embedding_id}")
    click.echo(f"Index: {'present' if index_status.has_index else 'missing'}")
    click.echo(f"State: {index_status.state.value}")
    click.echo(f"Files: {index_status.file_count}")
    if index_status.queued_tasks:
        click.echo(f"  Queue: {index_status.queued_tasks} pending")


@click.command()
@click.argument("path", default=".", type=click.Path(exists=True, file_okay=False, path_type=Path))
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def stats_command(path: Path, as_json: bool) -> None:
    """Show chunk, file and language counts for a workspace index.

    PATH is the workspace root (default: current directory).
    """
    workspace = path.resolve()

    async def _stats(indexer: CodebaseIndexer) -> DetailedStats:
        return await indexer.get_detailed_stats(workspace)

    stats = run_with_indexer(workspace, _stats)

    if as_json:
        click.echo(json.dumps(stats.to_dict()))
        return

    click.echo(f"Model: {stats.embedding_id}")
    click.echo(f"Table: {stats.table_name}")
    click.echo(f"Chunks: {stats.total_chunks}")
    if stats.unique_files is not None:
        click.echo(f"Files: {stats.unique_files} ({stats.avg_chunks_per_file} chunks/file)")
    click.echo(f"Approx. size: {_format_bytes(stats.approx_db_bytes)}")
    click.echo(f"Cache: {stats.cache_entries} entries, {_format_bytes(stats.cache_bytes)}")
    if stats.languages:
        click.echo("Languages:")
        for language, count in sorted(stats.languages.items(), key=lambda kv: (-kv[1], kv[0])):
            click.echo(f"  {language}: {count}")

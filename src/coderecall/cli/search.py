"""crl search command - query a workspace index."""

import json
from pathlib import Path

import click

from coderecall.cli.utils import run_with_indexer
from coderecall.config.constants import RETRIEVE_DEFAULT_TOP_K, RETRIEVE_MAX_TOP_K
from coderecall.index.models import RetrievalResult
from coderecall.index.ops import CodebaseIndexer

_PREVIEW_LINES = 6


@click.command()
@click.argument("query")
@click.argument("path", default=".", type=click.Path(exists=True, file_okay=False, path_type=Path))
@click.option(
    "-k",
    "--top-k",
    default=RETRIEVE_DEFAULT_TOP_K,
    show_default=True,
    type=click.IntRange(1, RETRIEVE_MAX_TOP_K),
    help="Maximum number of results",
)
@click.option("--branch", default=None, help="Search the index of this branch")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def search_command(query: str, path: Path, top_k: int, branch: str | None, as_json: bool) -> None:
    """Find the code chunks closest in meaning to QUERY.

    PATH is the workspace root (default: current directory). Results are
    ordered by distance; lower is closer.
    """
    workspace = path.resolve()

    async def _search(indexer: CodebaseIndexer) -> list[RetrievalResult]:
        return await indexer.retrieve(query, workspace, top_k, branch=branch)

    results = run_with_indexer(workspace, _search)

    if as_json:
        click.echo(json.dumps([r.to_dict() for r in results], indent=2))
        return

    if not results:
        click.echo("No results. Has this workspace been indexed? Run 'crl index' first.")
        return

    for result in results:
        click.echo(
            f"{result.filepath}:{result.start_line}-{result.end_line}"
            f"  [{result.language}]  distance={result.score:.4f}"
        )
        lines = result.content.splitlines()
        for line in lines[:_PREVIEW_LINES]:
            click.echo(f"    {line}")
        if len(lines) > _PREVIEW_LINES:
            click.echo(f"    ... ({len(lines) - _PREVIEW_LINES} more lines)")
        click.echo()

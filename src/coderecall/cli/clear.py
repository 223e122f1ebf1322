"""crl clear command - drop a workspace index."""

from pathlib import Path

import click
import questionary

from coderecall.cli.utils import run_with_indexer
from coderecall.core.progress import get_console, spinner
from coderecall.index.ops import CodebaseIndexer


def confirm_clear(workspace: Path) -> bool:
    answer = questionary.select(
        f"Delete the index of {workspace}? Re-indexing re-embeds files not in the cache.",
        choices=[
            questionary.Choice("No, keep the index", value=False),
            questionary.Choice("Yes, delete it", value=True),
        ],
        style=questionary.Style(
            [
                ("question", "bold"),
                ("highlighted", "fg:red bold"),
                ("selected", "fg:red"),
            ]
        ),
    ).ask()
    return bool(answer)


@click.command()
@click.argument("path", default=".", type=click.Path(exists=True, file_okay=False, path_type=Path))
@click.option("--branch", default=None, help="Delete the index of this branch")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompt")
def clear_command(path: Path, branch: str | None, yes: bool) -> None:
    """Delete the index of a workspace for the active embedding model.

    Indexes built with other models are left alone. The vector cache is
    kept, so re-indexing unchanged files is cheap.

    PATH is the workspace root (default: current directory).
    """
    console = get_console()
    workspace = path.resolve()

    if not yes and not confirm_clear(workspace):
        console.print("[dim]Cancelled[/dim]")
        return

    async def _clear(indexer: CodebaseIndexer) -> None:
        await indexer.delete_workspace_index(workspace, branch=branch)

    with spinner("Removing index"):
        run_with_indexer(workspace, _clear)
    console.print(f"  [green]✓[/green] Removed index for {workspace}")

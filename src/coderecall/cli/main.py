"""CodeRecall CLI - crl command."""

import click

from coderecall.cli.clear import clear_command
from coderecall.cli.index import index_command
from coderecall.cli.search import search_command
from coderecall.cli.status import stats_command, status_command
from coderecall.cli.watch import watch_command
from coderecall.core.logging import configure_logging


@click.group()
@click.version_option(version="0.1.0", prog_name="crl")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, verbose: bool) -> None:
    """CodeRecall - semantic code search over local workspaces."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    configure_logging(level="DEBUG" if verbose else "INFO")


cli.add_command(index_command, name="index")
cli.add_command(search_command, name="search")
cli.add_command(status_command, name="status")
cli.add_command(stats_command, name="stats")
cli.add_command(clear_command, name="clear")
cli.add_command(watch_command, name="watch")


if __name__ == "__main__":
    cli()

"""CLI utilities."""

import asyncio
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import TypeVar

import click

from coderecall.config import CodeRecallConfig, load_config
from coderecall.core.errors import CodeRecallError
from coderecall.index.ops import CodebaseIndexer

T = TypeVar("T")


def load_workspace_config(workspace: Path) -> CodeRecallConfig:
    """Load config for a workspace, reporting config errors as CLI errors."""
    try:
        return load_config(workspace)
    except CodeRecallError as e:
        raise click.ClickException(str(e)) from e


def create_indexer(config: CodeRecallConfig) -> CodebaseIndexer:
    """Build the indexer used by CLI commands."""
    return CodebaseIndexer(config)


def run_with_indexer(workspace: Path, op: Callable[[CodebaseIndexer], Awaitable[T]]) -> T:
    """Run ``op`` against a fresh indexer and dispose it afterwards.

    Raises:
        click.ClickException: On any CodeRecall error.
    """
    config = load_workspace_config(workspace)

    async def _run() -> T:
        indexer = create_indexer(config)
        try:
            return await op(indexer)
        finally:
            await indexer.dispose()

    try:
        return asyncio.run(_run())
    except CodeRecallError as e:
        raise click.ClickException(str(e)) from e

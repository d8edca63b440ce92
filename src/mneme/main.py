"""Mneme main entry point.

Command-line tools for inspecting and maintaining a chat's memory: list or
reset long-term memories, show the short-term window, search, and print
statistics.
"""

from __future__ import annotations

import asyncio
import logging
import logging.config
import sys
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any, TypeVar

import click
from rich.console import Console
from rich.table import Table

from .config import MnemeConfig
from .memory.manager import MemoryManager
from .memory.types import MemoryCategory

logger = logging.getLogger(__name__)

# Rich console for output
console = Console()

T = TypeVar("T")


def build_manager(config: MnemeConfig) -> MemoryManager:
    """Create the memory manager the commands operate on."""
    return MemoryManager(config)


def _run(config: MnemeConfig, action: Callable[[MemoryManager], Awaitable[T]]) -> T:
    """Run ``action`` against an initialized manager and close it afterwards."""

    async def runner() -> T:
        memory = build_manager(config)
        await memory.initialize()
        try:
            return await action(memory)
        finally:
            await memory.close()

    try:
        return asyncio.run(runner())
    except Exception as e:
        console.print(f"[red]Error: {e}[/red]")
        logger.exception("Command failed")
        sys.exit(1)


def _require_long_term(memory: MemoryManager, config: MnemeConfig) -> bool:
    if memory.long_term.is_ready():
        return True
    console.print(
        f"[yellow]Long-term memory unavailable: cannot reach ChromaDB at {config.vector_store.host}[/yellow]"
    )
    return False


@click.group()
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=True),
    help="Path to YAML config file",
)
@click.option(
    "--verbose",
    is_flag=True,
    help="Enable verbose/debug logging",
)
@click.pass_context
def main(ctx: click.Context, config_path: str | None, verbose: bool) -> None:
    """
    Mneme - two-layer conversational memory for AI agents.

    Inspect and maintain short-term windows and long-term memories.
    """
    try:
        if config_path:
            config = MnemeConfig.load(yaml_path=Path(config_path))
        else:
            config = MnemeConfig.load()
    except Exception as e:
        console.print(f"[red]Failed to load configuration: {e}[/red]")
        sys.exit(1)

    logging.config.dictConfig(config.get_log_config())
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)
        logger.debug("Debug logging enabled")

    ctx.obj = config


@main.group()
def memories() -> None:
    """Long-term memory administration."""


@memories.command("list")
@click.option("--chat", "chat_id", help="Only show this chat's memories")
@click.pass_obj
def list_memories(config: MnemeConfig, chat_id: str | None) -> None:
    """List long-term memories, grouped by chat."""

    async def action(memory: MemoryManager) -> None:
        if not _require_long_term(memory, config):
            return

        chat_ids = [chat_id] if chat_id else await memory.list_chat_ids()
        if not chat_ids:
            console.print("[yellow]No long-term memory collections found[/yellow]")
            return

        total = 0
        for cid in chat_ids:
            entries = await memory.list_memories(cid)
            total += len(entries)

            table = Table(title=f"Chat {cid} ({len(entries)} memories)")
            table.add_column("ID", style="cyan")
            table.add_column("Category")
            table.add_column("Source")
            table.add_column("Created")
            table.add_column("Tags")
            table.add_column("Content")

            for entry in entries:
                table.add_row(
                    entry.id,
                    entry.category.value,
                    entry.source.value,
                    entry.created_at[:19],
                    ", ".join(f"#{t}" for t in entry.tags),
                    entry.content[:100],
                )
            console.print(table)

        console.print(f"[green]Total: {total} memories in {len(chat_ids)} chat(s)[/green]")

    _run(config, action)


@memories.command("reset")
@click.option("--chat", "chat_id", help="Only reset this chat")
@click.option("--yes", is_flag=True, help="Do not ask for confirmation")
@click.pass_obj
def reset_memories(config: MnemeConfig, chat_id: str | None, yes: bool) -> None:
    """Delete long-term memories for one chat or for every chat."""
    scope = f"chat {chat_id}" if chat_id else "ALL chats"
    if not yes:
        click.confirm(f"Delete long-term memory for {scope}?", abort=True)

    async def action(memory: MemoryManager) -> None:
        if not _require_long_term(memory, config):
            return

        chat_ids = await memory.list_chat_ids()
        if chat_id:
            if chat_id not in chat_ids:
                console.print(f"[yellow]No collection found for chat {chat_id}[/yellow]")
                return
            chat_ids = [chat_id]

        if not chat_ids:
            console.print("[yellow]No long-term memory collections found[/yellow]")
            return

        deleted = 0
        for cid in chat_ids:
            if await memory.clear_long_term(cid):
                deleted += 1
                console.print(f"[green]✓[/green] Deleted long-term memory for chat {cid}")
            else:
                console.print(f"[red]✗[/red] Failed to delete long-term memory for chat {cid}")

        console.print(f"Reset complete. {deleted} collection(s) deleted.")

    _run(config, action)


@main.command()
@click.argument("chat_id")
@click.pass_obj
def history(config: MnemeConfig, chat_id: str) -> None:
    """Show the short-term window of a chat."""

    async def action(memory: MemoryManager) -> None:
        messages = await memory.get_messages(chat_id)
        if not messages:
            console.print(f"[yellow]No short-term memory for chat {chat_id}[/yellow]")
            return

        table = Table(title=f"Short-term memory for chat {chat_id}")
        table.add_column("#", style="cyan")
        table.add_column("Role")
        table.add_column("Time")
        table.add_column("Content")

        for i, message in enumerate(messages, 1):
            table.add_row(str(i), message.role.value, message.timestamp[:19], message.content[:100])

        console.print(table)

    _run(config, action)


@main.command()
@click.argument("chat_id")
@click.argument("query")
@click.option("--limit", "-n", type=int, default=None, help="Maximum results")
@click.option("--min-score", type=float, default=None, help="Minimum combined score")
@click.option("--long-term-only", is_flag=True, help="Vector search over long-term memory only")
@click.pass_obj
def search(
    config: MnemeConfig,
    chat_id: str,
    query: str,
    limit: int | None,
    min_score: float | None,
    long_term_only: bool,
) -> None:
    """Search a chat's memory."""

    async def action(memory: MemoryManager) -> None:
        if long_term_only:
            results = await memory.search_long_term(chat_id, query, max_results=limit, min_score=min_score)
        else:
            results = await memory.search(chat_id, query, max_results=limit, min_score=min_score)

        if not results:
            console.print(f"[yellow]No memories match {query!r}[/yellow]")
            return

        table = Table(title=f"Results for {query!r}")
        table.add_column("Score", style="cyan")
        table.add_column("Source")
        table.add_column("Category")
        table.add_column("Content")

        for result in results:
            table.add_row(
                f"{result.score:.2f}",
                result.source.value,
                result.category.value if result.category else "",
                result.content[:100],
            )

        console.print(table)

    _run(config, action)


@main.command()
@click.argument("chat_id")
@click.argument("content")
@click.option(
    "--category",
    type=click.Choice([c.value for c in MemoryCategory if c != MemoryCategory.FILE]),
    default=MemoryCategory.FACT.value,
    help="Memory category",
)
@click.option("--tag", "tags", multiple=True, help="Tag (repeatable)")
@click.pass_obj
def remember(config: MnemeConfig, chat_id: str, content: str, category: str, tags: tuple[str, ...]) -> None:
    """Store a long-term memory for a chat."""

    async def action(memory: MemoryManager) -> None:
        if not _require_long_term(memory, config):
            return
        outcome = await memory.save_memory(chat_id, content, category=MemoryCategory(category), tags=tags)
        entry = outcome.entry
        if outcome.stored:
            console.print(f"[green]✓[/green] Remembered ({entry.category.value}): {entry.content}")
        elif outcome.duplicate_of:
            console.print(
                f"[yellow]Already remembered as {outcome.duplicate_of}, not stored:[/yellow] {entry.content}"
            )
        else:
            console.print(f"[red]Not stored:[/red] {entry.content}")

    _run(config, action)


@main.command()
@click.argument("chat_id")
@click.pass_obj
def stats(config: MnemeConfig, chat_id: str) -> None:
    """Print memory statistics for a chat."""

    async def action(memory: MemoryManager) -> dict[str, Any]:
        return await memory.stats(chat_id)

    data = _run(config, action)

    table = Table(title=f"Statistics for chat {chat_id}")
    table.add_column("Metric", style="cyan")
    table.add_column("Value")

    table.add_row("Short-term Messages", str(data["short_term_messages"]))
    table.add_row("Long-term Memories", str(data["long_term"]["total"]))
    for category, count in sorted(data["long_term"]["by_category"].items()):
        table.add_row(f"  {category}", str(count))
    table.add_row("Indexed Entries", str(data["index"]["total"]))
    table.add_row("  short-term", str(data["index"]["short_term_count"]))
    table.add_row("  long-term", str(data["index"]["long_term_count"]))

    cache = data["embedding_cache"]
    table.add_row("Embedding Cache Size", str(cache["size"]))
    table.add_row("Embedding Cache Hit Rate", f"{cache['hit_rate']:.1%}")

    console.print(table)


if __name__ == "__main__":
    main()

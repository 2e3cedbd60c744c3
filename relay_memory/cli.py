"""Command-line access to the workspace memory (search, journal, stats)."""

import asyncio
from collections.abc import Awaitable, Callable
import json
from pathlib import Path
from typing import TypeVar

import typer

from relay_memory.config import Config, get_config, set_config
from relay_memory.engine import MemoryEngine, create_memory_engine
from relay_memory.logging import configure_logging

T = TypeVar("T")

app = typer.Typer(help="Relay Memory - hybrid semantic + keyword memory over a workspace")


@app.callback()
def _setup(
    config: str = typer.Option("", "-c", "--config", help="Path to config file"),
    workspace: str = typer.Option("", "-w", "--workspace", help="Override workspace directory"),
    verbose: bool = typer.Option(False, "-v", "--verbose", help="Debug logging"),
) -> None:
    cfg = Config.from_yaml(Path(config)) if config else Config.load()
    if workspace:
        cfg.workspace.path = str(Path(workspace).expanduser().resolve())
    set_config(cfg)
    configure_logging(cfg, level="DEBUG" if verbose else None)


def _run(action: Callable[[MemoryEngine], Awaitable[T]]) -> T:
    async def runner() -> T:
        async with create_memory_engine(get_config()) as engine:
            return await action(engine)

    return asyncio.run(runner())


def _warn_if_keyword_only(engine: MemoryEngine) -> None:
    if not engine.embeddings.enabled:
        typer.echo(
            f"warning: embedding provider {engine.embeddings.model_id} is not configured; "
            "results are keyword-only",
            err=True,
        )


@app.command()
def search(
    query: list[str] = typer.Argument(..., help="Search query"),
    top_k: int = typer.Option(5, "--top-k", help="Maximum results"),
    min_score: float = typer.Option(0.2, "--min-score", help="Minimum blended score"),
    json_output: bool = typer.Option(False, "--json", help="Output results as JSON"),
) -> None:
    """Search the workspace memory."""
    text = " ".join(query).strip()

    async def action(engine: MemoryEngine):
        _warn_if_keyword_only(engine)
        return await engine.search(text, top_k=top_k, min_score=min_score)

    results = _run(action)
    if json_output:
        typer.echo(json.dumps([item.to_dict() for item in results], ensure_ascii=False, indent=2))
        return
    if not results:
        typer.echo(f"No memories found for '{text}'.")
        return
    for item in results:
        typer.echo(f"--- [{item.path}#L{item.start_line}-L{item.end_line}] (relevance: {item.score * 100:.0f}%) ---")
        typer.echo(item.text)
        typer.echo("")


@app.command()
def context(
    query: list[str] = typer.Argument(..., help="Prompt text to recall context for"),
    max_snippets: int = typer.Option(3, "--max-snippets", help="Maximum snippets"),
) -> None:
    """Print the recalled-context block that would be injected into a prompt."""
    text = " ".join(query).strip()
    block = _run(lambda engine: engine.get_context_for_prompt(text, max_snippets=max_snippets))
    typer.echo(block or "(no relevant memories)")


@app.command()
def recent(days: int = typer.Option(3, "--days", help="How many days of journal to show")) -> None:
    """Show recent journal entries and long-term memory."""

    async def action(engine: MemoryEngine) -> str:
        return engine.journal.recent_summary(days=days)

    summary = _run(action)
    typer.echo(summary or "(no recent memories)")


@app.command()
def write(content: list[str] = typer.Argument(..., help="Text to record in today's journal")) -> None:
    """Append an entry to today's journal."""
    text = " ".join(content).strip()
    if not text:
        typer.echo("Nothing to write.", err=True)
        raise typer.Exit(code=1)

    async def action(engine: MemoryEngine) -> Path:
        return engine.journal.append_daily_log(text)

    path = _run(action)
    typer.echo(f"Written: {path}")


@app.command()
def stats() -> None:
    """Show index statistics."""
    result = _run(lambda engine: engine.stats())
    typer.echo("Memory index stats:")
    typer.echo(f"  chunks: {result.chunk_count}")
    typer.echo(f"  indexed files: {result.file_count}")
    typer.echo(f"  cached embeddings: {result.cached_embedding_count}")
    typer.echo(f"  workspace: {get_config().resolved_workspace_path()}")
    if result.file_paths:
        typer.echo("")
        typer.echo("Indexed files:")
        for path in result.file_paths:
            typer.echo(f"  {path}")


@app.command()
def index() -> None:
    """Run an incremental index pass."""

    async def action(engine: MemoryEngine) -> int:
        _warn_if_keyword_only(engine)
        return await engine.index()

    total = _run(action)
    typer.echo(f"Index complete: {total} chunks")


def main() -> None:
    app()


if __name__ == "__main__":
    main()

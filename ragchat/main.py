"""
RAG Chat - CLI Entry Point
---------------------------
Typer commands around RAGService.

Usage:
    python -m ragchat.main build-index            # Chunk, embed, persist (if stale)
    python -m ragchat.main build-index --force    # Rebuild unconditionally
    python -m ragchat.main ask                    # Interactive chat loop
    python -m ragchat.main ask -q "..."           # Single-shot question
    python -m ragchat.main ask -q "..." --json    # Machine-readable reply
    python -m ragchat.main status                 # Index / LLM / session overview
    python -m ragchat.main sessions               # Active sessions
"""
from __future__ import annotations

import asyncio
import json
from typing import Optional

import typer
from loguru import logger
from rich import box
from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.table import Table

from ragchat.config import Settings, load_settings
from ragchat.errors import ConfigurationError
from ragchat.serving.service import ChatReply, RAGService, build_service
from ragchat.utils.helpers import ensure_dirs
from ragchat.utils.logger import setup_logger

app = typer.Typer(
    name="ragchat",
    help="Retrieval-augmented support chat - CLI",
    add_completion=False,
)
console = Console()


# --- Helpers ------------------------------------------------------------------

def _bootstrap(config: Optional[str]) -> Settings:
    try:
        settings = load_settings(config)
    except ConfigurationError as exc:
        console.print(f"[red]Configuration error:[/red] {exc}")
        raise typer.Exit(1)
    setup_logger(log_level=settings.logging.level, log_file=settings.logging.file)
    ensure_dirs("data")
    return settings


def _service(settings: Settings, force: bool = False) -> RAGService:
    try:
        return build_service(settings, force_rebuild=force)
    except ConfigurationError as exc:
        console.print(
            f"[red]{exc}[/red]\n"
            f"Add a corpus at [bold]{settings.storage.corpus_file}[/bold] and retry."
        )
        raise typer.Exit(1)


def _print_reply(reply: ChatReply) -> None:
    """Render a ChatReply to the terminal using Rich."""
    style = "red" if reply.error else ("yellow" if reply.fallback else "green")
    console.print()
    console.print(
        Panel(
            Markdown(reply.reply),
            title=f"[bold {style}]Assistant[/bold {style}]",
            border_style=style,
            expand=True,
        )
    )
    console.print(
        f"[dim]"
        f"context={'yes' if reply.has_context else 'no'}  "
        f"chunks={reply.retrieved_chunks}  "
        f"tokens={reply.tokens_used}  "
        f"time={reply.processing_time_ms}ms  |  "
        f"session={reply.session_id}"
        f"[/dim]\n"
    )


# --- Commands -----------------------------------------------------------------

@app.command("build-index")
def build_index(
    config: Optional[str] = typer.Option(
        None, "--config", "-c", help="Path to config YAML"
    ),
    force: bool = typer.Option(
        False, "--force", help="Rebuild even if the persisted index is current"
    ),
) -> None:
    """
    Chunk, embed and persist the corpus.

    \b
    Steps:
      1. Load data/docs.json
      2. Fixed word windows (300 words, 50 overlap)
      3. Embed every chunk
      4. Save data/vectorStore.json
    """
    settings = _bootstrap(config)
    with console.status("[cyan]Building vector store...[/cyan]"):
        service = _service(settings, force=force)

    stats = service.index_stats
    table = Table("Metric", "Value", box=box.SIMPLE, header_style="bold dim")
    table.add_row("Documents", f"{stats.total_documents:,}")
    table.add_row("Chunks", f"{stats.total_chunks:,}")
    table.add_row("Avg words/chunk", str(stats.average_chunk_size))
    table.add_row("Dimensions", str(stats.embedding_dimensions))
    table.add_row("Rebuilt", "yes" if stats.rebuilt else "no (up to date)")
    console.print(table)
    console.print(f"[green][OK] Index ready -> {settings.storage.index_file}[/green]")


@app.command()
def ask(
    query: Optional[str] = typer.Option(
        None, "--query", "-q", help="Single query (omit for interactive loop)"
    ),
    session: Optional[str] = typer.Option(
        None, "--session", "-s", help="Continue an existing session id"
    ),
    json_out: bool = typer.Option(
        False, "--json", help="Print reply as JSON (single-query mode only)"
    ),
    config: Optional[str] = typer.Option(
        None, "--config", "-c", help="Path to config YAML"
    ),
) -> None:
    """
    Ask questions against the support corpus.

    \b
    Steps per query:
      1. Resolve or create the session
      2. Embed the question and retrieve chunks above the threshold
      3. Generate with the configured LLM (or answer without context)
      4. Store both turns in the session history
    """
    settings = _bootstrap(config)
    service = _service(settings)
    asyncio.run(_ask_async(service, query, session, json_out))


async def _ask_async(
    service: RAGService,
    query: Optional[str],
    session_id: Optional[str],
    json_out: bool,
) -> None:
    await service.start()
    try:
        # --- Single-shot mode -------------------------------------------------
        if query:
            reply = await service.process_query(session_id, query, {"client": "cli"})
            if json_out:
                console.print_json(json.dumps(reply.to_dict(), indent=2))
            else:
                _print_reply(reply)
            return

        # --- Interactive loop -------------------------------------------------
        console.print(
            Panel(
                "[bold cyan]RAG Chat[/bold cyan]\n"
                f"[white]provider={service.gateway.provider_name} "
                f"model={service.gateway.current_model}[/white]",
                box=box.DOUBLE_EDGE,
                expand=False,
            )
        )
        console.print("[dim]Type 'exit', 'quit', or press Ctrl+C to quit.[/dim]\n")

        while True:
            try:
                raw = console.input("[bold cyan]You[/bold cyan] > ").strip()
            except (EOFError, KeyboardInterrupt):
                console.print("\n[dim]Goodbye.[/dim]")
                break

            if not raw:
                continue
            if raw.lower() in {"exit", "quit", "q"}:
                console.print("[dim]Goodbye.[/dim]")
                break

            with console.status("[cyan]Thinking...[/cyan]"):
                reply = await service.process_query(session_id, raw, {"client": "cli"})
            session_id = reply.session_id
            _print_reply(reply)
    finally:
        await service.stop()


@app.command()
def status(
    config: Optional[str] = typer.Option(
        None, "--config", "-c", help="Path to config YAML"
    ),
) -> None:
    """Show index, retrieval, LLM and conversation state."""
    settings = _bootstrap(config)
    service = _service(settings)
    info = service.get_system_status()

    console.print()
    console.print("[bold]Index[/bold]")
    for key, value in (info["index"] or {}).items():
        console.print(f"  {key:<22}: {value}")
    console.print("[bold]Retrieval[/bold]")
    for key, value in info["retrieval"].items():
        console.print(f"  {key:<22}: {value}")
    console.print("[bold]LLM[/bold]")
    llm = info["llm"]
    console.print(f"  {'provider':<22}: [cyan]{llm['provider']}[/cyan]")
    console.print(f"  {'model':<22}: {llm['model']}")
    console.print(f"  {'temperature':<22}: {llm['temperature']}")
    console.print(f"  {'available_providers':<22}: {', '.join(llm['available_providers'])}")
    console.print("[bold]Conversations[/bold]")
    conv = info["conversations"]
    console.print(f"  {'active_sessions':<22}: [green]{conv['total_active_sessions']}[/green]")
    console.print(f"  {'total_messages':<22}: {conv['total_messages']}")
    console.print()


@app.command()
def sessions(
    config: Optional[str] = typer.Option(
        None, "--config", "-c", help="Path to config YAML"
    ),
) -> None:
    """List active (non-expired) sessions, most recent first."""
    settings = _bootstrap(config)
    service = _service(settings)
    rows = service.conversations.get_all_sessions()
    if not rows:
        console.print("[yellow]No active sessions.[/yellow]")
        return

    table = Table(
        "Session", "Created", "Last activity", "Messages",
        box=box.SIMPLE,
        show_header=True,
        header_style="bold dim",
    )
    for row in rows:
        table.add_row(row["id"], row["created_at"], row["last_activity"], str(row["message_count"]))
    console.print(table)
    logger.debug(f"[CLI] Listed {len(rows)} sessions")


# --- Entry Point --------------------------------------------------------------

if __name__ == "__main__":
    app()

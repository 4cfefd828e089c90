"""MetaVector CLI application - main entry point."""

import asyncio
import logging
import signal
from pathlib import Path
from typing import List

import typer
from rich.console import Console
from rich.traceback import install

from metavector import __version__
from metavector.exceptions import AuthError, CancelledError, MetaVectorError

from .config import config_app
from .helpers import get_error_console, normalize_store_name, open_runtime, select_store, tier_models
from .memory import memory_app

# Install rich traceback handler for better error messages
install(show_locals=False, width=None, word_wrap=True)

app = typer.Typer(
    name="metavector",
    help="Conversational agent with decaying short-term and long-term memory",
    no_args_is_help=True,
)
app.add_typer(memory_app, name="memory")
app.add_typer(config_app, name="config")

console = Console()

EXIT_COMMANDS = ("/exit", "/quit")


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    if verbose:
        logging.getLogger("metavector").setLevel(logging.DEBUG)


@app.command()
def version():
    """Show version information."""
    console.print(f"MetaVector version {__version__}")


def _print_report(report) -> None:
    status = "green" if not report.failed else "yellow"
    console.print(f"[{status}]{report.source}:[/{status}] ✓ {report.ok} | ✗ {report.failed}")


async def _ingest(targets: List[Path], texts: List[str], store_name: str) -> int:
    from metavector.memory.ingest import MemoryIngestor
    from metavector.provider import LLMProvider

    config_manager, tiers = open_runtime()
    try:
        credential, embed_model, meta_model = tier_models(config_manager.current, store_name)
        ingestor = MemoryIngestor(select_store(tiers, store_name), LLMProvider(), credential, embed_model, meta_model)
        failed = 0
        for path in targets:
            report = await ingestor.ingest_file(path)
            _print_report(report)
            failed += report.failed
        for text in texts:
            report = await ingestor.ingest_text(text)
            if not report.total:
                console.print("[yellow]Text too short to process.[/yellow]")
            _print_report(report)
            failed += report.failed
        return failed
    finally:
        tiers.close()


@app.command()
def ingest(
    paths: List[Path] = typer.Argument(help="Text or JSON files to chunk and store"),
    store: str = typer.Option("stm", "--store", "-s", help="Target store (stm or ltm)"),
):
    """Chunk files, embed each chunk and store it as a memory."""
    normalize_store_name(store)
    missing = [p for p in paths if not p.exists()]
    if missing:
        get_error_console().print(f"[red]File not found: {missing[0]}[/red]")
        raise typer.Exit(1)

    try:
        failed = asyncio.run(_ingest(paths, [], store))
    except MetaVectorError as e:
        get_error_console().print(f"[red]Ingestion failed: {e}[/red]")
        raise typer.Exit(1)
    if failed:
        raise typer.Exit(1)


@app.command("ingest-text")
def ingest_text(
    text: str = typer.Argument(help="Text to chunk and store"),
    store: str = typer.Option("stm", "--store", "-s", help="Target store (stm or ltm)"),
):
    """Chunk pasted text, embed each chunk and store it as a memory."""
    normalize_store_name(store)
    try:
        failed = asyncio.run(_ingest([], [text], store))
    except MetaVectorError as e:
        get_error_console().print(f"[red]Ingestion failed: {e}[/red]")
        raise typer.Exit(1)
    if failed:
        raise typer.Exit(1)


async def _chat_loop() -> None:
    from metavector.agent import ChatHistory, ConversationAgent
    from metavector.provider import LLMProvider
    from metavector.reflection import ReflectionScheduler

    config_manager, tiers = open_runtime()
    provider = LLMProvider()
    agent = ConversationAgent(
        config_manager,
        tiers.stm,
        tiers.ltm,
        provider=provider,
        history=ChatHistory(config_manager.current.history_path),
    )
    scheduler = ReflectionScheduler(config_manager, tiers.stm, tiers.ltm, provider=provider, is_busy=lambda: agent.busy)
    scheduler.start()
    loop = asyncio.get_running_loop()

    console.print("[bold cyan]MetaVector chat[/bold cyan] [dim](/quit to exit, /autonomy on|off, /clear)[/dim]")
    try:
        while True:
            try:
                message = await asyncio.to_thread(console.input, "[bold purple]You:[/bold purple] ")
            except (EOFError, KeyboardInterrupt):
                break

            message = message.strip()
            if not message:
                continue
            if message in EXIT_COMMANDS:
                break
            if message == "/clear":
                agent.history.clear()
                console.print("[dim]Conversation history cleared[/dim]")
                continue
            command = message.split()
            if command[0] == "/autonomy":
                if len(command) != 2 or command[1].lower() not in ("on", "off"):
                    console.print("[yellow]Usage: /autonomy on|off[/yellow]")
                    continue
                enabled = command[1].lower() == "on"
                config_manager.update(autonomy_enabled=enabled)
                console.print(f"[dim]Autonomous reflection {'enabled' if enabled else 'disabled'}[/dim]")
                continue

            # Ctrl-C during a turn cancels the turn, not the session
            try:
                loop.add_signal_handler(signal.SIGINT, agent.cancel)
                handler_installed = True
            except (NotImplementedError, RuntimeError):
                handler_installed = False

            console.print("[bold]Agent:[/bold] ", end="")
            try:
                await agent.run_turn(message, on_delta=lambda delta: console.print(delta, end="", markup=False))
                console.print()
            except CancelledError:
                console.print("\n[yellow]Response cancelled[/yellow]")
            except AuthError as e:
                console.print(f"\n[red]{e}. Set one with 'metavector config set api_key_a ...'[/red]")
            except MetaVectorError as e:
                console.print(f"\n[red]Error: {e}[/red]")
            finally:
                if handler_installed:
                    loop.remove_signal_handler(signal.SIGINT)
    finally:
        await scheduler.stop()
        await agent.ranker.drain()
        tiers.close()


@app.command()
def chat():
    """Start an interactive chat session backed by both memory stores."""
    try:
        asyncio.run(_chat_loop())
    except MetaVectorError as e:
        get_error_console().print(f"[red]{e}[/red]")
        raise typer.Exit(1)

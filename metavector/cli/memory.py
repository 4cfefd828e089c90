"""Memory inspection and maintenance CLI commands."""

import json
from datetime import datetime
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from metavector.exceptions import MetaVectorError

from .helpers import get_error_console, open_runtime, select_store

console = Console()

memory_app = typer.Typer(help="Inspect and maintain the memory stores")


def _format_ms(value: int | None) -> str:
    if not value:
        return "-"
    return datetime.fromtimestamp(value / 1000).strftime("%Y-%m-%d %H:%M")


@memory_app.command("stats")
def memory_stats():
    """Show how many memories each store holds."""
    _, tiers = open_runtime()
    try:
        table = Table(title="Memory Stores")
        table.add_column("Store", style="cyan")
        table.add_column("Memories", justify="right")
        table.add_column("Decay rate", justify="right", style="dim")
        table.add_column("Path", style="dim")
        for store in (tiers.stm, tiers.ltm):
            table.add_row(store.label, str(store.count()), f"{store.decay_rate:g}/h", str(store.db_path))
        console.print(table)
    except MetaVectorError as e:
        get_error_console().print(f"[red]Failed to read memory stores: {e}[/red]")
        raise typer.Exit(1)
    finally:
        tiers.close()


@memory_app.command("list")
def memory_list(
    store: str = typer.Option("stm", "--store", "-s", help="Store to list (stm or ltm)"),
    sort: str = typer.Option("score", "--sort", help="Sort by score, timestamp or last_accessed"),
    limit: int = typer.Option(20, "--limit", "-n", help="Maximum number of results"),
    ascending: bool = typer.Option(False, "--ascending", help="Lowest first"),
):
    """List memories ordered by score or time.

    Examples:
        metavector memory list
        metavector memory list --store ltm --sort timestamp --limit 5
    """
    _, tiers = open_runtime()
    try:
        target = select_store(tiers, store)
        records = target.list_ordered(sort, descending=not ascending, limit=limit)

        if not records:
            console.print(f"[yellow]No memories in {target.label}[/yellow]")
            return

        table = Table(title=f"{target.label} memories ({len(records)} shown)")
        table.add_column("ID", style="cyan", no_wrap=True)
        table.add_column("Score", justify="right")
        table.add_column("Created", style="dim")
        table.add_column("Last accessed", style="dim")
        table.add_column("Source", style="green")
        table.add_column("Text")
        for record in records:
            preview = record.text if len(record.text) <= 80 else record.text[:77] + "..."
            table.add_row(
                str(record.id),
                f"{record.score:.3f}",
                _format_ms(record.timestamp),
                _format_ms(record.last_accessed),
                record.source,
                preview,
            )
        console.print(table)
    except MetaVectorError as e:
        get_error_console().print(f"[red]Failed to list memories: {e}[/red]")
        raise typer.Exit(1)
    finally:
        tiers.close()


@memory_app.command("decay")
def memory_decay():
    """Apply one decay sweep to both stores now."""
    _, tiers = open_runtime()
    try:
        for store in (tiers.stm, tiers.ltm):
            result = store.decay()
            console.print(f"[green]✓ {store.label}:[/green] updated {result.updated}, deleted {result.deleted}")
    except MetaVectorError as e:
        get_error_console().print(f"[red]Decay failed: {e}[/red]")
        raise typer.Exit(1)
    finally:
        tiers.close()


@memory_app.command("clear")
def memory_clear(
    store: str = typer.Option("all", "--store", "-s", help="Store to clear (stm, ltm or all)"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
):
    """Delete memories. This cannot be undone."""
    if not yes and not typer.confirm(f"Clear {store} memories? This cannot be undone."):
        console.print("[yellow]Aborted[/yellow]")
        raise typer.Exit(0)

    _, tiers = open_runtime()
    try:
        targets = (tiers.stm, tiers.ltm) if store.lower() == "all" else (select_store(tiers, store),)
        for target in targets:
            deleted = target.clear()
            console.print(f"[green]✓ Cleared {target.label}:[/green] {deleted} memories deleted")
    except MetaVectorError as e:
        get_error_console().print(f"[red]Failed to clear memories: {e}[/red]")
        raise typer.Exit(1)
    finally:
        tiers.close()


@memory_app.command("export")
def memory_export(
    output: Path = typer.Argument(help="JSON file to write"),
    store: str = typer.Option("stm", "--store", "-s", help="Store to export (stm or ltm)"),
):
    """Back up a store as a JSON array of records."""
    _, tiers = open_runtime()
    try:
        target = select_store(tiers, store)
        records = target.export_records()
        output.write_text(json.dumps(records, indent=2), encoding="utf-8")
        console.print(f"[green]✓ Exported {len(records)} {target.label} memories to[/green] {output}")
    except MetaVectorError as e:
        get_error_console().print(f"[red]Export failed: {e}[/red]")
        raise typer.Exit(1)
    finally:
        tiers.close()


@memory_app.command("import")
def memory_import(
    source: Path = typer.Argument(help="JSON file produced by 'memory export'"),
    store: str = typer.Option("stm", "--store", "-s", help="Store to import into (stm or ltm)"),
):
    """Restore records from a JSON backup (new ids are assigned)."""
    if not source.exists():
        get_error_console().print(f"[red]File not found: {source}[/red]")
        raise typer.Exit(1)

    try:
        records = json.loads(source.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        get_error_console().print(f"[red]Invalid JSON in {source}: {e}[/red]")
        raise typer.Exit(1)
    except (OSError, UnicodeDecodeError) as e:
        get_error_console().print(f"[red]Cannot read {source}: {e}[/red]")
        raise typer.Exit(1)
    if not isinstance(records, list):
        get_error_console().print("[red]Backup must be a JSON array of records[/red]")
        raise typer.Exit(1)

    _, tiers = open_runtime()
    try:
        target = select_store(tiers, store)
        ids = target.import_records(records)
        console.print(f"[green]✓ Imported {len(ids)} memories into {target.label}[/green]")
    except MetaVectorError as e:
        get_error_console().print(f"[red]Import failed: {e}[/red]")
        raise typer.Exit(1)
    finally:
        tiers.close()

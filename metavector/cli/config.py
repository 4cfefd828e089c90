"""Configuration management CLI commands."""

import json
from typing import Any, Optional

import typer
from rich.console import Console

from metavector.config import Config, ConfigManager, get_config_path
from metavector.exceptions import ValidationError

from .helpers import get_error_console, mask_secret

console = Console()

config_app = typer.Typer(help="Manage MetaVector configuration")

SECRET_FIELDS = ("api_key_a", "api_key_b", "api_key_c")
STRING_TYPES = (str, Optional[str])


def _parse_value(key: str, value: str) -> Any:
    """Text settings keep the raw string; others accept JSON literals."""
    annotation = Config.model_fields[key].annotation
    if annotation == Optional[str] and value in ("", "null"):
        return None
    if annotation in STRING_TYPES:
        return value
    try:
        parsed = json.loads(value)
    except json.JSONDecodeError:
        return value
    return value if isinstance(parsed, (dict, list)) else parsed


@config_app.command("show")
def config_show():
    """Show current configuration (API keys masked)."""
    config_path = get_config_path()
    config = ConfigManager.from_file(config_path).current

    console.print(f"[cyan]Configuration file:[/cyan] [dim]{config_path}[/dim]\n")
    for name in Config.model_fields:
        value = getattr(config, name)
        if name in SECRET_FIELDS:
            shown = mask_secret(value)
        elif name == "autonomy_prompt":
            shown = value.splitlines()[0] + " …" if value else ""
        else:
            shown = "[dim]default[/dim]" if value is None else str(value)
        console.print(f"[bold]{name}:[/bold] {shown}")

    console.print(f"\n[bold]Data directory:[/bold] {config.resolved_data_dir()}")


@config_app.command("set")
def config_set(
    key: str = typer.Argument(help="Setting name (e.g. 'autonomy_enabled')"),
    value: str = typer.Argument(help="New value; JSON literals (true, 45, null) are parsed"),
):
    """Change one setting.

    Examples:
        metavector config set api_key_a sk-...
        metavector config set autonomy_enabled true
        metavector config set autonomy_interval 60
    """
    if key not in Config.model_fields:
        get_error_console().print(f"[red]Unknown setting '{key}'[/red]")
        raise typer.Exit(1)

    parsed = _parse_value(key, value)

    config_path = get_config_path()
    manager = ConfigManager.from_file(config_path)
    try:
        manager.update(persist=True, **{key: parsed})
    except ValidationError as e:
        get_error_console().print(f"[red]Invalid value for {key}: {e}[/red]")
        raise typer.Exit(1)

    shown = mask_secret(parsed) if key in SECRET_FIELDS else parsed
    console.print(f"[green]✓ {key} set to:[/green] {shown}")
    console.print(f"[dim]Saved to: {config_path}[/dim]")

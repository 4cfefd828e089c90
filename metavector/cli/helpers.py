"""Shared helpers for CLI commands."""

from typing import Optional, Tuple

import typer
from rich.console import Console

from metavector.config import Config, ConfigManager
from metavector.memory.store import MemoryStore, MemoryTiers, open_memory_tiers

STORE_ALIASES = {
    "stm": "stm",
    "short": "stm",
    "short-term": "stm",
    "ltm": "ltm",
    "long": "ltm",
    "long-term": "ltm",
}


def get_error_console() -> Console:
    """Console for error output (stderr)."""
    return Console(stderr=True)


def normalize_store_name(name: str) -> str:
    key = STORE_ALIASES.get(name.strip().lower())
    if key is None:
        get_error_console().print(f"[red]Unknown store '{name}' (use stm or ltm)[/red]")
        raise typer.Exit(1)
    return key


def open_runtime() -> Tuple[ConfigManager, MemoryTiers]:
    """Load configuration from disk and open both memory stores."""
    config_manager = ConfigManager.from_file()
    return config_manager, open_memory_tiers(config_manager.current)


def select_store(tiers: MemoryTiers, name: str) -> MemoryStore:
    return tiers.stm if normalize_store_name(name) == "stm" else tiers.ltm


def tier_models(config: Config, name: str) -> Tuple[Optional[str], str, str]:
    """Credential, embedding model and meta model used for a store."""
    if normalize_store_name(name) == "stm":
        return config.api_key_b, config.model_b_embed, config.model_b_meta
    return config.api_key_c, config.model_c_embed, config.model_c_meta


def mask_secret(value: Optional[str]) -> str:
    if not value:
        return "[dim]not set[/dim]"
    if len(value) <= 8:
        return "****"
    return f"{value[:4]}…{value[-4:]}"

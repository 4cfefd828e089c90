"""MetaVector configuration management."""

import json
import logging
import threading
from pathlib import Path
from typing import Any, Callable, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from .exceptions import ValidationError
from .xdg import get_xdg_config_path, get_xdg_data_path

logger = logging.getLogger(__name__)

MIN_AUTONOMY_INTERVAL = 30

DEFAULT_AUTONOMY_PROMPT = (
    "You are an introspective AI agent. Review these memories and generate a thoughtful reflection "
    "or insight that synthesizes them in a new way. Focus on finding patterns, drawing conclusions, "
    "or generating novel perspectives.\n\n"
    "Generate a reflection that:\n"
    "1. Synthesizes these memories in an interesting way\n"
    "2. Draws novel connections or insights\n"
    "3. Is written in a clear, natural style\n"
    "4. Could be valuable for future context"
)


class Config(BaseModel):
    """MetaVector configuration.

    Credential A drives generation, credential B the Short-Term store's
    embedding/meta-scoring and credential C the Long-Term store's.
    """

    model_config = ConfigDict(
        extra="allow",
        str_strip_whitespace=True,
        frozen=True,
    )

    api_key_a: Optional[str] = None
    api_key_b: Optional[str] = None
    api_key_c: Optional[str] = None

    model_a: str = "openai:gpt-4.1-2025-04-14"
    model_b_embed: str = "openai:text-embedding-3-small"
    model_b_meta: str = "openai:gpt-4.1-2025-04-14"
    model_c_embed: str = "openai:text-embedding-3-large"
    model_c_meta: str = "openai:gpt-4.1-2025-04-14"

    global_prompt: str = ""
    autonomy_enabled: bool = False
    autonomy_interval: int = Field(default=MIN_AUTONOMY_INTERVAL, ge=MIN_AUTONOMY_INTERVAL)
    autonomy_prompt: str = DEFAULT_AUTONOMY_PROMPT

    stm_decay_rate: float = Field(default=0.995, gt=0, le=1)
    ltm_decay_rate: float = Field(default=0.999, gt=0, le=1)
    min_score: float = Field(default=0.05, ge=0)
    top_k: int = Field(default=3, ge=1)
    history_limit: int = Field(default=20, ge=0)
    remember_conversation: bool = False  # Store user messages in Short-Term after each turn

    data_dir: Optional[Path] = None

    @field_validator("api_key_a", "api_key_b", "api_key_c")
    @classmethod
    def _blank_key_is_missing(cls, value: Optional[str]) -> Optional[str]:
        return value or None

    def resolved_data_dir(self) -> Path:
        return self.data_dir if self.data_dir else get_xdg_data_path()

    @property
    def stm_db_path(self) -> Path:
        return self.resolved_data_dir() / "stm.duckdb"

    @property
    def ltm_db_path(self) -> Path:
        return self.resolved_data_dir() / "ltm.duckdb"

    @property
    def history_path(self) -> Path:
        return self.resolved_data_dir() / "chat_history.json"

    @property
    def autonomy_ready(self) -> bool:
        """Autonomy flag set and both generation and embedding credentials present."""
        return self.autonomy_enabled and bool(self.api_key_a) and bool(self.api_key_b)


def get_config_path() -> Path:
    return get_xdg_config_path("config.json")


def load_config(path: Optional[Path] = None) -> Config:
    """Load MetaVector configuration from JSON file.

    Args:
        path: Path to config.json file. If None, uses default path

    Returns:
        Config object with loaded settings. Returns default config if file doesn't exist
        or cannot be parsed.
    """
    if path is None:
        path = get_config_path()

    if not path.exists():
        return Config()

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)

        if "data_dir" in data and data["data_dir"]:
            data["data_dir"] = Path(data["data_dir"])

        return Config.model_validate(data)

    except json.JSONDecodeError as e:
        logger.warning("Failed to parse config at %s: %s", path, e)
        return Config()
    except PydanticValidationError as e:
        logger.warning("Invalid config at %s, using defaults: %s", path, e)
        return Config()


def save_config(config: Config, path: Optional[Path] = None) -> None:
    """Save MetaVector configuration to JSON file.

    Args:
        config: Config object to save
        path: Path to config.json file. If None, uses default path

    Raises:
        IOError: If file cannot be written
    """
    if path is None:
        path = get_config_path()

    path.parent.mkdir(parents=True, exist_ok=True)

    # Exclude None values for cleaner output
    config_data = config.model_dump(exclude_none=True, mode="json")

    with open(path, "w", encoding="utf-8") as f:
        json.dump(config_data, f, indent=2)


ConfigListener = Callable[[Config], None]


class ConfigManager:
    """Holds the active configuration and replaces it atomically.

    Components receive the manager at construction and read ``current``
    whenever they need a setting, so an update is seen as a whole: either
    every changed field or none of them.
    """

    def __init__(self, config: Optional[Config] = None, path: Optional[Path] = None):
        self._config = config or Config()
        self._path = path
        self._lock = threading.Lock()
        self._listeners: List[ConfigListener] = []

    @classmethod
    def from_file(cls, path: Optional[Path] = None) -> "ConfigManager":
        path = path or get_config_path()
        return cls(load_config(path), path=path)

    @property
    def current(self) -> Config:
        return self._config

    def update(self, persist: bool = False, **changes: Any) -> Config:
        """Validate and install a new configuration.

        Args:
            persist: Also write the new configuration to the config file
            **changes: Fields to replace

        Returns:
            The newly active Config

        Raises:
            ValidationError: If the resulting configuration is invalid; the
                active configuration is left untouched
        """
        with self._lock:
            merged = {**self._config.model_dump(), **changes}
            try:
                new_config = Config.model_validate(merged)
            except PydanticValidationError as e:
                raise ValidationError(f"Invalid configuration update: {e}") from e
            self._config = new_config
            listeners = list(self._listeners)

        if persist:
            save_config(new_config, self._path)

        for listener in listeners:
            try:
                listener(new_config)
            except Exception as e:
                logger.error("Config listener %r failed: %s", listener, e)

        return new_config

    def subscribe(self, listener: ConfigListener) -> Callable[[], None]:
        """Register a callback for config changes. Returns an unsubscribe function."""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

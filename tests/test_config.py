"""Tests for config module."""

import json

import pytest

from metavector.config import Config, ConfigManager, get_config_path, load_config, save_config
from metavector.exceptions import ValidationError


def test_load_config_nonexistent(tmp_path):
    """Test loading config from nonexistent file returns default config."""
    config = load_config(tmp_path / "config.json")

    assert config.api_key_a is None
    assert config.autonomy_enabled is False
    assert config.autonomy_interval == 30
    assert config.top_k == 3


def test_save_and_load_config(tmp_path):
    """Test saving and loading config."""
    config_path = tmp_path / "nested" / "config.json"
    config = Config(api_key_a="sk-a", model_b_embed="ollama:nomic-embed-text", data_dir=tmp_path / "data")

    save_config(config, config_path)

    assert config_path.exists()
    saved = json.loads(config_path.read_text())
    assert "api_key_b" not in saved

    loaded = load_config(config_path)
    assert loaded.api_key_a == "sk-a"
    assert loaded.model_b_embed == "ollama:nomic-embed-text"
    assert loaded.data_dir == tmp_path / "data"


def test_load_invalid_json_falls_back_to_defaults(tmp_path):
    config_path = tmp_path / "config.json"
    config_path.write_text("{not json")

    assert load_config(config_path) == Config()


def test_load_invalid_values_falls_back_to_defaults(tmp_path):
    config_path = tmp_path / "config.json"
    config_path.write_text(json.dumps({"autonomy_interval": 5}))

    assert load_config(config_path).autonomy_interval == 30


def test_blank_keys_count_as_missing():
    config = Config(api_key_a="", api_key_b="   ")
    assert config.api_key_a is None
    assert config.api_key_b is None


def test_autonomy_ready_requires_keys_a_and_b():
    assert not Config(autonomy_enabled=True, api_key_a="a").autonomy_ready
    assert not Config(autonomy_enabled=False, api_key_a="a", api_key_b="b").autonomy_ready
    assert Config(autonomy_enabled=True, api_key_a="a", api_key_b="b").autonomy_ready


def test_paths_follow_data_dir(tmp_path):
    config = Config(data_dir=tmp_path)
    assert config.stm_db_path == tmp_path / "stm.duckdb"
    assert config.ltm_db_path == tmp_path / "ltm.duckdb"
    assert config.history_path == tmp_path / "chat_history.json"


def test_default_data_dir_is_xdg(tmp_path, monkeypatch):
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path))
    assert Config().resolved_data_dir() == tmp_path / "metavector"


def test_config_path_prefers_xdg_config_home(isolated_home):
    assert get_config_path() == isolated_home / "config" / "metavector" / "config.json"


def test_dot_metavector_config_is_ignored(isolated_home):
    stray = isolated_home / ".metavector" / "config.json"
    stray.parent.mkdir()
    stray.write_text(json.dumps({"api_key_a": "stray-key"}))

    path = get_config_path()

    assert path == isolated_home / "config" / "metavector" / "config.json"
    assert load_config(path).api_key_a is None


def test_config_path_falls_back_to_dot_config(tmp_path, monkeypatch):
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.delenv("XDG_CONFIG_HOME", raising=False)
    existing = tmp_path / ".config" / "metavector" / "config.json"
    existing.parent.mkdir(parents=True)
    existing.write_text("{}")

    assert get_config_path() == existing


class TestConfigManager:
    def test_update_replaces_config(self, config_manager):
        before = config_manager.current
        after = config_manager.update(autonomy_enabled=True, autonomy_interval=45)

        assert config_manager.current is after
        assert after.autonomy_enabled is True
        assert after.autonomy_interval == 45
        assert before.autonomy_enabled is False

    def test_invalid_update_keeps_old_config(self, config_manager):
        before = config_manager.current

        with pytest.raises(ValidationError):
            config_manager.update(autonomy_enabled=True, autonomy_interval=10)

        assert config_manager.current is before

    def test_listeners_notified(self, config_manager):
        seen = []
        unsubscribe = config_manager.subscribe(seen.append)

        config_manager.update(global_prompt="Be brief.")
        unsubscribe()
        config_manager.update(global_prompt="Be verbose.")

        assert [c.global_prompt for c in seen] == ["Be brief."]

    def test_failing_listener_does_not_block_update(self, config_manager):
        def broken(config):
            raise RuntimeError("listener exploded")

        seen = []
        config_manager.subscribe(broken)
        config_manager.subscribe(seen.append)

        config_manager.update(top_k=5)

        assert config_manager.current.top_k == 5
        assert len(seen) == 1

    def test_persist_writes_file(self, tmp_path):
        config_path = tmp_path / "config.json"
        manager = ConfigManager.from_file(config_path)

        manager.update(persist=True, api_key_a="sk-saved")

        assert load_config(config_path).api_key_a == "sk-saved"

"""Tests for the CLI interface."""

import json

import pytest
from conftest import FakeProvider

from metavector.cli import app
from metavector.config import Config, get_config_path, load_config, save_config
from metavector.memory.store import MemoryStore

PARAGRAPH = "The harbour was quiet that morning and the boats rocked gently at their moorings."


@pytest.fixture
def configured(isolated_home):
    """Config file with every credential set, in an isolated home."""
    save_config(Config(api_key_a="key-a", api_key_b="key-b", api_key_c="key-c"), get_config_path())
    return isolated_home


@pytest.fixture
def fake_llm(monkeypatch):
    provider = FakeProvider()
    monkeypatch.setattr("metavector.provider.LLMProvider", lambda: provider)
    return provider


def test_cli_help(cli_runner):
    """Test that help is displayed correctly."""
    result = cli_runner.invoke(app, ["--help"])

    assert result.exit_code == 0
    assert "chat" in result.stdout
    assert "ingest" in result.stdout
    assert "memory" in result.stdout
    assert "version" in result.stdout


def test_version_command(cli_runner):
    """Test the version command."""
    result = cli_runner.invoke(app, ["version"])

    assert result.exit_code == 0
    assert "MetaVector version 0.1.0" in result.stdout


class TestConfigCommands:
    def test_set_and_show_masks_keys(self, cli_runner, isolated_home):
        result = cli_runner.invoke(app, ["config", "set", "api_key_a", "sk-abcdefghijkl"])
        assert result.exit_code == 0

        assert load_config(get_config_path()).api_key_a == "sk-abcdefghijkl"

        result = cli_runner.invoke(app, ["config", "show"])
        assert result.exit_code == 0
        assert "sk-a…ijkl" in result.stdout
        assert "sk-abcdefghijkl" not in result.stdout

    def test_set_parses_literals(self, cli_runner, isolated_home):
        assert cli_runner.invoke(app, ["config", "set", "autonomy_enabled", "true"]).exit_code == 0
        assert cli_runner.invoke(app, ["config", "set", "autonomy_interval", "45"]).exit_code == 0

        config = load_config(get_config_path())
        assert config.autonomy_enabled is True
        assert config.autonomy_interval == 45

    def test_set_keeps_text_raw(self, cli_runner, isolated_home):
        assert cli_runner.invoke(app, ["config", "set", "global_prompt", "42"]).exit_code == 0
        assert load_config(get_config_path()).global_prompt == "42"

    def test_set_invalid_value(self, cli_runner, isolated_home):
        result = cli_runner.invoke(app, ["config", "set", "autonomy_interval", "10"])

        assert result.exit_code == 1
        assert "Invalid value" in result.output
        assert load_config(get_config_path()).autonomy_interval == 30

    def test_set_unknown_key(self, cli_runner, isolated_home):
        result = cli_runner.invoke(app, ["config", "set", "colour", "blue"])

        assert result.exit_code == 1
        assert "Unknown setting" in result.output


class TestIngestCommands:
    def test_ingest_text(self, cli_runner, configured, fake_llm):
        result = cli_runner.invoke(app, ["ingest-text", PARAGRAPH])

        assert result.exit_code == 0
        assert "✓ 1" in result.stdout

        store = MemoryStore(Config().stm_db_path)
        try:
            [record] = store.get_all()
        finally:
            store.close()
        assert record.source == "Pasted Text"
        assert record.agent_id == "agent-uploader"

    def test_ingest_text_too_short(self, cli_runner, configured, fake_llm):
        result = cli_runner.invoke(app, ["ingest-text", "tiny"])

        assert result.exit_code == 0
        assert "too short" in result.stdout

    def test_ingest_file_into_ltm(self, cli_runner, configured, fake_llm, tmp_path):
        notes = tmp_path / "notes.txt"
        notes.write_text(PARAGRAPH)

        result = cli_runner.invoke(app, ["ingest", str(notes), "--store", "ltm"])

        assert result.exit_code == 0
        fake_llm.embed.assert_awaited_once_with("key-c", PARAGRAPH, Config().model_c_embed)

    def test_ingest_without_credential(self, cli_runner, isolated_home, fake_llm):
        result = cli_runner.invoke(app, ["ingest-text", PARAGRAPH])

        assert result.exit_code == 1
        assert "Ingestion failed" in result.output

    def test_ingest_failed_chunk_exits_nonzero(self, cli_runner, configured, fake_llm):
        from metavector.exceptions import ProviderError

        fake_llm.embed.side_effect = ProviderError("rate limited", status_code=429)

        result = cli_runner.invoke(app, ["ingest-text", PARAGRAPH])

        assert result.exit_code == 1
        assert "✗ 1" in result.stdout

    def test_ingest_non_utf8_file(self, cli_runner, configured, fake_llm, tmp_path):
        binary = tmp_path / "binary.txt"
        binary.write_bytes(b"\xff\xfe" + b"a" * 80)

        result = cli_runner.invoke(app, ["ingest", str(binary)])

        assert result.exit_code == 1
        assert "Ingestion failed" in result.output
        assert not isinstance(result.exception, UnicodeDecodeError)

    def test_ingest_missing_file(self, cli_runner, configured, tmp_path):
        result = cli_runner.invoke(app, ["ingest", str(tmp_path / "missing.txt")])

        assert result.exit_code == 1
        assert "File not found" in result.output

    def test_ingest_unknown_store(self, cli_runner, configured):
        result = cli_runner.invoke(app, ["ingest-text", PARAGRAPH, "--store", "mid"])

        assert result.exit_code == 1
        assert "Unknown store" in result.output


class TestMemoryCommands:
    def test_stats_on_fresh_stores(self, cli_runner, isolated_home):
        result = cli_runner.invoke(app, ["memory", "stats"])

        assert result.exit_code == 0
        assert "STM" in result.stdout
        assert "LTM" in result.stdout

    def test_list_empty(self, cli_runner, isolated_home):
        result = cli_runner.invoke(app, ["memory", "list", "--store", "ltm"])

        assert result.exit_code == 0
        assert "No memories in LTM" in result.stdout

    def test_list_rejects_unknown_sort(self, cli_runner, isolated_home):
        result = cli_runner.invoke(app, ["memory", "list", "--sort", "colour"])

        assert result.exit_code == 1
        assert "Failed to list memories" in result.output

    def test_decay(self, cli_runner, isolated_home):
        result = cli_runner.invoke(app, ["memory", "decay"])

        assert result.exit_code == 0
        assert "STM" in result.stdout
        assert "deleted 0" in result.stdout

    def test_export_import_and_clear(self, cli_runner, configured, fake_llm, tmp_path):
        assert cli_runner.invoke(app, ["ingest-text", PARAGRAPH]).exit_code == 0
        backup = tmp_path / "backup.json"

        result = cli_runner.invoke(app, ["memory", "export", str(backup)])
        assert result.exit_code == 0
        records = json.loads(backup.read_text())
        assert [r["text"] for r in records] == [PARAGRAPH]

        result = cli_runner.invoke(app, ["memory", "import", str(backup), "--store", "ltm"])
        assert result.exit_code == 0
        assert "Imported 1 memories into LTM" in result.stdout

        result = cli_runner.invoke(app, ["memory", "clear", "--yes"])
        assert result.exit_code == 0
        assert "Cleared STM" in result.stdout
        assert "Cleared LTM" in result.stdout

    def test_clear_aborted_without_confirmation(self, cli_runner, isolated_home):
        result = cli_runner.invoke(app, ["memory", "clear"], input="n\n")

        assert result.exit_code == 0
        assert "Aborted" in result.stdout

    def test_import_rejects_non_array(self, cli_runner, isolated_home, tmp_path):
        backup = tmp_path / "backup.json"
        backup.write_text(json.dumps({"text": "not a list"}))

        result = cli_runner.invoke(app, ["memory", "import", str(backup)])

        assert result.exit_code == 1
        assert "JSON array" in result.output

    def test_import_malformed_record_fails_cleanly(self, cli_runner, isolated_home, tmp_path):
        backup = tmp_path / "backup.json"
        record = {"text": PARAGRAPH, "embedding": [1.0], "meta_vector": [1.0], "timestamp": "yesterday"}
        backup.write_text(json.dumps([record]))

        result = cli_runner.invoke(app, ["memory", "import", str(backup)])

        assert result.exit_code == 1
        assert "Import failed" in result.output
        assert not isinstance(result.exception, ValueError)

    def test_import_non_utf8_file(self, cli_runner, isolated_home, tmp_path):
        backup = tmp_path / "backup.json"
        backup.write_bytes(b"\xff\xfe" + b"[]" * 10)

        result = cli_runner.invoke(app, ["memory", "import", str(backup)])

        assert result.exit_code == 1
        assert "Cannot read" in result.output


class TestChatCommand:
    def test_quit_immediately(self, cli_runner, isolated_home):
        result = cli_runner.invoke(app, ["chat"], input="/quit\n")

        assert result.exit_code == 0
        assert "MetaVector chat" in result.stdout

    def test_one_turn(self, cli_runner, configured, fake_llm):
        result = cli_runner.invoke(app, ["chat"], input="hello there\n/quit\n")

        assert result.exit_code == 0
        assert "Hello world" in result.stdout
        assert fake_llm.completion_calls[0]["credential"] == "key-a"

    def test_missing_generation_key(self, cli_runner, isolated_home, fake_llm):
        result = cli_runner.invoke(app, ["chat"], input="hello there\n")

        assert result.exit_code == 0
        assert "api_key_a" in result.stdout
        assert fake_llm.completion_calls == []

    def test_autonomy_on_and_off(self, cli_runner, configured, fake_llm):
        result = cli_runner.invoke(app, ["chat"], input="/autonomy on\n/autonomy OFF\n/quit\n")

        assert result.exit_code == 0
        assert "Autonomous reflection enabled" in result.stdout
        assert "Autonomous reflection disabled" in result.stdout
        assert fake_llm.completion_calls == []

    @pytest.mark.parametrize("command", ["/autonomy", "/autonomy maybe", "/autonomy on now", "/autonomy moon"])
    def test_autonomy_without_on_or_off_shows_usage(self, cli_runner, configured, fake_llm, command):
        result = cli_runner.invoke(app, ["chat"], input=f"{command}\n/quit\n")

        assert result.exit_code == 0
        assert "Usage: /autonomy on|off" in result.stdout
        assert "Autonomous reflection" not in result.stdout
        assert fake_llm.completion_calls == []

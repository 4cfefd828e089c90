"""Test configuration and fixtures."""

import warnings
from pathlib import Path
from typing import Generator, List, Optional
from unittest.mock import AsyncMock

import pytest

from metavector.config import Config, ConfigManager
from metavector.memory.schema import MemoryRecord
from metavector.memory.store import MemoryStore
from metavector.provider import LLMProvider, _race

# Suppress RuntimeWarnings from litellm's async cleanup
warnings.filterwarnings("ignore", category=RuntimeWarning, module="litellm")

SAMPLE_META = {
    "brainDominance": {"leftBrain": 0.7, "rightBrain": 0.3},
    "processingStyle": {"reflexive": 0.2, "reasoning": 0.8},
    "emotionalAnalysis": {"joy": 0.6, "intensity": 0.4, "engagement": 0.5, "complexity": 0.3, "sentiment": 0.5},
    "conversationMetrics": {"depth": 60, "coherence": 80, "engagement": 70, "topicStability": 90},
    "cognitiveStyle": {"strength": 50},
}

LONG_TEXT = "The lighthouse keeper wrote down every ship that passed the northern rocks."


class FakeProvider(LLMProvider):
    """Provider double: AsyncMock embed/score_meta and a scripted completion stream."""

    def __init__(self, deltas=("Hello", " world"), embedding: Optional[List[float]] = None, meta=None):
        self.embed = AsyncMock(return_value=embedding or [1.0, 0.0, 0.0])
        self.score_meta = AsyncMock(return_value=meta if meta is not None else dict(SAMPLE_META))
        self.deltas = list(deltas)
        self.completion_calls = []
        self.error: Optional[Exception] = None
        self.block = None  # asyncio.Event the stream waits on before yielding

    async def stream_completion(self, credential, messages, model, token=None):
        self.completion_calls.append({"credential": credential, "messages": messages, "model": model})
        if self.error is not None:
            raise self.error
        if self.block is not None:
            await _race(self.block.wait(), token)
        for delta in self.deltas:
            if token is not None:
                token.raise_if_cancelled()
            yield delta


@pytest.fixture
def stm_store(tmp_path) -> Generator[MemoryStore, None, None]:
    store = MemoryStore(tmp_path / "stm.duckdb", label="STM", decay_rate=0.995)
    yield store
    store.close()


@pytest.fixture
def ltm_store(tmp_path) -> Generator[MemoryStore, None, None]:
    store = MemoryStore(tmp_path / "ltm.duckdb", label="LTM", decay_rate=0.999)
    yield store
    store.close()


@pytest.fixture
def make_record():
    """Factory for valid, unsaved records."""

    def _make(
        text: str = LONG_TEXT,
        embedding: Optional[List[float]] = None,
        meta_vector: Optional[List[float]] = None,
        **kwargs,
    ) -> MemoryRecord:
        return MemoryRecord(
            text=text,
            embedding=embedding if embedding is not None else [1.0, 0.0, 0.0],
            meta_vector=meta_vector if meta_vector is not None else [0.5] * 14,
            agent_id=kwargs.pop("agent_id", "agent-test"),
            source=kwargs.pop("source", "test"),
            **kwargs,
        )

    return _make


@pytest.fixture
def full_config(tmp_path) -> Config:
    return Config(api_key_a="key-a", api_key_b="key-b", api_key_c="key-c", data_dir=tmp_path)


@pytest.fixture
def config_manager(full_config) -> ConfigManager:
    return ConfigManager(full_config)


@pytest.fixture
def fake_provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def cli_runner():
    """Create a CLI test runner."""
    from typer.testing import CliRunner

    return CliRunner()


@pytest.fixture
def isolated_home(tmp_path, monkeypatch) -> Path:
    """Point HOME and the XDG directories at a temporary location."""
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))
    return tmp_path

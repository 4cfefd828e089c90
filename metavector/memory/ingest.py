"""Turn raw text and files into stored memories: chunk, embed, meta-score, add."""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, List, Optional

from metavector.exceptions import AuthError, MetaVectorError, ValidationError
from metavector.memory.chunker import chunk_text
from metavector.memory.meta_vector import build_meta_vector
from metavector.memory.schema import MemoryRecord
from metavector.memory.store import MemoryStore
from metavector.provider import LLMProvider

logger = logging.getLogger(__name__)

UPLOADER_AGENT_ID = "agent-uploader"
PASTED_TEXT_SOURCE = "Pasted Text"


@dataclass
class IngestReport:
    """Per-source outcome of an ingestion run."""

    source: str
    ok: int = 0
    failed: int = 0
    ids: List[int] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.ok + self.failed


def _stringify(entry: Any) -> str:
    return entry if isinstance(entry, str) else json.dumps(entry)


def extract_json_entries(data: Any) -> List[str]:
    """Flatten a parsed JSON document into independent text entries.

    Arrays yield their elements; objects yield their ``entries`` array, else
    their ``data`` array, else their values. Non-string elements are
    re-serialized as JSON.
    """
    if isinstance(data, list):
        return [_stringify(e) for e in data]
    if isinstance(data, dict):
        if isinstance(data.get("entries"), list):
            return [_stringify(e) for e in data["entries"]]
        if isinstance(data.get("data"), list):
            return [_stringify(e) for e in data["data"]]
        return [_stringify(e) for e in data.values()]
    return [_stringify(data)]


def chunk_file_text(name: str, text: str) -> List[str]:
    """Chunk file contents, treating .json files as collections of entries."""
    if name.lower().endswith(".json"):
        try:
            entries = extract_json_entries(json.loads(text))
        except json.JSONDecodeError as e:
            logger.warning("File %s JSON parse failed, treating as text: %s", name, e)
            return chunk_text(text)
        return [chunk for entry in entries for chunk in chunk_text(entry)]
    return chunk_text(text)


class MemoryIngestor:
    """Embeds and meta-scores chunks with one credential/model pair and writes them to a store."""

    def __init__(
        self,
        store: MemoryStore,
        provider: LLMProvider,
        credential: Optional[str],
        embed_model: str,
        meta_model: str,
        agent_id: str = UPLOADER_AGENT_ID,
    ):
        self.store = store
        self.provider = provider
        self.credential = credential
        self.embed_model = embed_model
        self.meta_model = meta_model
        self.agent_id = agent_id

    async def build_record(self, text: str, source: str, score: Optional[float] = None) -> MemoryRecord:
        """Embed and meta-score ``text`` into an unsaved record."""
        embedding = await self.provider.embed(self.credential, text, self.embed_model)
        meta = await self.provider.score_meta(self.credential, text, self.meta_model)
        return MemoryRecord(
            text=text,
            embedding=embedding,
            meta_vector=build_meta_vector(meta),
            score=score,
            agent_id=self.agent_id,
            source=source,
            meta=meta,
        )

    async def ingest_chunks(self, chunks: List[str], source: str) -> IngestReport:
        """Store each chunk sequentially. A failing chunk is recorded and skipped."""
        if not self.credential:
            raise AuthError(f"No API key configured for {self.store.label} ingestion")

        report = IngestReport(source=source)
        for index, chunk in enumerate(chunks, start=1):
            try:
                record = await self.build_record(chunk, source)
                memory_id = await asyncio.to_thread(self.store.add, record)
            except MetaVectorError as e:
                logger.error("Failed to store chunk %d/%d from %s: %s", index, len(chunks), source, e)
                report.failed += 1
                report.errors.append(str(e))
                continue
            report.ok += 1
            report.ids.append(memory_id)

        logger.info("Ingested %s into %s: %d stored, %d failed", source, self.store.label, report.ok, report.failed)
        return report

    async def ingest_text(self, text: str, source: str = PASTED_TEXT_SOURCE) -> IngestReport:
        return await self.ingest_chunks(chunk_text(text.strip()), source)

    async def ingest_file(self, path: Path) -> IngestReport:
        """Read, chunk and store one file. The file name becomes the source.

        Raises:
            ValidationError: If the file cannot be read as UTF-8 text
        """
        try:
            text = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise ValidationError(f"Cannot read {path}: {e}") from e
        source = path.name or "unknown_file"
        return await self.ingest_chunks(chunk_file_text(source, text), source)

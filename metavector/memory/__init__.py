"""Two-tier associative memory: storage, ranking, decay and ingestion."""

from metavector.memory.chunker import chunk_text
from metavector.memory.meta_vector import build_meta_vector
from metavector.memory.ranker import RetrievalRanker, rank_records
from metavector.memory.schema import DecayResult, MemoryRecord, RankedMemory
from metavector.memory.store import MemoryStore, MemoryTiers, open_memory_tiers
from metavector.memory.vector_math import cosine, normalize

__all__ = [
    "DecayResult",
    "MemoryRecord",
    "MemoryStore",
    "MemoryTiers",
    "RankedMemory",
    "RetrievalRanker",
    "build_meta_vector",
    "chunk_text",
    "cosine",
    "normalize",
    "open_memory_tiers",
    "rank_records",
]

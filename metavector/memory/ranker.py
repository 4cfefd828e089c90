"""Blended semantic + affective ranking of stored memories."""

import asyncio
import logging
from typing import List, Sequence, Set

from metavector.memory.schema import DEFAULT_SCORE, MemoryRecord, RankedMemory
from metavector.memory.store import MemoryStore
from metavector.memory.vector_math import cosine, normalize

logger = logging.getLogger(__name__)

DEFAULT_TOP_K = 3
SEMANTIC_WEIGHT = 0.6
META_WEIGHT = 0.4
RELEVANCE_WEIGHT = 0.85
STRENGTH_WEIGHT = 0.15
# Record scores are rescaled from [0, MAX_STRENGTH] into [0, 1]
MAX_STRENGTH = 5.0
RETRIEVAL_BOOST = 1.0


def score_record(
    record: MemoryRecord,
    query_embedding: Sequence[float],
    query_meta_vector: Sequence[float],
) -> RankedMemory:
    """Compute the similarity figures and final score for one record."""
    semantic_sim = cosine(query_embedding, record.embedding)
    meta_sim = cosine(query_meta_vector, record.meta_vector)
    sim_score = SEMANTIC_WEIGHT * semantic_sim + META_WEIGHT * meta_sim
    strength = DEFAULT_SCORE if record.score is None else record.score
    score_norm = normalize(strength, 0, MAX_STRENGTH)
    final_score = RELEVANCE_WEIGHT * sim_score + STRENGTH_WEIGHT * score_norm
    return RankedMemory(
        record=record,
        semantic_sim=semantic_sim,
        meta_sim=meta_sim,
        sim_score=sim_score,
        final_score=final_score,
    )


def rank_records(
    records: Sequence[MemoryRecord],
    query_embedding: Sequence[float],
    query_meta_vector: Sequence[float],
    k: int = DEFAULT_TOP_K,
) -> List[RankedMemory]:
    """Pure ranking: top ``k`` records by final score, highest first."""
    scored = [score_record(r, query_embedding, query_meta_vector) for r in records]
    scored.sort(key=lambda m: m.final_score, reverse=True)
    return scored[:k]


class RetrievalRanker:
    """Ranks a store against a query and reinforces whatever it returns.

    Boosts run as background tasks; ``rank`` does not wait for them and a
    failed boost is logged, never raised. ``drain`` waits for outstanding
    boosts (used on shutdown and in tests).
    """

    def __init__(self, k: int = DEFAULT_TOP_K, boost_amount: float = RETRIEVAL_BOOST):
        self.k = k
        self.boost_amount = boost_amount
        self._pending: Set[asyncio.Task] = set()

    async def rank(
        self,
        store: MemoryStore,
        query_embedding: Sequence[float],
        query_meta_vector: Sequence[float],
        k: int | None = None,
    ) -> List[RankedMemory]:
        """Return at most ``k`` records of ``store`` ordered by descending final score.

        An empty store yields an empty list.
        """
        records = await asyncio.to_thread(store.get_all)
        if not records:
            return []

        results = rank_records(records, query_embedding, query_meta_vector, self.k if k is None else k)
        for ranked in results:
            if ranked.id:
                self._schedule_boost(store, ranked.id)
        return results

    def _schedule_boost(self, store: MemoryStore, memory_id: int) -> None:
        task = asyncio.create_task(self._boost(store, memory_id))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _boost(self, store: MemoryStore, memory_id: int) -> None:
        try:
            await asyncio.to_thread(store.boost, memory_id, self.boost_amount)
        except Exception as e:
            logger.warning("Failed to boost %s memory %s: %s", store.label, memory_id, e)

    async def drain(self) -> None:
        """Wait for every boost scheduled so far."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

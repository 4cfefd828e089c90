"""Memory data structures."""

import time
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

DEFAULT_SCORE = 1.0


def now_ms() -> int:
    """Current time as epoch milliseconds."""
    return int(time.time() * 1000)


@dataclass
class MemoryRecord:
    """A stored observation with its semantic embedding and meta-vector."""

    text: str
    embedding: List[float]
    meta_vector: List[float]
    id: Optional[int] = None  # Assigned by the store
    timestamp: Optional[int] = None  # Epoch ms, defaults to now on insert
    last_accessed: Optional[int] = None  # Defaults to timestamp on insert
    score: Optional[float] = None  # Defaults to DEFAULT_SCORE on insert
    agent_id: str = ""
    source: str = ""
    meta: Optional[Dict[str, Any]] = None  # Raw scoring payload

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MemoryRecord":
        """Build a record from an export dict; camelCase keys are accepted too."""
        return cls(
            id=data.get("id"),
            text=data.get("text", ""),
            embedding=data.get("embedding"),
            meta_vector=data.get("meta_vector", data.get("metaVector")),
            timestamp=data.get("timestamp"),
            last_accessed=data.get("last_accessed", data.get("lastAccessed")),
            score=data.get("score"),
            agent_id=data.get("agent_id", data.get("agentId")) or "",
            source=data.get("source") or "",
            meta=data.get("meta"),
        )


@dataclass
class RankedMemory:
    """A record together with the similarity figures that ranked it."""

    record: MemoryRecord
    semantic_sim: float
    meta_sim: float
    sim_score: float
    final_score: float

    @property
    def id(self) -> Optional[int]:
        return self.record.id

    @property
    def text(self) -> str:
        return self.record.text


@dataclass
class DecayResult:
    """Outcome of one decay sweep."""

    updated: int = 0
    deleted: int = 0
    deleted_ids: List[int] = field(default_factory=list)

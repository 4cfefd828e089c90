"""Persistent memory store with DuckDB backend, boosting and time decay."""

import json
import logging
import math
import numbers
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple, Union

import duckdb

from metavector.exceptions import NotFoundError, StorageError, ValidationError
from metavector.memory.schema import DEFAULT_SCORE, DecayResult, MemoryRecord, now_ms

logger = logging.getLogger(__name__)

DEFAULT_DECAY_RATE = 0.995
DEFAULT_MIN_SCORE = 0.05
MS_PER_HOUR = 3_600_000

# Public sort keys -> columns
ORDER_COLUMNS = {
    "timestamp": "created_at",
    "score": "score",
    "last_accessed": "last_accessed",
    "id": "id",
}

_COLUMNS = "id, content, embedding, meta_vector, created_at, last_accessed, score, agent_id, source, meta"


def _as_vector(values: Any, name: str) -> List[float]:
    if values is None or isinstance(values, (str, bytes)):
        raise ValidationError(f"Memory {name} is missing")
    try:
        vector = [float(v) for v in values]
    except (TypeError, ValueError) as e:
        raise ValidationError(f"Memory {name} must contain only numbers") from e
    if not vector:
        raise ValidationError(f"Memory {name} is empty")
    if not all(math.isfinite(v) for v in vector):
        raise ValidationError(f"Memory {name} contains non-finite values")
    return vector


def _validate_id(memory_id: Any) -> int:
    if isinstance(memory_id, bool) or not isinstance(memory_id, numbers.Integral) or memory_id <= 0:
        raise ValidationError(f"Invalid memory id: {memory_id!r}")
    return int(memory_id)


class MemoryStore:
    """One memory tier (Short-Term or Long-Term) persisted in its own DuckDB file.

    Every write goes through a store-level lock and, for multi-statement
    operations, a single transaction, so concurrent boosts on one record
    serialize and a decay sweep is never observed half-applied.
    """

    def __init__(
        self,
        db_path: Union[Path, str],
        label: str = "STM",
        decay_rate: float = DEFAULT_DECAY_RATE,
        min_score: float = DEFAULT_MIN_SCORE,
        clock: Callable[[], int] = now_ms,
    ):
        """Initialize memory store.

        Args:
            db_path: Path to DuckDB database file (or ":memory:")
            label: Tier name used in logs and error messages
            decay_rate: Per-hour multiplicative decay applied by decay()
            min_score: Records decayed below this score are deleted
            clock: Returns the current time in epoch milliseconds
        """
        self.db_path = db_path
        self.label = label
        self.decay_rate = decay_rate
        self.min_score = min_score
        self._clock = clock
        self._lock = threading.RLock()

        if str(db_path) != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

        try:
            self.conn = duckdb.connect(str(db_path))
            self._init_schema()
        except duckdb.Error as e:
            raise StorageError(f"Failed to open {label} store at {db_path}: {e}") from e

        logger.debug("Opened %s store at %s", label, db_path)

    def _init_schema(self) -> None:
        """Create sequence, table and indexes if they don't exist."""
        self.conn.execute("CREATE SEQUENCE IF NOT EXISTS memories_id_seq START 1")
        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS memories (
                id BIGINT PRIMARY KEY,
                content VARCHAR NOT NULL,
                embedding DOUBLE[] NOT NULL,
                meta_vector DOUBLE[] NOT NULL,
                created_at BIGINT NOT NULL,
                last_accessed BIGINT NOT NULL,
                score DOUBLE NOT NULL,
                agent_id VARCHAR,
                source VARCHAR,
                meta VARCHAR
            )
        """)
        self.conn.execute("CREATE INDEX IF NOT EXISTS memories_created_at_idx ON memories (created_at)")

    @contextmanager
    def _transaction(self) -> Iterator[duckdb.DuckDBPyConnection]:
        """Hold the store lock for one transaction; roll back on any error."""
        with self._lock:
            if self.conn is None:
                raise StorageError(f"{self.label} store is closed")
            self.conn.begin()
            try:
                yield self.conn
            except duckdb.Error as e:
                self.conn.rollback()
                raise StorageError(f"{self.label} store operation failed: {e}") from e
            except BaseException:
                self.conn.rollback()
                raise
            else:
                self.conn.commit()

    @staticmethod
    def _row_to_record(row: Sequence[Any]) -> MemoryRecord:
        return MemoryRecord(
            id=row[0],
            text=row[1],
            embedding=list(row[2]),
            meta_vector=list(row[3]),
            timestamp=row[4],
            last_accessed=row[5],
            score=row[6],
            agent_id=row[7] or "",
            source=row[8] or "",
            meta=json.loads(row[9]) if row[9] else None,
        )

    def _prepare(self, record: MemoryRecord) -> Tuple[Any, ...]:
        """Validate a record and fill defaults. Returns insert parameters minus the id."""
        if not isinstance(record.text, str) or not record.text.strip():
            raise ValidationError("Memory text is missing")
        embedding = _as_vector(record.embedding, "embedding")
        meta_vector = _as_vector(record.meta_vector, "meta-vector")

        try:
            score = DEFAULT_SCORE if record.score is None else float(record.score)
            timestamp = self._clock() if record.timestamp is None else int(record.timestamp)
            last_accessed = timestamp if record.last_accessed is None else int(record.last_accessed)
        except (TypeError, ValueError, OverflowError) as e:
            raise ValidationError(f"Memory score and timestamps must be numbers: {e}") from e
        if not math.isfinite(score) or score < 0:
            raise ValidationError(f"Memory score must be a non-negative number, got {record.score!r}")

        return (
            record.text,
            embedding,
            meta_vector,
            timestamp,
            last_accessed,
            score,
            str(record.agent_id or ""),
            str(record.source or ""),
            json.dumps(record.meta) if record.meta is not None else None,
        )

    def _dimensions(self, conn: duckdb.DuckDBPyConnection) -> Optional[Tuple[int, int]]:
        row = conn.execute("SELECT len(embedding), len(meta_vector) FROM memories LIMIT 1").fetchone()
        return (row[0], row[1]) if row else None

    def _check_dimensions(self, params: Tuple[Any, ...], expected: Optional[Tuple[int, int]]) -> Tuple[int, int]:
        dims = (len(params[1]), len(params[2]))
        if expected is not None and dims != expected:
            raise ValidationError(
                f"{self.label} store holds vectors of dimensions {expected[0]}/{expected[1]} "
                f"(embedding/meta-vector), got {dims[0]}/{dims[1]}"
            )
        return dims

    def _insert(self, conn: duckdb.DuckDBPyConnection, params: Tuple[Any, ...]) -> int:
        memory_id = conn.execute("SELECT NEXTVAL('memories_id_seq')").fetchone()[0]
        conn.execute(
            f"INSERT INTO memories ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            [memory_id, *params],
        )
        return memory_id

    def add(self, record: MemoryRecord) -> int:
        """Store a memory.

        Args:
            record: Record without an id; score, timestamp and last_accessed
                are filled in when absent

        Returns:
            ID of the stored memory

        Raises:
            ValidationError: If text or vectors are missing, or vector
                dimensions differ from the records already stored
        """
        params = self._prepare(record)
        with self._transaction() as conn:
            self._check_dimensions(params, self._dimensions(conn))
            memory_id = self._insert(conn, params)

        logger.debug("Stored %s memory %s: %s...", self.label, memory_id, record.text[:50])
        return memory_id

    def get(self, memory_id: int) -> Optional[MemoryRecord]:
        """Get a memory by ID."""
        memory_id = _validate_id(memory_id)
        with self._transaction() as conn:
            row = conn.execute(f"SELECT {_COLUMNS} FROM memories WHERE id = ?", [memory_id]).fetchone()
        return self._row_to_record(row) if row else None

    def get_all(self) -> List[MemoryRecord]:
        """Every record in the store. Callers sort as needed."""
        with self._transaction() as conn:
            rows = conn.execute(f"SELECT {_COLUMNS} FROM memories").fetchall()
        return [self._row_to_record(row) for row in rows]

    def list_ordered(
        self,
        order_by: str = "score",
        descending: bool = True,
        limit: Optional[int] = None,
    ) -> List[MemoryRecord]:
        """Ordered scan for inspection.

        Args:
            order_by: One of "timestamp", "score", "last_accessed", "id"
            descending: Highest first when True
            limit: Maximum records (None = all)
        """
        column = ORDER_COLUMNS.get(order_by)
        if column is None:
            raise ValidationError(f"Cannot order memories by '{order_by}'")
        direction = "DESC" if descending else "ASC"
        sql = f"SELECT {_COLUMNS} FROM memories ORDER BY {column} {direction}, id {direction}"
        params: List[Any] = []
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)

        with self._transaction() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [self._row_to_record(row) for row in rows]

    def boost(self, memory_id: int, amount: float = 1.0) -> float:
        """Reinforce a memory: add ``amount`` to its score and refresh last_accessed.

        Returns:
            The new score

        Raises:
            ValidationError: If the id is not a positive integer or amount is negative
            NotFoundError: If no memory has this id
        """
        memory_id = _validate_id(memory_id)
        if not math.isfinite(amount) or amount < 0:
            raise ValidationError(f"Boost amount must be a non-negative number, got {amount!r}")

        with self._transaction() as conn:
            row = conn.execute("SELECT score FROM memories WHERE id = ?", [memory_id]).fetchone()
            if row is None:
                raise NotFoundError(f"{self.label} memory {memory_id} not found", record_id=memory_id)
            new_score = row[0] + amount
            conn.execute(
                "UPDATE memories SET score = ?, last_accessed = ? WHERE id = ?",
                [new_score, self._clock(), memory_id],
            )

        logger.debug("Boosted %s memory %s to %.3f", self.label, memory_id, new_score)
        return new_score

    def decay(self, rate: Optional[float] = None, min_score: Optional[float] = None) -> DecayResult:
        """Apply exponential decay keyed to hours since last access, evicting weak memories.

        ``score *= rate ** hours_since_last_access``; records ending below
        ``min_score`` are deleted. The sweep is one transaction: on failure
        nothing is changed and StorageError is raised.

        Args:
            rate: Per-hour decay factor (defaults to the store's decay_rate)
            min_score: Eviction threshold (defaults to the store's min_score)

        Returns:
            DecayResult with updated/deleted counts
        """
        rate = self.decay_rate if rate is None else rate
        min_score = self.min_score if min_score is None else min_score
        if not 0 < rate <= 1:
            raise ValidationError(f"Decay rate must be in (0, 1], got {rate!r}")

        result = DecayResult()
        now = self._clock()

        with self._transaction() as conn:
            rows = conn.execute("SELECT id, score, last_accessed, created_at FROM memories").fetchall()
            updates = []
            for memory_id, score, last_accessed, created_at in rows:
                last_access = last_accessed or created_at or now
                hours = max(0.0, (now - last_access) / MS_PER_HOUR)
                new_score = score * rate**hours
                if new_score < min_score:
                    result.deleted_ids.append(memory_id)
                else:
                    updates.append([new_score, memory_id])

            if result.deleted_ids:
                conn.executemany("DELETE FROM memories WHERE id = ?", [[i] for i in result.deleted_ids])
            if updates:
                conn.executemany("UPDATE memories SET score = ? WHERE id = ?", updates)

        result.updated = len(updates)
        result.deleted = len(result.deleted_ids)
        logger.info("%s decay: updated %d memories, deleted %d", self.label, result.updated, result.deleted)
        return result

    def count(self) -> int:
        """Count live memories."""
        with self._transaction() as conn:
            row = conn.execute("SELECT COUNT(*) FROM memories").fetchone()
        return row[0] if row else 0

    def clear(self) -> int:
        """Delete every memory. Ids are not reused afterwards.

        Returns:
            Number of deleted memories
        """
        with self._transaction() as conn:
            deleted = conn.execute("SELECT COUNT(*) FROM memories").fetchone()[0]
            conn.execute("DELETE FROM memories")
        logger.info("Cleared %s store (%d memories)", self.label, deleted)
        return deleted

    def export_records(self) -> List[Dict[str, Any]]:
        """Full store contents as JSON-ready dicts, oldest first."""
        return [record.to_dict() for record in self.list_ordered("id", descending=False)]

    def import_records(self, records: Sequence[Union[MemoryRecord, Dict[str, Any]]]) -> List[int]:
        """Insert exported records with fresh ids. All-or-nothing.

        Raises:
            ValidationError: If any record is invalid; nothing is inserted
        """
        prepared = []
        for index, item in enumerate(records):
            if isinstance(item, MemoryRecord):
                record = item
            elif isinstance(item, Mapping):
                record = MemoryRecord.from_dict(item)
            else:
                raise ValidationError(f"Record {index} is not an object: {type(item).__name__}")
            prepared.append(self._prepare(record))

        ids = []
        with self._transaction() as conn:
            expected = self._dimensions(conn)
            for params in prepared:
                expected = self._check_dimensions(params, expected)
                ids.append(self._insert(conn, params))

        logger.info("Imported %d memories into %s store", len(ids), self.label)
        return ids

    def close(self) -> None:
        """Close database connection."""
        with self._lock:
            if self.conn:
                self.conn.close()
                self.conn = None


@dataclass
class MemoryTiers:
    """The Short-Term and Long-Term stores opened from one configuration."""

    stm: MemoryStore
    ltm: MemoryStore

    def close(self) -> None:
        self.stm.close()
        self.ltm.close()


def open_memory_tiers(config) -> MemoryTiers:
    """Open both stores using the paths and decay settings in ``config``."""
    return MemoryTiers(
        stm=MemoryStore(
            config.stm_db_path, label="STM", decay_rate=config.stm_decay_rate, min_score=config.min_score
        ),
        ltm=MemoryStore(
            config.ltm_db_path, label="LTM", decay_rate=config.ltm_decay_rate, min_score=config.min_score
        ),
    )

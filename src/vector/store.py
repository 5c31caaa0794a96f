"""
Embedding Store - Tenant-partitioned, dimension-sharded vector persistence.

Each supported dimensionality has its own shard table
(``search_vectors_<dim>``) keyed by ``(tenant_id, index_id)``; a shared
``search_index`` table records ``(tenant_id, segment_id, model_name)`` and
is unique on that triple.

Vectors are transformed with the tenant key before they are written, and
queries are transformed the same way before scoring, so a query only ever
reads one tenant's partition of one shard.

Search is an exact scan: every query loads and JSON-decodes the whole
tenant partition of the matching shard, optionally narrowed by journey and
model, and scores each row in Python. Cost grows linearly with the number of
stored segments for that tenant and dimension. There is no approximate
nearest-neighbour index.

EmbeddingStore carries the SQL shared by all backends (qmark parameters work
for both sqlite3 and pyodbc); backends supply connections, table names, DDL
and timestamp encoding.
"""

import json
import logging
import sqlite3
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

from .contracts.models import DEFAULT_DIMENSIONS, EmbeddingRecord, SearchHit, parse_timestamp
from .exceptions import (
    DuplicateEmbeddingError,
    UnsupportedDimensionError,
    VectorStorageError,
)
from .similarity import check_vector, cosine_similarity
from .transform import OrthogonalTransform


logger = logging.getLogger(__name__)

ON_CONFLICT_UPDATE = "update"
ON_CONFLICT_REJECT = "reject"


def _rows(cursor) -> List[Dict[str, Any]]:
    """Fetch all rows from a cursor as dictionaries."""
    columns = [column[0] for column in cursor.description]
    return [dict(zip(columns, row)) for row in cursor.fetchall()]


class EmbeddingStore(ABC):
    """
    Storage interface for tenant-isolated embeddings.

    Example:
        >>> store = SqliteEmbeddingStore(Path("local/vectors.db"), dimensions=(3, 384))
        >>> store.store("tenant-a", "seg-1", None, [1.0, 0.0, 0.0], "test-model")
        >>> store.search("tenant-a", [1.0, 0.0, 0.0], limit=5)[0].segment_id
        'seg-1'
    """

    def __init__(
        self,
        dimensions: Sequence[int] = DEFAULT_DIMENSIONS,
        transform: Optional[OrthogonalTransform] = None,
    ):
        if not dimensions:
            raise ValueError("At least one shard dimension is required")
        self.dimensions: Tuple[int, ...] = tuple(sorted({int(d) for d in dimensions}))
        if any(d <= 0 for d in self.dimensions):
            raise ValueError(f"Shard dimensions must be positive: {dimensions}")
        self.transform = transform or OrthogonalTransform()

    # =========================================================================
    # Backend hooks
    # =========================================================================

    @abstractmethod
    def _transaction(self):
        """Context manager yielding a cursor; commits on success, rolls back on error."""

    @abstractmethod
    def _table(self, name: str) -> str:
        """Qualified table name."""

    @abstractmethod
    def _ts(self, value: datetime) -> Any:
        """Encode a timestamp for the backend."""

    @abstractmethod
    def _is_integrity_error(self, error: Exception) -> bool:
        """Whether ``error`` is a unique/primary key violation."""

    @abstractmethod
    def close(self) -> None:
        """Close database connections."""

    def shard_table(self, dimension: int) -> str:
        """Shard table holding vectors of ``dimension``."""
        return self._table(f"search_vectors_{self._check_dimension(dimension)}")

    def _check_dimension(self, dimension: int) -> int:
        if dimension not in self.dimensions:
            raise UnsupportedDimensionError(dimension, self.dimensions)
        return dimension

    # =========================================================================
    # Write operations
    # =========================================================================

    def store(
        self,
        tenant_id: str,
        segment_id: str,
        journey_id: Optional[str],
        raw_vector: Sequence[float],
        model_name: str,
        on_conflict: str = ON_CONFLICT_UPDATE,
    ) -> EmbeddingRecord:
        """
        Transform and persist an embedding for a segment.

        Args:
            tenant_id: Owning tenant (transform key)
            segment_id: Embedded segment
            journey_id: Optional journey scope
            raw_vector: Untransformed embedding; never persisted
            model_name: Generating model
            on_conflict: "update" re-embeds in place, "reject" raises

        Returns:
            The stored record (holding the transformed vector)

        Raises:
            InvalidVectorError: If the vector is empty
            UnsupportedDimensionError: If no shard matches the vector length
            DuplicateEmbeddingError: If the key exists and on_conflict="reject"
            VectorStorageError: If the database write fails
        """
        if on_conflict not in (ON_CONFLICT_UPDATE, ON_CONFLICT_REJECT):
            raise ValueError(f"on_conflict must be 'update' or 'reject', got {on_conflict!r}")

        transformed = self.transform.transform(tenant_id, raw_vector)
        dimension = self._check_dimension(len(transformed))

        try:
            record = self._upsert(
                tenant_id, segment_id, journey_id, transformed, model_name, on_conflict
            )
        except DuplicateEmbeddingError:
            raise
        except Exception as e:
            if not self._is_integrity_error(e):
                logger.error(f"Failed to store embedding for segment {segment_id}: {e}")
                raise VectorStorageError(f"Failed to store embedding: {e}") from e
            # Lost an insert race on the unique key; the row exists now
            if on_conflict == ON_CONFLICT_REJECT:
                raise DuplicateEmbeddingError(tenant_id, segment_id, model_name) from e
            record = self._upsert(
                tenant_id, segment_id, journey_id, transformed, model_name, on_conflict
            )

        logger.info(
            f"Stored {dimension}-dim embedding for segment {segment_id}",
            extra={"tenant_id": tenant_id, "journey_id": journey_id},
        )
        return record

    def _upsert(
        self,
        tenant_id: str,
        segment_id: str,
        journey_id: Optional[str],
        vector: List[float],
        model_name: str,
        on_conflict: str,
    ) -> EmbeddingRecord:
        now = datetime.now(timezone.utc)
        dimension = len(vector)
        vector_json = json.dumps(vector, separators=(",", ":"))
        index_table = self._table("search_index")

        with self._transaction() as cursor:
            cursor.execute(
                f"""
                SELECT index_id, dimension, created_utc FROM {index_table}
                WHERE tenant_id = ? AND segment_id = ? AND model_name = ?
                """,
                (tenant_id, segment_id, model_name),
            )
            existing = _rows(cursor)

            if existing:
                if on_conflict == ON_CONFLICT_REJECT:
                    raise DuplicateEmbeddingError(tenant_id, segment_id, model_name)

                row = existing[0]
                index_id = str(row["index_id"])
                old_dimension = int(row["dimension"])

                if old_dimension == dimension:
                    cursor.execute(
                        f"UPDATE {self.shard_table(dimension)} SET vector_json = ? "
                        f"WHERE tenant_id = ? AND index_id = ?",
                        (vector_json, tenant_id, index_id),
                    )
                else:
                    # Model output size changed: move the vector to its new shard
                    if old_dimension in self.dimensions:
                        cursor.execute(
                            f"DELETE FROM {self.shard_table(old_dimension)} "
                            f"WHERE tenant_id = ? AND index_id = ?",
                            (tenant_id, index_id),
                        )
                    cursor.execute(
                        f"INSERT INTO {self.shard_table(dimension)} "
                        f"(tenant_id, index_id, vector_json) VALUES (?, ?, ?)",
                        (tenant_id, index_id, vector_json),
                    )

                cursor.execute(
                    f"UPDATE {index_table} SET journey_id = ?, dimension = ?, updated_utc = ? "
                    f"WHERE tenant_id = ? AND index_id = ?",
                    (journey_id, dimension, self._ts(now), tenant_id, index_id),
                )
                return EmbeddingRecord(
                    index_id=index_id,
                    tenant_id=tenant_id,
                    segment_id=segment_id,
                    model_name=model_name,
                    dimension=dimension,
                    vector=vector,
                    journey_id=journey_id,
                    created_utc=parse_timestamp(row["created_utc"]),
                    updated_utc=now,
                )

            record = EmbeddingRecord.create_new(
                tenant_id=tenant_id,
                segment_id=segment_id,
                model_name=model_name,
                vector=vector,
                journey_id=journey_id,
            )
            record.created_utc = now
            cursor.execute(
                f"""
                INSERT INTO {index_table}
                    (index_id, tenant_id, segment_id, journey_id, model_name, dimension, created_utc)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (record.index_id, tenant_id, segment_id, journey_id, model_name,
                 dimension, self._ts(now)),
            )
            cursor.execute(
                f"INSERT INTO {self.shard_table(dimension)} "
                f"(tenant_id, index_id, vector_json) VALUES (?, ?, ?)",
                (tenant_id, record.index_id, vector_json),
            )
            return record

    def delete_segment(self, tenant_id: str, segment_id: str) -> int:
        """
        Delete every embedding of a segment (all models) for a tenant.

        Returns:
            Number of index rows removed
        """
        index_table = self._table("search_index")
        try:
            with self._transaction() as cursor:
                cursor.execute(
                    f"SELECT index_id, dimension FROM {index_table} "
                    f"WHERE tenant_id = ? AND segment_id = ?",
                    (tenant_id, segment_id),
                )
                rows = _rows(cursor)
                for row in rows:
                    dimension = int(row["dimension"])
                    if dimension in self.dimensions:
                        cursor.execute(
                            f"DELETE FROM {self.shard_table(dimension)} "
                            f"WHERE tenant_id = ? AND index_id = ?",
                            (tenant_id, row["index_id"]),
                        )
                cursor.execute(
                    f"DELETE FROM {index_table} WHERE tenant_id = ? AND segment_id = ?",
                    (tenant_id, segment_id),
                )
        except Exception as e:
            raise VectorStorageError(f"Failed to delete segment {segment_id}: {e}") from e

        if rows:
            logger.info(
                f"Deleted {len(rows)} embedding(s) for segment {segment_id}",
                extra={"tenant_id": tenant_id},
            )
        return len(rows)

    # =========================================================================
    # Read operations
    # =========================================================================

    def get_record(
        self,
        tenant_id: str,
        segment_id: str,
        model_name: str,
    ) -> Optional[EmbeddingRecord]:
        """Get the stored (transformed) embedding for a key, or None."""
        index_table = self._table("search_index")
        with self._transaction() as cursor:
            cursor.execute(
                f"SELECT index_id, dimension FROM {index_table} "
                f"WHERE tenant_id = ? AND segment_id = ? AND model_name = ?",
                (tenant_id, segment_id, model_name),
            )
            rows = _rows(cursor)
            if not rows or int(rows[0]["dimension"]) not in self.dimensions:
                return None

            shard = self.shard_table(int(rows[0]["dimension"]))
            cursor.execute(
                f"""
                SELECT i.index_id, i.tenant_id, i.segment_id, i.journey_id, i.model_name,
                       i.dimension, i.created_utc, i.updated_utc, v.vector_json
                FROM {index_table} i
                JOIN {shard} v ON v.tenant_id = i.tenant_id AND v.index_id = i.index_id
                WHERE i.tenant_id = ? AND i.index_id = ?
                """,
                (tenant_id, rows[0]["index_id"]),
            )
            joined = _rows(cursor)
        return EmbeddingRecord.from_row(joined[0]) if joined else None

    def search(
        self,
        tenant_id: str,
        query_raw_vector: Sequence[float],
        limit: int = 10,
        journey_id: Optional[str] = None,
        model_name: Optional[str] = None,
    ) -> List[SearchHit]:
        """
        Find the tenant's segments most similar to a raw query vector.

        Only the shard matching the query length is read, and only the
        tenant's partition of it. Results are ordered by similarity
        descending with segment id as tie-break.

        Raises:
            InvalidVectorError: If the query vector is empty
            UnsupportedDimensionError: If no shard matches the query length
        """
        query = check_vector(query_raw_vector, "query")
        dimension = self._check_dimension(len(query))
        if limit <= 0:
            return []

        transformed_query = self.transform.transform(tenant_id, query)
        candidates = self._load_partition(tenant_id, dimension, journey_id, model_name)

        scored = []
        for candidate in candidates:
            score = cosine_similarity(transformed_query, candidate["vector"])
            scored.append((score, candidate))

        scored.sort(key=lambda x: (-x[0], x[1]["segment_id"], x[1]["index_id"]))

        hits = [
            SearchHit(
                segment_id=candidate["segment_id"],
                similarity=score,
                rank=rank,
                index_id=candidate["index_id"],
                journey_id=candidate["journey_id"],
                model_name=candidate["model_name"],
            )
            for rank, (score, candidate) in enumerate(scored[:limit], start=1)
        ]

        logger.debug(
            f"Search over {len(candidates)} {dimension}-dim vectors returned {len(hits)} hits",
            extra={"tenant_id": tenant_id, "journey_id": journey_id},
        )
        return hits

    def _load_partition(
        self,
        tenant_id: str,
        dimension: int,
        journey_id: Optional[str],
        model_name: Optional[str],
    ) -> List[Dict[str, Any]]:
        index_table = self._table("search_index")
        sql = f"""
            SELECT i.index_id, i.segment_id, i.journey_id, i.model_name, v.vector_json
            FROM {self.shard_table(dimension)} v
            JOIN {index_table} i ON i.tenant_id = v.tenant_id AND i.index_id = v.index_id
            WHERE v.tenant_id = ?
        """
        params: List[Any] = [tenant_id]
        if journey_id is not None:
            sql += " AND i.journey_id = ?"
            params.append(journey_id)
        if model_name is not None:
            sql += " AND i.model_name = ?"
            params.append(model_name)

        try:
            with self._transaction() as cursor:
                cursor.execute(sql, tuple(params))
                rows = _rows(cursor)
        except Exception as e:
            raise VectorStorageError(f"Failed to read shard {dimension}: {e}") from e

        return [
            {
                "index_id": str(row["index_id"]),
                "segment_id": str(row["segment_id"]),
                "journey_id": str(row["journey_id"]) if row["journey_id"] else None,
                "model_name": row["model_name"],
                "vector": json.loads(row["vector_json"]),
            }
            for row in rows
        ]

    def count(self, tenant_id: Optional[str] = None) -> int:
        """Count index rows, optionally for one tenant."""
        index_table = self._table("search_index")
        with self._transaction() as cursor:
            if tenant_id is None:
                cursor.execute(f"SELECT COUNT(*) AS n FROM {index_table}")
            else:
                cursor.execute(
                    f"SELECT COUNT(*) AS n FROM {index_table} WHERE tenant_id = ?",
                    (tenant_id,),
                )
            return int(cursor.fetchone()[0])

    def count_shard(self, dimension: int, tenant_id: Optional[str] = None) -> int:
        """Count vectors in one shard, optionally for one tenant."""
        shard = self.shard_table(dimension)
        with self._transaction() as cursor:
            if tenant_id is None:
                cursor.execute(f"SELECT COUNT(*) AS n FROM {shard}")
            else:
                cursor.execute(f"SELECT COUNT(*) AS n FROM {shard} WHERE tenant_id = ?", (tenant_id,))
            return int(cursor.fetchone()[0])

    def __enter__(self):
        return self

    def __exit__(self, *args) -> None:
        self.close()


class SqliteEmbeddingStore(EmbeddingStore):
    """
    SQLite-based embedding store.

    One connection guarded by a re-entrant lock, so the store can be shared
    between caller threads and the background worker.
    """

    def __init__(
        self,
        db_path: Path,
        dimensions: Sequence[int] = DEFAULT_DIMENSIONS,
        transform: Optional[OrthogonalTransform] = None,
        auto_init: bool = True,
    ):
        """
        Initialize the SQLite embedding store.

        Args:
            db_path: Path to the SQLite database file (":memory:" allowed)
            dimensions: Supported shard dimensionalities
            transform: Tenant transform (default: OrthogonalTransform())
            auto_init: Whether to create tables automatically
        """
        super().__init__(dimensions=dimensions, transform=transform)
        self.db_path = db_path
        self._lock = threading.RLock()
        self.conn = None
        self._connect()

        if auto_init:
            self._init_schema()

    def _connect(self) -> None:
        """Establish database connection."""
        if str(self.db_path) != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        logger.debug(f"Connected to SQLite embedding store: {self.db_path}")

    def _init_schema(self) -> None:
        """Initialize database schema."""
        with self._transaction() as cursor:
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS search_index (
                    index_id TEXT PRIMARY KEY,
                    tenant_id TEXT NOT NULL,
                    segment_id TEXT NOT NULL,
                    journey_id TEXT,
                    model_name TEXT NOT NULL,
                    dimension INTEGER NOT NULL,
                    created_utc TEXT NOT NULL,
                    updated_utc TEXT
                )
            """)
            cursor.execute("""
                CREATE UNIQUE INDEX IF NOT EXISTS ux_search_index_tenant_segment_model
                ON search_index (tenant_id, segment_id, model_name)
            """)
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS ix_search_index_tenant_journey
                ON search_index (tenant_id, journey_id)
            """)
            for dimension in self.dimensions:
                cursor.execute(f"""
                    CREATE TABLE IF NOT EXISTS search_vectors_{dimension} (
                        tenant_id TEXT NOT NULL,
                        index_id TEXT NOT NULL,
                        vector_json TEXT NOT NULL,
                        PRIMARY KEY (tenant_id, index_id)
                    )
                """)
        logger.debug(f"Initialized embedding store schema (shards: {self.dimensions})")

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Cursor]:
        with self._lock:
            cursor = self.conn.cursor()
            try:
                yield cursor
                self.conn.commit()
            except BaseException:
                self.conn.rollback()
                raise
            finally:
                cursor.close()

    def _table(self, name: str) -> str:
        return name

    def _ts(self, value: datetime) -> str:
        return value.astimezone(timezone.utc).isoformat(timespec="microseconds")

    def _is_integrity_error(self, error: Exception) -> bool:
        return isinstance(error, sqlite3.IntegrityError)

    def close(self) -> None:
        """Close database connection."""
        with self._lock:
            if self.conn:
                self.conn.close()
                self.conn = None

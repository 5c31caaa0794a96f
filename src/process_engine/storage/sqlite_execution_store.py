"""
SQLite-based execution store.

Default backend for local runs and tests. Timestamps are stored as
fixed-width ISO-8601 UTC text so that text ordering matches time ordering.
"""

import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator

from .base import ExecutionStore, _EXECUTION_COLUMNS


logger = logging.getLogger(__name__)


class SqliteExecutionStore(ExecutionStore):
    """
    SQLite-based implementation of the execution store.

    One connection guarded by a re-entrant lock; the coordinator and the
    background worker may share an instance.
    """

    def __init__(self, db_path: Path, auto_init: bool = True):
        """
        Initialize the SQLite execution store.

        Args:
            db_path: Path to the SQLite database file (":memory:" allowed)
            auto_init: Whether to create tables automatically
        """
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
        logger.debug(f"Connected to SQLite execution store: {self.db_path}")

    def _init_schema(self) -> None:
        """Initialize database schema."""
        with self._transaction() as cursor:
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS journeys (
                    journey_id TEXT PRIMARY KEY,
                    tenant_id TEXT NOT NULL,
                    name TEXT,
                    created_at TEXT NOT NULL
                )
            """)
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS process_executions (
                    execution_id TEXT PRIMARY KEY,
                    tenant_id TEXT NOT NULL,
                    journey_id TEXT NOT NULL,
                    process_id TEXT NOT NULL,
                    state TEXT NOT NULL,
                    inputs_json TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    started_at TEXT,
                    completed_at TEXT,
                    error_message TEXT,
                    worker_id TEXT
                )
            """)
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS ix_process_executions_state_created
                ON process_executions (state, created_at)
            """)
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS ix_process_executions_journey
                ON process_executions (journey_id, created_at)
            """)
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS process_results (
                    result_id TEXT PRIMARY KEY,
                    execution_id TEXT NOT NULL UNIQUE
                        REFERENCES process_executions (execution_id),
                    output_json TEXT NOT NULL,
                    metadata_json TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
            """)
        logger.debug("Initialized execution store schema")

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

    def _select_pending_sql(self) -> str:
        return (
            f"SELECT {_EXECUTION_COLUMNS} FROM process_executions "
            f"WHERE state = 'Pending' ORDER BY created_at, rowid LIMIT ?"
        )

    @property
    def _sequence_column(self) -> str:
        return "rowid"

    def _is_integrity_error(self, error: Exception) -> bool:
        return isinstance(error, sqlite3.IntegrityError)

    def close(self) -> None:
        """Close database connection."""
        with self._lock:
            if self.conn:
                self.conn.close()
                self.conn = None

"""
SQL Server-based execution store.

Uses pyodbc with one connection per thread. Tables live under a dedicated
schema (default ``engine``); a ``seq`` identity column orders executions
created within the same timestamp tick.
"""

import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any

try:
    import pyodbc
except ImportError:
    pyodbc = None

from vector.sqlserver_store import is_valid_identifier

from ..core.exceptions import EngineStorageError
from .base import ExecutionStore, _EXECUTION_COLUMNS


logger = logging.getLogger(__name__)


class SqlServerExecutionStore(ExecutionStore):
    """
    SQL Server-based implementation of the execution store.

    Example:
        >>> store = SqlServerExecutionStore(
        ...     connection_string="Driver={ODBC Driver 18 for SQL Server};...",
        ...     schema="engine",
        ... )
        >>> store.list_pending(limit=10)
    """

    def __init__(
        self,
        connection_string: str,
        schema: str = "engine",
        auto_init: bool = True,
    ):
        """
        Initialize the SQL Server execution store.

        Args:
            connection_string: Full ODBC connection string
            schema: Schema name for tables
            auto_init: Whether to create schema and tables automatically

        Raises:
            ImportError: If pyodbc is not installed
            ValueError: If the schema name is not a safe identifier
            EngineStorageError: If the first connection fails
        """
        if pyodbc is None:
            raise ImportError(
                "pyodbc is required for SqlServerExecutionStore. "
                "Install with: pip install pyodbc"
            )
        if not is_valid_identifier(schema):
            raise ValueError(f"Invalid schema name: {schema}")

        self.schema = schema
        self.connection_string = connection_string
        self._thread_local = threading.local()
        self._connections = []
        self._connections_lock = threading.Lock()

        try:
            self._get_conn()
        except pyodbc.Error as e:
            logger.error(f"Failed to connect to SQL Server: {e}")
            raise EngineStorageError(f"Failed to connect to SQL Server: {e}") from e
        logger.debug(f"Connected to SQL Server execution store (schema: {self.schema})")

        if auto_init:
            self._init_schema()

    def _get_conn(self):
        """Get (or create) a thread-local connection."""
        conn = getattr(self._thread_local, "conn", None)
        if conn is None:
            conn = pyodbc.connect(self.connection_string, autocommit=False)
            self._thread_local.conn = conn
            with self._connections_lock:
                self._connections.append(conn)
        return conn

    def _init_schema(self) -> None:
        """Initialize database schema and tables."""
        s = self.schema
        with self._transaction() as cursor:
            cursor.execute(f"""
                IF NOT EXISTS (SELECT * FROM sys.schemas WHERE name = ?)
                BEGIN
                    EXEC('CREATE SCHEMA [{s}]')
                END
            """, (s,))

            cursor.execute(f"""
                IF OBJECT_ID(N'[{s}].[journeys]', N'U') IS NULL
                BEGIN
                    CREATE TABLE [{s}].[journeys] (
                        journey_id NVARCHAR(100) NOT NULL PRIMARY KEY,
                        tenant_id NVARCHAR(100) NOT NULL,
                        name NVARCHAR(400) NULL,
                        created_at DATETIME2 NOT NULL
                    );
                END
            """)

            cursor.execute(f"""
                IF OBJECT_ID(N'[{s}].[process_executions]', N'U') IS NULL
                BEGIN
                    CREATE TABLE [{s}].[process_executions] (
                        execution_id NVARCHAR(36) NOT NULL PRIMARY KEY,
                        seq BIGINT IDENTITY(1,1) NOT NULL,
                        tenant_id NVARCHAR(100) NOT NULL,
                        journey_id NVARCHAR(100) NOT NULL,
                        process_id NVARCHAR(200) NOT NULL,
                        state NVARCHAR(20) NOT NULL,
                        inputs_json NVARCHAR(MAX) NOT NULL,
                        created_at DATETIME2 NOT NULL,
                        started_at DATETIME2 NULL,
                        completed_at DATETIME2 NULL,
                        error_message NVARCHAR(MAX) NULL,
                        worker_id NVARCHAR(200) NULL,
                        CONSTRAINT ck_process_executions_state CHECK (
                            state IN ('Pending', 'Running', 'Completed', 'Failed', 'Cancelled')
                        )
                    );
                    CREATE INDEX ix_process_executions_state_created
                        ON [{s}].[process_executions] (state, created_at, seq);
                    CREATE INDEX ix_process_executions_journey
                        ON [{s}].[process_executions] (journey_id, created_at);
                END
            """)

            cursor.execute(f"""
                IF OBJECT_ID(N'[{s}].[process_results]', N'U') IS NULL
                BEGIN
                    CREATE TABLE [{s}].[process_results] (
                        result_id NVARCHAR(36) NOT NULL PRIMARY KEY,
                        execution_id NVARCHAR(36) NOT NULL
                            REFERENCES [{s}].[process_executions] (execution_id),
                        output_json NVARCHAR(MAX) NOT NULL,
                        metadata_json NVARCHAR(MAX) NOT NULL,
                        created_at DATETIME2 NOT NULL,
                        CONSTRAINT ux_process_results_execution UNIQUE (execution_id)
                    );
                END
            """)
        logger.debug(f"Initialized execution store schema [{s}]")

    @contextmanager
    def _transaction(self):
        conn = self._get_conn()
        cursor = conn.cursor()
        try:
            yield cursor
            conn.commit()
        except BaseException:
            conn.rollback()
            raise
        finally:
            cursor.close()

    def _table(self, name: str) -> str:
        return f"[{self.schema}].[{name}]"

    def _ts(self, value: datetime) -> Any:
        # DATETIME2 has no offset; values are stored as naive UTC
        return value.astimezone(timezone.utc).replace(tzinfo=None)

    def _select_pending_sql(self) -> str:
        # READPAST skips rows locked by a concurrent claim instead of blocking
        return (
            f"SELECT TOP (?) {_EXECUTION_COLUMNS} "
            f"FROM {self._table('process_executions')} WITH (READPAST) "
            f"WHERE state = 'Pending' ORDER BY created_at, seq"
        )

    @property
    def _sequence_column(self) -> str:
        return "seq"

    def _is_integrity_error(self, error: Exception) -> bool:
        return isinstance(error, pyodbc.IntegrityError)

    def close(self) -> None:
        """Close all thread connections."""
        with self._connections_lock:
            for conn in self._connections:
                try:
                    conn.close()
                except pyodbc.Error as e:
                    logger.warning(f"Error closing SQL Server connection: {e}")
            self._connections = []
        self._thread_local = threading.local()

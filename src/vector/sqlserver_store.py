"""
SQL Server-based embedding store.

Same table layout as the SQLite store, created under a dedicated schema.
"""

import logging
import re
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Optional, Sequence

try:
    import pyodbc
except ImportError:
    pyodbc = None

from .contracts.models import DEFAULT_DIMENSIONS
from .exceptions import VectorStorageError
from .store import EmbeddingStore
from .transform import OrthogonalTransform


logger = logging.getLogger(__name__)

_IDENTIFIER = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")
_RESERVED = {
    "select", "insert", "update", "delete", "drop", "create", "alter",
    "exec", "execute", "union", "where", "from", "table", "database",
    "schema", "index", "grant", "revoke", "truncate", "declare", "set",
}


def is_valid_identifier(name: str) -> bool:
    """
    Validate that a name is a safe SQL identifier.

    Must start with a letter or underscore, contain only letters, digits and
    underscores, be at most 128 characters and not be a reserved word.
    """
    if not name or len(name) > 128:
        return False
    if not _IDENTIFIER.match(name):
        return False
    return name.lower() not in _RESERVED


class SqlServerEmbeddingStore(EmbeddingStore):
    """
    SQL Server-based implementation of the embedding store.

    Uses one connection per thread so the worker thread and caller threads
    never share a pyodbc connection.
    """

    def __init__(
        self,
        connection_string: str,
        schema: str = "vector",
        dimensions: Sequence[int] = DEFAULT_DIMENSIONS,
        transform: Optional[OrthogonalTransform] = None,
        auto_init: bool = True,
    ):
        """
        Initialize the SQL Server embedding store.

        Args:
            connection_string: Full ODBC connection string
            schema: Schema name for tables
            dimensions: Supported shard dimensionalities
            transform: Tenant transform (default: OrthogonalTransform())
            auto_init: Whether to create schema and tables automatically
        """
        if pyodbc is None:
            raise ImportError(
                "pyodbc is required for SqlServerEmbeddingStore. "
                "Install with: pip install pyodbc"
            )
        if not is_valid_identifier(schema):
            raise ValueError(f"Invalid schema name: {schema}")

        super().__init__(dimensions=dimensions, transform=transform)
        self.schema = schema
        self.connection_string = connection_string
        self._thread_local = threading.local()
        self._connections = []
        self._connections_lock = threading.Lock()

        try:
            self._get_conn()
        except pyodbc.Error as e:
            logger.error(f"Failed to connect to SQL Server: {e}")
            raise VectorStorageError(f"Failed to connect to SQL Server: {e}") from e
        logger.debug(f"Connected to SQL Server embedding store (schema: {self.schema})")

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
        with self._transaction() as cursor:
            # Schema name is validated in __init__; CREATE SCHEMA cannot be parameterized
            cursor.execute(f"""
                IF NOT EXISTS (SELECT * FROM sys.schemas WHERE name = ?)
                BEGIN
                    EXEC('CREATE SCHEMA [{self.schema}]')
                END
            """, (self.schema,))

            cursor.execute(f"""
                IF OBJECT_ID(N'[{self.schema}].[search_index]', N'U') IS NULL
                BEGIN
                    CREATE TABLE [{self.schema}].[search_index] (
                        index_id NVARCHAR(36) NOT NULL PRIMARY KEY,
                        tenant_id NVARCHAR(100) NOT NULL,
                        segment_id NVARCHAR(100) NOT NULL,
                        journey_id NVARCHAR(100) NULL,
                        model_name NVARCHAR(200) NOT NULL,
                        dimension INT NOT NULL,
                        created_utc DATETIME2 NOT NULL,
                        updated_utc DATETIME2 NULL
                    );
                    CREATE UNIQUE INDEX ux_search_index_tenant_segment_model
                        ON [{self.schema}].[search_index] (tenant_id, segment_id, model_name);
                    CREATE INDEX ix_search_index_tenant_journey
                        ON [{self.schema}].[search_index] (tenant_id, journey_id);
                END
            """)

            for dimension in self.dimensions:
                cursor.execute(f"""
                    IF OBJECT_ID(N'[{self.schema}].[search_vectors_{dimension}]', N'U') IS NULL
                    BEGIN
                        CREATE TABLE [{self.schema}].[search_vectors_{dimension}] (
                            tenant_id NVARCHAR(100) NOT NULL,
                            index_id NVARCHAR(36) NOT NULL,
                            vector_json NVARCHAR(MAX) NOT NULL,
                            CONSTRAINT pk_search_vectors_{dimension} PRIMARY KEY (tenant_id, index_id)
                        );
                    END
                """)
        logger.debug(f"Initialized embedding store schema (shards: {self.dimensions})")

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

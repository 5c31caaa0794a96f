"""
Storage backends for executions and embeddings.

The backend is chosen by ``database.backend`` in EngineConfig (or the
ENGINE_DB_BACKEND environment variable):
    - sqlite (default): one local database file holds both stores
    - sqlserver: executions under the ``engine`` schema, embeddings under ``vector``
"""

import logging
from typing import Optional

from vector.store import EmbeddingStore
from vector.transform import OrthogonalTransform

from ..core.config import EngineConfig
from .base import ExecutionStore


logger = logging.getLogger(__name__)


# Lazy imports so the SQLite path never needs pyodbc
def _get_sqlite_store():
    from .sqlite_execution_store import SqliteExecutionStore
    return SqliteExecutionStore


def _get_sqlserver_store():
    from .sqlserver_execution_store import SqlServerExecutionStore
    return SqlServerExecutionStore


def create_execution_store(
    config: Optional[EngineConfig] = None,
    auto_init: bool = True,
) -> ExecutionStore:
    """
    Factory function to create the execution store for a configuration.

    Args:
        config: Engine configuration (default: EngineConfig.from_env())
        auto_init: Auto-create schema/tables

    Returns:
        ExecutionStore instance

    Raises:
        ImportError: If the SQL Server backend is selected without pyodbc
    """
    config = config or EngineConfig.from_env()

    if config.backend == "sqlserver":
        store_class = _get_sqlserver_store()
        schema = config.get("database.sqlserver.schema", "engine")
        logger.info(f"Creating SQL Server execution store (schema: {schema})")
        return store_class(
            connection_string=config.get_sqlserver_connection_string(),
            schema=schema,
            auto_init=auto_init,
        )

    store_class = _get_sqlite_store()
    logger.info(f"Creating SQLite execution store: {config.sqlite_path}")
    return store_class(db_path=config.sqlite_path, auto_init=auto_init)


def create_embedding_store(
    config: Optional[EngineConfig] = None,
    transform: Optional[OrthogonalTransform] = None,
    auto_init: bool = True,
) -> EmbeddingStore:
    """
    Factory function to create the embedding store for a configuration.

    Args:
        config: Engine configuration (default: EngineConfig.from_env())
        transform: Tenant transform (default: OrthogonalTransform())
        auto_init: Auto-create schema/tables

    Returns:
        EmbeddingStore instance with one shard per configured dimension
    """
    config = config or EngineConfig.from_env()

    if config.backend == "sqlserver":
        from vector.sqlserver_store import SqlServerEmbeddingStore

        schema = config.get("vector.schema", "vector")
        logger.info(f"Creating SQL Server embedding store (schema: {schema})")
        return SqlServerEmbeddingStore(
            connection_string=config.get_sqlserver_connection_string(),
            schema=schema,
            dimensions=config.dimensions,
            transform=transform,
            auto_init=auto_init,
        )

    from vector.store import SqliteEmbeddingStore

    logger.info(f"Creating SQLite embedding store: {config.sqlite_path}")
    return SqliteEmbeddingStore(
        db_path=config.sqlite_path,
        dimensions=config.dimensions,
        transform=transform,
        auto_init=auto_init,
    )


__all__ = [
    "ExecutionStore",
    "create_execution_store",
    "create_embedding_store",
]

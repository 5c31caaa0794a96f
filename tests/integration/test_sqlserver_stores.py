"""
Integration tests for the SQL Server execution and embedding stores.

Each test creates its stores in a throwaway schema which is dropped
afterwards. Skipped unless a SQL Server connection is configured.
"""

from datetime import datetime, timezone

import pytest

from process_engine.contracts import Execution, ExecutionState
from process_engine.core.exceptions import AccessDeniedError, InvalidStateTransitionError


def _drop_schema(conn_str, schema, tables):
    import pyodbc

    conn = pyodbc.connect(conn_str, autocommit=True)
    try:
        cursor = conn.cursor()
        for table in tables:
            cursor.execute(f"IF OBJECT_ID(N'[{schema}].[{table}]', N'U') IS NOT NULL DROP TABLE [{schema}].[{table}]")
        cursor.execute(f"IF EXISTS (SELECT * FROM sys.schemas WHERE name = ?) EXEC('DROP SCHEMA [{schema}]')", (schema,))
    finally:
        conn.close()


@pytest.fixture
def sqlserver_execution_store(sqlserver_conn_str, test_schema_name):
    """Execution store in a unique schema."""
    from process_engine.storage.sqlserver_execution_store import SqlServerExecutionStore

    store = SqlServerExecutionStore(sqlserver_conn_str, schema=test_schema_name)
    yield store
    store.close()
    _drop_schema(sqlserver_conn_str, test_schema_name, ("process_results", "process_executions", "journeys"))


@pytest.fixture
def sqlserver_embedding_store(sqlserver_conn_str, test_schema_name):
    """Embedding store in a unique schema with small shards."""
    from vector.sqlserver_store import SqlServerEmbeddingStore

    store = SqlServerEmbeddingStore(sqlserver_conn_str, schema=test_schema_name, dimensions=(3, 4))
    yield store
    store.close()
    _drop_schema(
        sqlserver_conn_str,
        test_schema_name,
        ("search_vectors_3", "search_vectors_4", "search_index"),
    )


def _at(second):
    return datetime(2024, 1, 1, 0, 0, second, tzinfo=timezone.utc)


@pytest.mark.integration
class TestSqlServerExecutionStore:
    """Execution store against a live SQL Server."""

    def test_schema_exists(self, sqlserver_execution_store):
        """Test the schema and queue table are created."""
        store = sqlserver_execution_store
        with store._transaction() as cursor:
            cursor.execute("""
                SELECT 1 FROM sys.tables t
                JOIN sys.schemas s ON t.schema_id = s.schema_id
                WHERE t.name = 'process_executions' AND s.name = ?
            """, (store.schema,))
            assert cursor.fetchone() is not None

    def test_journey_ownership(self, sqlserver_execution_store):
        store = sqlserver_execution_store
        store.register_journey("j1", "tenant-a")

        assert store.get_journey("j1").tenant_id == "tenant-a"
        with pytest.raises(AccessDeniedError):
            store.register_journey("j1", "tenant-b")

    def test_claim_complete_lifecycle(self, sqlserver_execution_store):
        """Test Pending -> Running -> Completed with a single Result."""
        store = sqlserver_execution_store
        execution = Execution.create_new("tenant-a", "j1", "echo", {"message": "hi"}, created_at=_at(0))
        store.create_execution(execution)

        assert [e.execution_id for e in store.list_pending(10)] == [execution.execution_id]
        assert store.claim(execution.execution_id, started_at=_at(1), worker_id="w-1")
        assert not store.claim(execution.execution_id, started_at=_at(2))

        store.complete(execution.execution_id, {"echo": "hi"}, completed_at=_at(3))

        stored = store.get_execution(execution.execution_id)
        assert stored.state == ExecutionState.COMPLETED
        assert stored.worker_id == "w-1"
        assert stored.completed_at == _at(3)
        assert store.get_result(execution.execution_id).output == {"echo": "hi"}
        assert store.count_results(execution.execution_id) == 1

        with pytest.raises(InvalidStateTransitionError):
            store.fail(execution.execution_id, "late failure")

    def test_pending_order_with_equal_timestamps(self, sqlserver_execution_store):
        """Test equal creation times are selected in insertion order."""
        store = sqlserver_execution_store
        ids = []
        for _ in range(3):
            execution = Execution.create_new("tenant-a", "j1", "echo", created_at=_at(0))
            store.create_execution(execution)
            ids.append(execution.execution_id)

        assert [e.execution_id for e in store.list_pending(2)] == ids[:2]

    def test_cancel_pending(self, sqlserver_execution_store):
        store = sqlserver_execution_store
        execution = Execution.create_new("tenant-a", "j1", "echo", created_at=_at(0))
        store.create_execution(execution)

        assert store.cancel_pending(execution.execution_id, completed_at=_at(1))
        assert store.get_execution(execution.execution_id).state == ExecutionState.CANCELLED
        assert store.list_pending(10) == []


@pytest.mark.integration
class TestSqlServerEmbeddingStore:
    """Embedding store against a live SQL Server."""

    def test_tenant_isolated_search(self, sqlserver_embedding_store):
        """Test tenant B never sees tenant A's segment."""
        store = sqlserver_embedding_store
        store.store("A", "seg-1", None, [1.0, 0.0, 0.0], "m")

        hits = store.search("A", [1.0, 0.0, 0.0])

        assert [h.segment_id for h in hits] == ["seg-1"]
        assert hits[0].similarity == pytest.approx(1.0)
        assert store.search("B", [1.0, 0.0, 0.0]) == []

    def test_update_and_delete(self, sqlserver_embedding_store):
        store = sqlserver_embedding_store
        first = store.store("A", "seg-1", None, [1.0, 0.0, 0.0], "m")
        second = store.store("A", "seg-1", None, [0.0, 1.0, 0.0, 0.0], "m")

        assert second.index_id == first.index_id
        assert store.count_shard(3) == 0
        assert store.count_shard(4) == 1
        assert store.delete_segment("A", "seg-1") == 1
        assert store.count("A") == 0

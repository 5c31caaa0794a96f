"""
Execution Store - durable execution queue and result storage.

Holds three tables:
- journeys: journey id and owning tenant
- process_executions: one row per requested execution (the queue)
- process_results: one row per Completed execution, unique on execution id

State changes are conditional updates (``... WHERE state = ?``) so a
Pending row can be claimed by exactly one worker and terminal rows can never
be changed. A Completed transition and its Result insert share one
transaction.

ExecutionStore carries the SQL shared by all backends (qmark parameters work
for both sqlite3 and pyodbc); backends supply connections, table names, DDL,
row limits and timestamp encoding.
"""

import logging
import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..contracts.execution_contracts import (
    Execution,
    ExecutionState,
    JourneyRecord,
    ProcessResultRecord,
    utc_now,
)
from ..core.exceptions import (
    AccessDeniedError,
    EngineStorageError,
    ExecutionNotFoundError,
    InvalidStateTransitionError,
)
from ..core.values import JsonObject, dumps


logger = logging.getLogger(__name__)

_EXECUTION_COLUMNS = (
    "execution_id, tenant_id, journey_id, process_id, state, inputs_json, "
    "created_at, started_at, completed_at, error_message, worker_id"
)


def _rows(cursor) -> List[Dict[str, Any]]:
    """Fetch all rows from a cursor as dictionaries."""
    columns = [column[0] for column in cursor.description]
    return [dict(zip(columns, row)) for row in cursor.fetchall()]


class ExecutionStore(ABC):
    """
    Storage interface for executions, results and journeys.

    Mutations are only performed by the ExecutionCoordinator and the
    BackgroundWorker.
    """

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
    def _select_pending_sql(self) -> str:
        """SELECT of Pending executions, oldest first, with one limit parameter."""

    @property
    @abstractmethod
    def _sequence_column(self) -> str:
        """Column giving insertion order, used to break created_at ties."""

    @abstractmethod
    def _is_integrity_error(self, error: Exception) -> bool:
        """Whether ``error`` is a unique/primary key violation."""

    @abstractmethod
    def close(self) -> None:
        """Close database connections."""

    def __enter__(self):
        return self

    def __exit__(self, *args) -> None:
        self.close()

    # =========================================================================
    # Journeys
    # =========================================================================

    def register_journey(
        self,
        journey_id: str,
        tenant_id: str,
        name: Optional[str] = None,
    ) -> JourneyRecord:
        """
        Register a journey and its owning tenant.

        Registering an existing journey for the same tenant is a no-op.

        Raises:
            AccessDeniedError: If the journey is registered to another tenant
        """
        existing = self.get_journey(journey_id)
        if existing is not None:
            if existing.tenant_id != str(tenant_id):
                raise AccessDeniedError(journey_id, tenant_id)
            return existing

        record = JourneyRecord(journey_id=str(journey_id), tenant_id=str(tenant_id), name=name)
        try:
            with self._transaction() as cursor:
                cursor.execute(
                    f"INSERT INTO {self._table('journeys')} "
                    f"(journey_id, tenant_id, name, created_at) VALUES (?, ?, ?, ?)",
                    (record.journey_id, record.tenant_id, name, self._ts(record.created_at)),
                )
        except Exception as e:
            if self._is_integrity_error(e):
                # Registered concurrently; re-check ownership
                return self.register_journey(journey_id, tenant_id, name)
            raise EngineStorageError(f"Failed to register journey {journey_id}: {e}") from e

        logger.debug(f"Registered journey {journey_id} for tenant {tenant_id}")
        return record

    def get_journey(self, journey_id: str) -> Optional[JourneyRecord]:
        """Get a journey by id, or None."""
        rows = self._query(
            f"SELECT journey_id, tenant_id, name, created_at FROM {self._table('journeys')} "
            f"WHERE journey_id = ?",
            (str(journey_id),),
        )
        return JourneyRecord.from_row(rows[0]) if rows else None

    # =========================================================================
    # Executions
    # =========================================================================

    def create_execution(self, execution: Execution) -> Execution:
        """
        Insert a new execution row (Pending or Running).

        Raises:
            EngineStorageError: If the row cannot be written
        """
        if execution.state not in (ExecutionState.PENDING, ExecutionState.RUNNING):
            raise ValueError(f"New executions start Pending or Running, not {execution.state.value}")

        try:
            with self._transaction() as cursor:
                cursor.execute(
                    f"INSERT INTO {self._table('process_executions')} ({_EXECUTION_COLUMNS}) "
                    f"VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        execution.execution_id,
                        execution.tenant_id,
                        execution.journey_id,
                        execution.process_id,
                        execution.state.value,
                        dumps(execution.inputs),
                        self._ts(execution.created_at),
                        self._ts(execution.started_at) if execution.started_at else None,
                        None,
                        None,
                        execution.worker_id,
                    ),
                )
        except Exception as e:
            logger.error(f"Failed to create execution {execution.execution_id}: {e}")
            raise EngineStorageError(f"Failed to create execution: {e}") from e

        logger.debug(
            f"Created execution {execution.execution_id} in state {execution.state.value}",
            extra={"execution_id": execution.execution_id, "tenant_id": execution.tenant_id},
        )
        return execution

    def get_execution(self, execution_id: str) -> Optional[Execution]:
        """Get an execution by id, or None."""
        rows = self._query(
            f"SELECT {_EXECUTION_COLUMNS} FROM {self._table('process_executions')} "
            f"WHERE execution_id = ?",
            (str(execution_id),),
        )
        return Execution.from_row(rows[0]) if rows else None

    def list_pending(self, limit: int) -> List[Execution]:
        """
        List up to ``limit`` Pending executions in creation order.

        Raises:
            EngineStorageError: If the query fails
        """
        try:
            rows = self._query(self._select_pending_sql(), (int(limit),))
        except Exception as e:
            raise EngineStorageError(f"Failed to list pending executions: {e}") from e
        return [Execution.from_row(row) for row in rows]

    def list_for_journey(
        self,
        journey_id: str,
        tenant_id: Optional[str] = None,
    ) -> List[Execution]:
        """List executions of a journey, newest first."""
        sql = (
            f"SELECT {_EXECUTION_COLUMNS} FROM {self._table('process_executions')} "
            f"WHERE journey_id = ?"
        )
        params: List[Any] = [str(journey_id)]
        if tenant_id is not None:
            sql += " AND tenant_id = ?"
            params.append(str(tenant_id))
        sql += f" ORDER BY created_at DESC, {self._sequence_column} DESC"
        return [Execution.from_row(row) for row in self._query(sql, tuple(params))]

    def count_executions(self, state: Optional[ExecutionState] = None) -> int:
        """Count executions, optionally in one state."""
        table = self._table("process_executions")
        if state is None:
            rows = self._query(f"SELECT COUNT(*) AS n FROM {table}", ())
        else:
            rows = self._query(f"SELECT COUNT(*) AS n FROM {table} WHERE state = ?", (state.value,))
        return int(rows[0]["n"])

    # =========================================================================
    # State transitions
    # =========================================================================

    def claim(
        self,
        execution_id: str,
        started_at: Optional[datetime] = None,
        worker_id: Optional[str] = None,
    ) -> bool:
        """
        Atomically move a Pending execution to Running.

        Returns:
            True if this caller won the claim, False if the row was no
            longer Pending
        """
        started_at = started_at or utc_now()
        with self._transaction() as cursor:
            cursor.execute(
                f"UPDATE {self._table('process_executions')} "
                f"SET state = ?, started_at = ?, worker_id = ? "
                f"WHERE execution_id = ? AND state = ?",
                (
                    ExecutionState.RUNNING.value,
                    self._ts(started_at),
                    worker_id,
                    str(execution_id),
                    ExecutionState.PENDING.value,
                ),
            )
            claimed = cursor.rowcount == 1

        if not claimed:
            logger.info(
                f"Execution {execution_id} was not claimable",
                extra={"execution_id": execution_id, "worker_id": worker_id},
            )
        return claimed

    def complete(
        self,
        execution_id: str,
        output: JsonObject,
        metadata: Optional[JsonObject] = None,
        completed_at: Optional[datetime] = None,
    ) -> ProcessResultRecord:
        """
        Move a Running execution to Completed and persist its Result.

        Raises:
            InvalidStateTransitionError: If the execution is not Running
            ExecutionNotFoundError: If the execution does not exist
        """
        completed_at = completed_at or utc_now()
        result = ProcessResultRecord(
            execution_id=str(execution_id),
            output=output,
            metadata=metadata or {},
            created_at=completed_at,
            result_id=str(uuid.uuid4()),
        )

        with self._transaction() as cursor:
            self._conditional_update(
                cursor, execution_id, ExecutionState.RUNNING, ExecutionState.COMPLETED,
                completed_at, None,
            )
            cursor.execute(
                f"INSERT INTO {self._table('process_results')} "
                f"(result_id, execution_id, output_json, metadata_json, created_at) "
                f"VALUES (?, ?, ?, ?, ?)",
                (
                    result.result_id,
                    result.execution_id,
                    dumps(result.output),
                    dumps(result.metadata),
                    self._ts(completed_at),
                ),
            )
        return result

    def fail(
        self,
        execution_id: str,
        error_message: str,
        completed_at: Optional[datetime] = None,
    ) -> None:
        """
        Move a Running execution to Failed.

        Raises:
            InvalidStateTransitionError: If the execution is not Running
            ExecutionNotFoundError: If the execution does not exist
        """
        with self._transaction() as cursor:
            self._conditional_update(
                cursor, execution_id, ExecutionState.RUNNING, ExecutionState.FAILED,
                completed_at or utc_now(), error_message,
            )

    def mark_cancelled(
        self,
        execution_id: str,
        reason: Optional[str] = None,
        completed_at: Optional[datetime] = None,
        from_state: ExecutionState = ExecutionState.RUNNING,
    ) -> None:
        """
        Move a Running (or Pending) execution to Cancelled.

        Raises:
            InvalidStateTransitionError: If the execution is not in ``from_state``
            ExecutionNotFoundError: If the execution does not exist
        """
        with self._transaction() as cursor:
            self._conditional_update(
                cursor, execution_id, from_state, ExecutionState.CANCELLED,
                completed_at or utc_now(), reason,
            )

    def cancel_pending(
        self,
        execution_id: str,
        reason: Optional[str] = None,
        completed_at: Optional[datetime] = None,
    ) -> bool:
        """
        Cancel an execution that no worker has claimed yet.

        Returns:
            True if cancelled, False if the execution had already left Pending

        Raises:
            ExecutionNotFoundError: If the execution does not exist
        """
        try:
            self.mark_cancelled(
                execution_id, reason or "Cancelled before start", completed_at,
                from_state=ExecutionState.PENDING,
            )
        except InvalidStateTransitionError:
            return False
        return True

    def _conditional_update(
        self,
        cursor,
        execution_id: str,
        from_state: ExecutionState,
        to_state: ExecutionState,
        completed_at: datetime,
        error_message: Optional[str],
    ) -> None:
        if not from_state.can_transition_to(to_state):
            raise InvalidStateTransitionError(execution_id, from_state.value, to_state.value)

        table = self._table("process_executions")
        cursor.execute(
            f"UPDATE {table} SET state = ?, completed_at = ?, error_message = ? "
            f"WHERE execution_id = ? AND state = ?",
            (
                to_state.value,
                self._ts(completed_at),
                error_message,
                str(execution_id),
                from_state.value,
            ),
        )
        if cursor.rowcount == 1:
            return

        cursor.execute(f"SELECT state FROM {table} WHERE execution_id = ?", (str(execution_id),))
        row = cursor.fetchone()
        if row is None:
            raise ExecutionNotFoundError(execution_id)
        raise InvalidStateTransitionError(execution_id, row[0], to_state.value)

    # =========================================================================
    # Results
    # =========================================================================

    def get_result(self, execution_id: str) -> Optional[ProcessResultRecord]:
        """Get the Result of a Completed execution, or None."""
        rows = self._query(
            f"SELECT result_id, execution_id, output_json, metadata_json, created_at "
            f"FROM {self._table('process_results')} WHERE execution_id = ?",
            (str(execution_id),),
        )
        return ProcessResultRecord.from_row(rows[0]) if rows else None

    def count_results(self, execution_id: Optional[str] = None) -> int:
        """Count Result rows, optionally for one execution."""
        table = self._table("process_results")
        if execution_id is None:
            rows = self._query(f"SELECT COUNT(*) AS n FROM {table}", ())
        else:
            rows = self._query(
                f"SELECT COUNT(*) AS n FROM {table} WHERE execution_id = ?", (str(execution_id),)
            )
        return int(rows[0]["n"])

    def _query(self, sql: str, params: tuple) -> List[Dict[str, Any]]:
        with self._transaction() as cursor:
            cursor.execute(sql, params)
            return _rows(cursor)

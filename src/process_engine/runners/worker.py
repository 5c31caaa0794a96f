"""
Background Worker - discovers and drives queued executions.

Each cycle:
1. Selects up to ``batch_size`` Pending executions in creation order
2. Claims each one (Pending -> Running); a lost claim is skipped
3. Re-resolves journey ownership and the process
4. Drives the execution through the coordinator's shared path

A failing execution is recorded as Failed and the batch continues. The loop
only stops when its stop event is set.
"""

import logging
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from ..contracts.execution_contracts import Execution, ExecutionState
from ..core.exceptions import (
    AccessDeniedError,
    EngineError,
    ExecutionCancelledError,
    JourneyNotFoundError,
    ProcessExecutionError,
    UnknownProcessError,
)
from ..processes.base import ProcessProgress
from .coordinator import ExecutionCoordinator


logger = logging.getLogger(__name__)

DEFAULT_POLL_SECONDS = 5.0
DEFAULT_BATCH_SIZE = 10


@dataclass
class WorkerRunStats:
    """Counts for one worker cycle."""
    selected: int = 0
    claimed: int = 0
    skipped: int = 0
    completed: int = 0
    failed: int = 0
    cancelled: int = 0
    batch_error: Optional[str] = None

    @property
    def processed(self) -> int:
        return self.completed + self.failed + self.cancelled

    def to_dict(self) -> Dict[str, Any]:
        return {
            "selected": self.selected,
            "claimed": self.claimed,
            "skipped": self.skipped,
            "completed": self.completed,
            "failed": self.failed,
            "cancelled": self.cancelled,
            "batch_error": self.batch_error,
        }


class BackgroundWorker:
    """
    Polling worker for the execution queue.

    Example:
        >>> worker = BackgroundWorker(coordinator, poll_seconds=5, batch_size=10)
        >>> stats = worker.run_once()
        >>> worker.start()
        >>> worker.stop(timeout=30)
    """

    def __init__(
        self,
        coordinator: ExecutionCoordinator,
        poll_seconds: float = DEFAULT_POLL_SECONDS,
        batch_size: int = DEFAULT_BATCH_SIZE,
        worker_id: Optional[str] = None,
        now: Optional[Callable[[], datetime]] = None,
        wait: Optional[Callable[[float], Any]] = None,
    ):
        """
        Initialize the worker.

        Args:
            coordinator: Coordinator providing the store and the shared execution path
            poll_seconds: Interval between polls when the queue is drained
            batch_size: Maximum executions selected per cycle
            worker_id: Identifier recorded on claimed rows
            now: Clock (default: the coordinator's clock)
            wait: Inter-poll wait taking seconds (default: waits on the stop event)
        """
        if poll_seconds <= 0:
            raise ValueError("poll_seconds must be positive")
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")

        self.coordinator = coordinator
        self.store = coordinator.store
        self.poll_seconds = poll_seconds
        self.batch_size = batch_size
        self.worker_id = worker_id or f"worker-{uuid.uuid4().hex[:8]}"
        self.now = now or coordinator.now
        self._stop_event = threading.Event()
        self._wait = wait or self._stop_event.wait
        self._thread: Optional[threading.Thread] = None

        logger.info(
            f"BackgroundWorker initialized: worker_id={self.worker_id}, "
            f"poll={poll_seconds}s, batch={batch_size}"
        )

    @property
    def stop_requested(self) -> bool:
        return self._stop_event.is_set()

    def request_stop(self) -> None:
        """Ask the loop to stop after the current execution."""
        self._stop_event.set()

    # =========================================================================
    # Loop
    # =========================================================================

    def run_once(self) -> WorkerRunStats:
        """
        Run one polling cycle.

        Returns:
            Counts for the cycle; ``batch_error`` is set if the batch could
            not be selected
        """
        stats = WorkerRunStats()
        try:
            batch = self.store.list_pending(self.batch_size)
        except Exception as e:
            logger.exception(f"Failed to select pending executions: {e}")
            stats.batch_error = str(e)
            return stats

        stats.selected = len(batch)
        if batch:
            logger.info(f"Selected {len(batch)} pending execution(s)")

        for execution in batch:
            if self._stop_event.is_set():
                logger.info("Stop requested; leaving remaining executions Pending")
                break
            self._process_item(execution, stats)

        return stats

    def run_forever(self, stop_after_iterations: Optional[int] = None) -> int:
        """
        Poll until stopped.

        Args:
            stop_after_iterations: Stop after this many cycles (None = until stop())

        Returns:
            Number of cycles run
        """
        logger.info(f"Starting worker loop (worker_id={self.worker_id}, poll={self.poll_seconds}s)")
        iterations = 0

        while not self._stop_event.is_set():
            stats = self.run_once()
            iterations += 1

            if stats.processed or stats.batch_error:
                logger.info(f"Worker cycle {iterations}: {stats.to_dict()}")

            if stop_after_iterations is not None and iterations >= stop_after_iterations:
                break
            if self._stop_event.is_set():
                break
            # A full batch means more work may be waiting
            if stats.batch_error or stats.selected < self.batch_size:
                self._wait(self.poll_seconds)

        logger.info(f"Worker loop stopped after {iterations} cycle(s)")
        return iterations

    def start(self) -> threading.Thread:
        """Run the loop on a background thread."""
        if self._thread is not None and self._thread.is_alive():
            raise RuntimeError(f"Worker {self.worker_id} is already running")

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self.run_forever,
            name=self.worker_id,
            daemon=True,
        )
        self._thread.start()
        return self._thread

    def stop(self, timeout: Optional[float] = None) -> bool:
        """
        Stop the loop and wait for the background thread.

        Returns:
            True if the worker is no longer running
        """
        self._stop_event.set()
        if self._thread is None:
            return True
        self._thread.join(timeout)
        stopped = not self._thread.is_alive()
        if stopped:
            self._thread = None
        else:
            logger.warning(f"Worker {self.worker_id} did not stop within {timeout}s")
        return stopped

    # =========================================================================
    # Per-item processing
    # =========================================================================

    def _process_item(self, execution: Execution, stats: WorkerRunStats) -> None:
        execution_id = execution.execution_id
        log_extra = {
            "execution_id": execution_id,
            "tenant_id": execution.tenant_id,
            "journey_id": execution.journey_id,
            "process_id": execution.process_id,
            "worker_id": self.worker_id,
        }

        started_at = self.now()
        try:
            claimed = self.store.claim(execution_id, started_at=started_at, worker_id=self.worker_id)
        except Exception as e:
            logger.exception(f"Failed to claim execution {execution_id}: {e}", extra=log_extra)
            stats.skipped += 1
            return
        if not claimed:
            stats.skipped += 1
            return

        stats.claimed += 1
        execution.state = ExecutionState.RUNNING
        execution.started_at = started_at
        execution.worker_id = self.worker_id
        logger.info(f"Claimed execution {execution_id}", extra=log_extra)

        try:
            self.coordinator.resolve_journey(execution.journey_id, execution.tenant_id)
            if not self.coordinator.registry.is_registered(execution.process_id):
                raise UnknownProcessError(execution.process_id)
        except (JourneyNotFoundError, AccessDeniedError, UnknownProcessError) as e:
            logger.warning(f"Execution {execution_id} cannot run: {e}", extra=log_extra)
            self._fail(execution_id, str(e), log_extra)
            stats.failed += 1
            return

        # A stop request is only honoured between items, so the running
        # process gets its own event that shutdown never sets
        try:
            result = self.coordinator.drive(
                execution,
                progress=self._log_progress,
                cancel_event=threading.Event(),
            )
        except ProcessExecutionError:
            # Already recorded as Failed by the coordinator
            stats.failed += 1
            return
        except ExecutionCancelledError:
            stats.cancelled += 1
            return
        except Exception as e:
            logger.exception(f"Unexpected error driving execution {execution_id}: {e}", extra=log_extra)
            self._fail(execution_id, str(e), log_extra)
            stats.failed += 1
            return

        if result.success:
            stats.completed += 1
        else:
            stats.failed += 1

    def _fail(self, execution_id: str, message: str, log_extra: Dict[str, Any]) -> None:
        try:
            self.store.fail(execution_id, message, completed_at=self.now())
        except EngineError as e:
            logger.error(f"Could not mark execution {execution_id} Failed: {e}", extra=log_extra)

    def _log_progress(self, progress: ProcessProgress) -> None:
        logger.debug(
            f"Progress {progress.current_index}/{progress.total_count} "
            f"({progress.percent_complete}%): {progress.current_item}"
        )

"""
Execution runners: the synchronous coordinator and the background worker.
"""

from .coordinator import ExecutionCoordinator
from .worker import BackgroundWorker, WorkerRunStats

__all__ = ["BackgroundWorker", "ExecutionCoordinator", "WorkerRunStats"]

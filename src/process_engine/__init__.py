"""
Process Execution Engine

Runs analytical processes against research journeys, either synchronously on
the caller's thread or through a durable execution queue drained by a
background worker.

Key components:
- contracts/: Execution, result and journey records
- core/: Config, exceptions, JSON value helpers and logging utilities
- processes/: Process contract, registry and built-in processes
- providers/: Cognitive backends (Ollama)
- runners/: ExecutionCoordinator and BackgroundWorker
- storage/: Execution store backends (SQLite, SQL Server)
- cli.py: journey-engine command line
"""

__version__ = "0.1.0"

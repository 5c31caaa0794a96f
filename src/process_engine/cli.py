"""
Journey Engine command line.

Runs the background worker, queues executions and inspects journey history.

Usage:
    journey-engine --list-processes
    journey-engine --register-journey j1 --tenant tenant-a
    journey-engine --enqueue segment-embedding --tenant tenant-a --journey j1 \\
        --inputs '{"segments": [{"segment_id": "s1", "text": "..."}]}'
    journey-engine --once
    journey-engine --loop
    journey-engine --history j1 --tenant tenant-a
"""

import argparse
import json
import logging
import signal
import sys
from pathlib import Path
from typing import List, Optional, Tuple

from vector.generator import EmbeddingGenerator
from vector.store import EmbeddingStore

from .core.config import EngineConfig
from .core.exceptions import EngineError
from .core.logging import configure_logging
from .processes import SharedServices, default_registry
from .providers.ollama_client import OllamaClient, OllamaConfig
from .runners.coordinator import ExecutionCoordinator
from .runners.worker import BackgroundWorker
from .storage import create_embedding_store, create_execution_store
from .storage.base import ExecutionStore


logger = logging.getLogger(__name__)


def build_coordinator(
    config: EngineConfig,
) -> Tuple[ExecutionCoordinator, ExecutionStore, EmbeddingStore]:
    """
    Wire stores, the Ollama backend and the built-in processes.

    Returns:
        (coordinator, execution_store, embedding_store); the caller closes
        both stores
    """
    execution_store = create_execution_store(config)
    embedding_store = create_embedding_store(config)
    backend = OllamaClient(OllamaConfig.from_dict(config.get_ollama_config()))
    services = SharedServices(
        backend=backend,
        embedding_generator=EmbeddingGenerator(backend, embedding_store),
        embedding_store=embedding_store,
    )
    coordinator = ExecutionCoordinator(default_registry(), execution_store, services)
    return coordinator, execution_store, embedding_store


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="journey-engine",
        description="Journey Engine - queue, run and inspect analytical process executions",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    mode_group = parser.add_mutually_exclusive_group(required=False)
    mode_group.add_argument(
        "--list-processes",
        action="store_true",
        help="List registered processes and exit"
    )
    mode_group.add_argument(
        "--once",
        action="store_true",
        help="Run a single worker cycle and exit"
    )
    mode_group.add_argument(
        "--loop",
        action="store_true",
        help="Run the worker until interrupted"
    )
    mode_group.add_argument(
        "--enqueue",
        metavar="PROCESS_ID",
        help="Queue an execution of PROCESS_ID"
    )
    mode_group.add_argument(
        "--history",
        metavar="JOURNEY_ID",
        help="Print executions of a journey, newest first"
    )
    mode_group.add_argument(
        "--register-journey",
        metavar="JOURNEY_ID",
        help="Register a journey for --tenant"
    )
    mode_group.add_argument(
        "--cancel",
        metavar="EXECUTION_ID",
        help="Cancel a queued execution"
    )

    parser.add_argument("--tenant", help="Tenant id")
    parser.add_argument("--journey", help="Journey id (for --enqueue)")
    parser.add_argument(
        "--inputs",
        default="{}",
        help="Process inputs as a JSON object (for --enqueue)"
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to YAML config (default: ENGINE_CONFIG env or built-in defaults)"
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose logging"
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    try:
        config = EngineConfig.load(args.config)
    except EngineError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    log_level = logging.DEBUG if args.verbose else getattr(
        logging, str(config.get("logging.level", "INFO")).upper(), logging.INFO
    )
    configure_logging(level=log_level, structured=bool(config.get("logging.structured", False)))

    if args.list_processes:
        registry = default_registry()
        print("Registered processes:")
        for info in registry.list_processes():
            print(f"  {info.process_id}: {info.name} ({info.category.value})")
            print(f"    {info.description}")
        return 0

    if not any((args.once, args.loop, args.enqueue, args.history, args.register_journey, args.cancel)):
        parser.error(
            "one of --list-processes, --once, --loop, --enqueue, --history, "
            "--register-journey or --cancel is required"
        )
    if (args.enqueue or args.register_journey) and not args.tenant:
        parser.error("--tenant is required")
    if args.enqueue and not args.journey:
        parser.error("--journey is required with --enqueue")

    coordinator, execution_store, embedding_store = build_coordinator(config)
    try:
        return _run(args, config, coordinator)
    except EngineError as e:
        logger.error(str(e))
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        execution_store.close()
        embedding_store.close()


def _run(args: argparse.Namespace, config: EngineConfig, coordinator: ExecutionCoordinator) -> int:
    if args.register_journey:
        journey = coordinator.store.register_journey(args.register_journey, args.tenant)
        print(json.dumps(journey.to_dict(), indent=2))
        return 0

    if args.enqueue:
        try:
            inputs = json.loads(args.inputs)
        except json.JSONDecodeError as e:
            print(f"--inputs is not valid JSON: {e}", file=sys.stderr)
            return 2
        execution_id = coordinator.queue(args.enqueue, args.tenant, args.journey, inputs)
        print(execution_id)
        return 0

    if args.cancel:
        cancelled = coordinator.cancel(args.cancel)
        print("cancelled" if cancelled else "not pending")
        return 0 if cancelled else 1

    if args.history:
        executions = coordinator.get_history(args.history, tenant_id=args.tenant)
        print(json.dumps([e.to_dict() for e in executions], indent=2))
        return 0

    worker = BackgroundWorker(
        coordinator,
        poll_seconds=config.poll_seconds,
        batch_size=config.batch_size,
        worker_id=config.worker_id,
    )

    if args.once:
        stats = worker.run_once()
        print(json.dumps(stats.to_dict(), indent=2))
        return 1 if stats.batch_error else 0

    def _handle_shutdown(signum, frame):
        logger.info(f"Received signal {signum}, initiating shutdown")
        worker.request_stop()

    signal.signal(signal.SIGINT, _handle_shutdown)
    signal.signal(signal.SIGTERM, _handle_shutdown)
    worker.run_forever()
    return 0


if __name__ == "__main__":
    sys.exit(main())

"""Sync entrypoint - Standalone process for running the sync engines or validation.

Usage:
    python -m warehouse_sync.sync_entrypoint              # Run all sync engines until interrupted
    python -m warehouse_sync.sync_entrypoint run          # Same as above
    python -m warehouse_sync.sync_entrypoint once         # One cycle per table, then exit
    python -m warehouse_sync.sync_entrypoint validate     # Run validation once
"""

import asyncio
import signal
import sys

from warehouse_sync.core.errors import SyncError
from warehouse_sync.core.logging import get_logger
from warehouse_sync.services.bootstrap import build_runtime

logger = get_logger("sync_entrypoint")

COMMANDS = ("run", "once", "validate")


async def run_engines() -> int:
    """Run every engine until SIGINT/SIGTERM, then stop them cleanly."""
    runtime = build_runtime()
    await runtime.orchestrator.initialize()
    await runtime.orchestrator.start()

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)

    await stop_event.wait()
    logger.info("Shutdown signal received; stopping engines")
    await runtime.orchestrator.stop()
    return 0


async def run_once() -> int:
    """Run a single cycle for every table."""
    runtime = build_runtime()
    await runtime.orchestrator.initialize()
    failed = 0
    for table_id, engine in runtime.orchestrator.engines.items():
        result = await engine.run_sync_cycle()
        logger.info(f"Cycle {table_id}: {result}")
        if result.error:
            failed += 1
    return 1 if failed else 0


async def run_validation() -> int:
    runtime = build_runtime()
    results = await runtime.validator.run_validation()
    logger.info(f"Validation completed: {results['overall_status']}")
    return 0 if results["overall_status"] == "healthy" else 1


def main():
    """Main entry point for the sync process."""
    command = sys.argv[1] if len(sys.argv) > 1 else "run"
    if command not in COMMANDS:
        logger.error(f"Invalid command: {command}. Must be one of: {', '.join(COMMANDS)}")
        sys.exit(1)

    runners = {"run": run_engines, "once": run_once, "validate": run_validation}
    logger.info(f"Sync process starting ({command})...")
    try:
        code = asyncio.run(runners[command]())
    except SyncError as exc:
        logger.error(f"Fatal startup error: {exc}")
        sys.exit(1)

    logger.info(f"Sync process finished ({command}) with exit code {code}")
    sys.exit(code)


if __name__ == "__main__":
    main()

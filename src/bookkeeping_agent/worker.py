"""Memory cleanup worker, run outside the request-serving process."""

import asyncio

import structlog

from bookkeeping_agent.config import get_settings
from bookkeeping_agent.memory import (
    AsyncSQLiteConnection,
    CleanupConfig,
    CleanupResult,
    MemoryLifecycleManager,
    run_migrations,
)

logger = structlog.get_logger(__name__)


async def run_cleanup_worker(
    manager: MemoryLifecycleManager,
    config: CleanupConfig,
    interval_seconds: float,
    once: bool = False,
) -> CleanupResult:
    """Run cleanup sweeps on a fixed interval until cancelled.

    Args:
        manager: Lifecycle manager to sweep with.
        config: Retention thresholds.
        interval_seconds: Delay between sweeps.
        once: Run a single sweep and return.

    Returns:
        Result of the last sweep.
    """
    while True:
        result = await manager.run_cleanup(config)
        if result.errors:
            logger.warning("cleanup_finished_with_errors", errors=result.errors)
        if once:
            return result
        logger.debug("cleanup_sleeping", seconds=interval_seconds)
        await asyncio.sleep(interval_seconds)


async def main() -> None:
    """Main entry point for the cleanup worker.

    Usage:
        python -m bookkeeping_agent.worker              # sweep every interval
        python -m bookkeeping_agent.worker --once       # single sweep
        python -m bookkeeping_agent.worker --stats      # print counts and exit
    """
    import argparse
    import json

    from bookkeeping_agent.config import configure_logging

    settings = get_settings()

    parser = argparse.ArgumentParser(description="Bookkeeping agent memory cleanup worker")
    parser.add_argument("--once", action="store_true", help="Run one sweep and exit")
    parser.add_argument("--stats", action="store_true", help="Print memory statistics and exit")
    parser.add_argument(
        "--interval",
        type=float,
        default=settings.cleanup_interval_seconds,
        help="Seconds between sweeps (default: %(default)s)",
    )
    parser.add_argument("--db", default=settings.database_path, help="SQLite database path")
    args = parser.parse_args()

    configure_logging(service="cleanup-worker")

    connection = AsyncSQLiteConnection(args.db)
    await run_migrations(connection)
    manager = MemoryLifecycleManager(connection)
    config = CleanupConfig.from_settings(settings)

    if args.stats:
        print(json.dumps(await manager.get_stats(config), indent=2))
        return

    await run_cleanup_worker(
        manager,
        config,
        interval_seconds=args.interval,
        once=args.once,
    )


def cli() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    cli()

"""
Sync worker entry point.

    portal-sync              # one pass over every eligible tenant, then exit
    portal-sync --scheduled  # run on SYNC_CRON until SIGINT/SIGTERM

Exit status is 1 when a pass aborts on a process-fatal error.
"""

import argparse
import asyncio
import logging
import signal
import sys
from typing import Optional, Sequence

from portal_sync.config import settings
from portal_sync.database import engine
from portal_sync.exceptions import SyncConfigurationError
from portal_sync.scheduler import start_scheduler, stop_scheduler
from portal_sync.services.sync_orchestrator import SyncOrchestrator

logger = logging.getLogger(__name__)


def configure_logging(level: Optional[str] = None):
    logging.basicConfig(
        level=(level or settings.LOG_LEVEL).upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


async def run_once(orchestrator: Optional[SyncOrchestrator] = None) -> int:
    """Run a single pass. Returns the process exit status."""
    orchestrator = orchestrator or SyncOrchestrator()
    logger.info("Portal Sync Worker")
    logger.info("=" * 50)
    try:
        summary = await orchestrator.run_sync()
    except SyncConfigurationError as e:
        logger.error(f"Fatal error during sync: {e}")
        return 1
    finally:
        await engine.dispose()

    logger.info(f"Sync completed: {summary.to_dict()}")
    return 0


async def run_scheduled(stop_event: Optional[asyncio.Event] = None) -> int:
    """Run the recurring schedule until a stop signal arrives."""
    stop_event = stop_event or asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)

    logger.info(f"Starting sync worker in scheduled mode ({settings.SYNC_CRON})")
    logger.info("Press Ctrl+C to stop")
    start_scheduler()
    try:
        await stop_event.wait()
    finally:
        logger.info("Stop requested, shutting down scheduler")
        await stop_scheduler(wait=False)
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(sig)
        await engine.dispose()
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="portal-sync",
        description="Sync ClientTether data for every active tenant.",
    )
    parser.add_argument(
        "--scheduled",
        action="store_true",
        help="Keep running and sync on SYNC_CRON instead of a single pass",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Override LOG_LEVEL for this process",
    )
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)

    if args.scheduled:
        return asyncio.run(run_scheduled())
    return asyncio.run(run_once())


if __name__ == "__main__":
    sys.exit(main())

"""Command-line entry point for the cloud sync worker.

Usage:
    python -m filetag_sync.cli.sync            # run until interrupted
    python -m filetag_sync.cli.sync --once     # one cycle, exit 1 if it failed
    python -m filetag_sync.cli.sync --status   # print pending counts as JSON
"""

import argparse
import asyncio
import json
import logging
import sys

from filetag_sync.config import get_settings
from filetag_sync.core.logging import configure_logging
from filetag_sync.db.database import SessionLocal, init_db
from filetag_sync.services.sync_status import pending_counts
from filetag_sync.workers.cloud_sync_worker import CloudSyncWorker

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Mirror pending local file-tagging rows to the cloud analysis service",
        prog="python -m filetag_sync.cli.sync",
    )
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--once", action="store_true", help="Run a single cycle and exit")
    mode.add_argument(
        "--status",
        action="store_true",
        help="Print pending-row counts and exit",
    )
    parser.add_argument(
        "--console",
        action="store_true",
        help="Human-readable log output instead of JSON",
    )
    parser.add_argument("--verbose", "-v", action="store_true")
    return parser


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def show_status() -> dict[str, int]:
    db = SessionLocal()
    try:
        return pending_counts(db)
    finally:
        db.close()


async def run_once(worker: CloudSyncWorker) -> bool:
    """Run one gated cycle. False if it was skipped or did not complete."""
    report = await worker.try_sync()
    if report is None:
        logger.warning(f"Sync skipped: {worker.status()['last_skip_reason']}")
        return False
    return report.completed


async def run_forever(worker: CloudSyncWorker) -> None:
    await worker.start()
    try:
        await asyncio.Event().wait()
    finally:
        await worker.stop()


# ---------------------------------------------------------------------------
# CLI entry point
# ---------------------------------------------------------------------------


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    settings = get_settings()
    configure_logging(
        "DEBUG" if args.verbose else settings.log_level,
        "console" if args.console else settings.log_format,
    )
    init_db()

    if args.status:
        print(json.dumps(show_status(), indent=2))
        return

    worker = CloudSyncWorker(settings)
    if args.once:
        if not asyncio.run(run_once(worker)):
            sys.exit(1)
        return

    try:
        asyncio.run(run_forever(worker))
    except KeyboardInterrupt:
        logger.info("Interrupted, exiting")


if __name__ == "__main__":
    main()

"""
Entry point: publish due scheduled posts.

Usage::

    # One dispatch pass (for cron or another external scheduler):
    python run.py --once

    # Built-in periodic loop (interval from settings unless given):
    python run.py --interval 60

    # Store today's channel statistics for a user's YouTube accounts:
    python run.py --refresh-stats USER_ID
"""

import argparse
import asyncio
import json
import logging
import sys
from datetime import timedelta

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger("run")


async def main() -> int:
    parser = argparse.ArgumentParser(description="Social publishing engine")
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument(
        "--once",
        action="store_true",
        help="Run a single dispatch pass and exit",
    )
    mode.add_argument(
        "--interval",
        type=int,
        metavar="SECONDS",
        help="Run the dispatch loop every SECONDS (default: from settings)",
    )
    mode.add_argument(
        "--refresh-stats",
        metavar="USER_ID",
        help="Snapshot channel statistics for USER_ID and exit",
    )
    args = parser.parse_args()

    import httpx

    from social_engine.analytics import AccountStatsService
    from social_engine.config import get_settings, validate_env
    from social_engine.credentials import CredentialManager, OAuthClient
    from social_engine.database import get_db
    from social_engine.logging import LogLevel, init_logger
    from social_engine.publishing import DispatchLoop, PublishingOrchestrator

    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)-8s %(name)s | %(message)s",
        datefmt="%H:%M:%S",
    )
    validate_env(strict=True)

    # --- Wiring -------------------------------------------------------
    db = await get_db()
    event_logger = init_logger(log_dir=settings.log_dir, db=db, min_level=LogLevel.WARNING)
    logger.info("Database connected")

    async with httpx.AsyncClient(timeout=settings.http_timeout_seconds) as http:
        credentials = CredentialManager(
            db,
            OAuthClient(http),
            refresh_margin=timedelta(minutes=settings.credentials.refresh_margin_minutes),
        )

        try:
            if args.refresh_stats:
                stats = AccountStatsService(db, credentials, http, event_logger=event_logger)
                report = await stats.refresh_all(args.refresh_stats)
                print(f"Snapshots stored: {report.refreshed}, failed: {report.failed}")
                return 1 if report.failed else 0

            orchestrator = PublishingOrchestrator(
                db, credentials, http, locale=settings.locale
            )
            loop = DispatchLoop.from_settings(
                db, orchestrator, settings, event_logger=event_logger
            )

            if args.once:
                summary = await loop.run_once()
                print(json.dumps(summary.to_dict(), indent=2))
                return 1 if summary.errored else 0

            if args.interval:
                loop.check_interval_seconds = args.interval
            # Ctrl-C cancels the task; start() exits on CancelledError
            await loop.start()
            return 0
        finally:
            await event_logger.flush()


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))

"""
Main entrypoint.

Usage:
    python -m racesync                  # serve the API + scheduler (uvicorn)
    python -m racesync sync [all|events|news]   # one manual, logged sync run
"""
import argparse
import asyncio
import logging
import sys

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(name)s %(levelname)s %(message)s",
)
logger = logging.getLogger(__name__)


def _serve() -> None:
    import uvicorn

    from racesync.config import get_settings

    settings = get_settings()
    # The scheduler lives in the API process so control routes reach its jobs
    uvicorn.run(
        "racesync.api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        log_level="info",
    )


async def _sync_once(sync_type: str) -> bool:
    from racesync.db.engine import get_engine
    from racesync.scheduler.jobs import build_scheduler

    scheduler = build_scheduler(get_engine())
    try:
        outcome = await scheduler.manager.execute_sync_with_logging(sync_type, "manual")
    finally:
        await scheduler.manager.client.aclose()

    logger.info("Sync log %s: success=%s", outcome.log_id, outcome.success)
    if outcome.result is not None:
        logger.info(
            "Events: %d USABMX, %d UCI | News: %d USABMX, %d UCI | Errors: %d",
            outcome.result.events.usabmx,
            outcome.result.events.uci,
            outcome.result.news.usabmx,
            outcome.result.news.uci,
            len(outcome.result.errors),
        )
        for error in outcome.result.errors:
            logger.warning("  %s", error)
    return outcome.success


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(prog="racesync")
    subparsers = parser.add_subparsers(dest="command")
    sync_parser = subparsers.add_parser("sync", help="Run one manual sync and exit")
    sync_parser.add_argument(
        "sync_type", nargs="?", default="all", choices=["all", "events", "news"]
    )
    args = parser.parse_args(argv)

    if args.command == "sync":
        return 0 if asyncio.run(_sync_once(args.sync_type)) else 1

    _serve()
    return 0


if __name__ == "__main__":
    sys.exit(main())

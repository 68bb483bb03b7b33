"""Service Entry Point.

This module provides the entry point for the pipeline service.
It's a thin wrapper that loads configuration and runs the orchestrator:
either as a long-running scheduled service, or once for a single feed.
"""

import argparse
import asyncio
import json
import logging
import os
import signal
import sys

from src.core.config import Config, is_valid_feed_kind, validate_config
from src.orchestrator import Orchestrator
from src.shell.config_loader import load_config, load_config_from_env


# Configure logging
log_level = os.environ.get("LOG_LEVEL", "INFO").upper()
logging.basicConfig(
    level=getattr(logging, log_level, logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def get_config() -> Config:
    """Load configuration from file or environment."""
    config_path = os.environ.get("CONFIG_PATH")

    if config_path:
        return load_config(config_path)
    elif os.path.exists("config/config.yaml"):
        return load_config()
    else:
        return load_config_from_env()


def check_config(config: Config) -> bool:
    """Log validation findings; return False if any is an error."""
    result = validate_config(config)

    for warning in result.warnings:
        logger.warning("Config %s: %s", warning.field, warning.message)

    for error in result.critical_errors:
        logger.error("Config %s: %s", error.field, error.message)

    return result.valid


async def run_once(config: Config, feed_kind: str) -> int:
    """Run a single fetch cycle and print its outcome.

    Returns:
        Process exit code
    """
    orchestrator = Orchestrator(config)
    await orchestrator.start(schedule=False)

    try:
        result = await orchestrator.trigger_manual_fetch(feed_kind)
        # Let the worker pick up alerts queued by this cycle
        await asyncio.sleep(config.alert_queue.poll_timeout_seconds)
    finally:
        await orchestrator.stop()

    response = {
        "status": "success" if result.success else "partial_failure",
        "summary": result.summary,
        "events_fetched": result.events_fetched,
        "alerts_queued": result.alerts_queued,
    }
    if result.errors:
        response["errors"] = result.errors

    print(json.dumps(response, indent=2))
    return 0 if result.success else 1


async def serve(config: Config) -> None:
    """Run the scheduled pipeline until SIGINT or SIGTERM."""
    orchestrator = Orchestrator(config)
    stopping = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stopping.set)

    await orchestrator.start()
    logger.info("Pipeline running with %d schedules", len(config.schedules))

    try:
        await stopping.wait()
    finally:
        logger.info("Shutting down")
        await orchestrator.stop()


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Seismic feed pipeline")
    parser.add_argument(
        "--once",
        metavar="FEED_KIND",
        help="Run one fetch cycle for a feed (e.g. all_hour) and exit",
    )
    args = parser.parse_args(argv)

    config = get_config()
    if not check_config(config):
        logger.error("Invalid configuration, exiting")
        return 2

    if args.once:
        if not is_valid_feed_kind(args.once):
            logger.error("Unknown feed kind: %s", args.once)
            return 2
        return asyncio.run(run_once(config, args.once))

    asyncio.run(serve(config))
    return 0


if __name__ == "__main__":
    sys.exit(main())

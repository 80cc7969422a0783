"""
Sync Harvest time entries to Jira worklogs.

Usage:
    # Dry-run (default) - shows what would happen for the most recent week
    python sync_harvest_to_jira.py

    # Execute - actually creates worklogs for the week containing 2024-01-10
    python sync_harvest_to_jira.py 2024-01-10 --execute

    # Log time on the epic above each ticket instead of the ticket itself
    python sync_harvest_to_jira.py 2024-01-10 --log-to-epic --execute
"""

import argparse
import asyncio
import logging
from datetime import date, timedelta

from clients import ApiError, HarvestClient
from models import SyncState
from patterns import Patterns
from pipeline import run_pipeline
from utils import (
    CONFIG_FILE,
    ConfigError,
    get_week_window,
    load_config_safe,
    most_recent_monday,
    setup_logging,
)

logger = logging.getLogger(__name__)


async def sync(week: date, config_path: str, execute: bool, log_to_epic: bool = False) -> SyncState:
    """Main sync function."""
    mode = "EXECUTE" if execute else "DRY-RUN"
    date_from, date_to = get_week_window(week)

    config = load_config_safe(config_path)
    logger.info(f"Loaded config with {len(config.projects)} project(s) from {config_path}")
    logger.info(
        f"SYNC HARVEST -> JIRA | {date_from} to {date_to - timedelta(days=1)} | Mode: {mode}"
        + (" | rolling up to epics" if log_to_epic else "")
    )

    state = SyncState(dry_run=not execute, log_to_epic=log_to_epic)
    harvest = HarvestClient(config)
    # Harvest's `to` is inclusive
    await run_pipeline(harvest, config, state, date_from, date_to - timedelta(days=1))

    verb = "Would log" if state.dry_run else "Logged"
    logger.info(
        f"{verb} {state.logged} entries, skipped {state.skipped}, failed {state.failed}"
    )
    if state.dry_run:
        logger.info("Run with --execute to apply changes.")
    return state


# ============================================================================
# CLI
# ============================================================================


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Sync Harvest time entries to Jira worklogs",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Dry-run (default) - shows what would happen
    python sync_harvest_to_jira.py 2024-01-10

    # Execute - actually creates worklogs
    python sync_harvest_to_jira.py 2024-01-10 --execute
        """,
    )

    parser.add_argument(
        "week",
        nargs="?",
        default=None,
        help="Any day of the week to sync (YYYY-MM-DD), default: most recent Monday",
    )
    parser.add_argument(
        "--execute", action="store_true", help="Actually create worklogs (default: dry-run)"
    )
    parser.add_argument("--config", default=CONFIG_FILE, help=f"Path to config file (default: {CONFIG_FILE})")
    parser.add_argument(
        "--log-to-epic", action="store_true", help="Log time on the epic above each ticket"
    )
    parser.add_argument("--log-level", default=None, help="Log level (default: $LOG_LEVEL or DEBUG)")

    args = parser.parse_args(argv)
    setup_logging(args.log_level)

    # Validate week format
    if args.week is None:
        week = most_recent_monday()
    elif not Patterns.DATE_FORMAT.match(args.week):
        print(f"Error: Invalid date format '{args.week}'. Expected YYYY-MM-DD")
        return 1
    else:
        try:
            week = date.fromisoformat(args.week)
        except ValueError as e:
            print(f"Error: Invalid date '{args.week}': {e}")
            return 1
    if week > date.today():
        print(f"Error: {week} is in the future")
        return 1

    try:
        asyncio.run(sync(week, args.config, args.execute, args.log_to_epic))
    except (ConfigError, ApiError) as e:
        print(f"[!] ERROR: {e}")
        return 1
    return 0


if __name__ == "__main__":
    exit(main())

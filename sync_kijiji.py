"""CLI entrypoint for the Kijiji listing sync job."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from kijijimap.config import load_config, open_database
from kijijimap.errors import StoreUnavailable
from kijijimap.export import export_listings_to_xlsx
from kijijimap.notifications import build_notifier_from_env, format_notifications
from kijijimap.runner import SyncRunner
from kijijimap.scraper import KijijiAdSource

logger = logging.getLogger(__name__)


def configure_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Kijiji listing sync job")
    parser.add_argument("--init", action="store_true", help="create collections and indexes, then exit")
    parser.add_argument(
        "--run",
        action="store_true",
        help="execute one sync cycle",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="scrape and normalize without staging or merging anything",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="print the run result as JSON on stdout",
    )
    parser.add_argument(
        "--export",
        type=Path,
        metavar="PATH",
        help="write the stored listings to an xlsx file",
    )
    parser.add_argument("--verbose", action="store_true", help="enable debug logging")
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.verbose)

    config = load_config()
    database = open_database(config)
    runner = SyncRunner(
        database=database,
        source=KijijiAdSource(timeout=config.http_timeout),
        criteria=config.criteria,
        shape=config.shape,
        target_collection=config.resolved_target_collection,
        staging_collection=config.staging_collection,
        fetch_workers=config.fetch_workers,
    )
    notifier = build_notifier_from_env()

    if args.init:
        runner.init()
        return 0

    if not args.run and not args.export:
        parser.print_help()
        return 1

    exit_code = 0
    if args.run:
        result = runner.run(dry_run=args.dry_run)
        if args.json:
            print(json.dumps(result.to_dict()))
        if notifier:
            messages = format_notifications(result)
            if messages:
                logger.info("Delivering %d notification(s)", len(messages))
                for message in messages:
                    notifier.send(message)
            else:
                logger.debug("No notifications to deliver.")
        if not result.success:
            exit_code = 1

    if args.export:
        try:
            export_listings_to_xlsx(database, runner.target_collection, args.export)
        except StoreUnavailable:
            logger.exception("Failed to export listings to %s", args.export)
            exit_code = 1
    return exit_code


if __name__ == "__main__":
    sys.exit(main())

#!/usr/bin/env python
"""Command line entry point for canvasnote-core."""
import argparse
import json
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional

from canvasnote import __version__
from canvasnote.config import config
from canvasnote.exceptions import CanvasNoteError
from canvasnote.models.db_models import init_db
from canvasnote.observability import configure_logging, metrics
from canvasnote.services.search_service import SearchService
from canvasnote.storage.asset_store import AssetStore, ensure_layout
from canvasnote.storage.search_index import SearchIndex

logger = logging.getLogger(__name__)


def parse_args(argv: Optional[List[str]] = None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description="canvasnote search index and asset store")
    parser.add_argument("--version", action="version", version=__version__)
    parser.add_argument(
        "--data-dir",
        help="Application data directory",
        type=str,
        default=os.environ.get("CANVASNOTE_DATA_DIR")
    )
    parser.add_argument(
        "--database-path",
        help="SQLite database file for the search index",
        type=str,
        default=os.environ.get("CANVASNOTE_DATABASE_PATH")
    )
    parser.add_argument(
        "--log-level",
        help="Logging level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=os.environ.get("CANVASNOTE_LOG_LEVEL", "WARNING")
    )
    parser.add_argument(
        "--log-dir",
        help="Write rotating log files to this directory",
        type=str,
        default=None
    )

    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init", help="Create the data directory layout and index database")
    sub.add_parser("stats", help="Show index statistics")

    search = sub.add_parser("search", help="Search the index")
    search.add_argument("query")
    search.add_argument("--type", dest="types", action="append", default=[],
                        help="Restrict to an entity type (repeatable)")
    search.add_argument("--from", dest="date_from", type=int, default=None,
                        help="Inclusive lower bound on last update (ms epoch)")
    search.add_argument("--to", dest="date_to", type=int, default=None,
                        help="Inclusive upper bound on last update (ms epoch)")
    search.add_argument("--limit", type=int, default=None)

    suggest = sub.add_parser("suggest", help="Autocomplete a partial query")
    suggest.add_argument("prefix")
    suggest.add_argument("--limit", type=int, default=5)

    ingest = sub.add_parser("ingest", help="Copy a file into the asset store")
    ingest.add_argument("source_path")
    ingest.add_argument("--file-type", default="other",
                        help="pdf, image, video, document or other")

    resolve = sub.add_parser("resolve", help="Print the absolute path of an asset")
    resolve.add_argument("locator")

    delete = sub.add_parser("delete-asset", help="Delete an asset")
    delete.add_argument("locator")

    return parser.parse_args(argv)


def update_config(args):
    """Update the global config with command line arguments."""
    if args.data_dir:
        config.data_dir = Path(args.data_dir)
    if args.database_path:
        config.database_path = Path(args.database_path)


def _print_json(payload) -> None:
    print(json.dumps(payload, indent=2, default=str))


def run(args) -> int:
    """Execute one subcommand. Returns the process exit code."""
    data_dir = config.data_dir
    store = AssetStore(data_dir)

    if args.command == "init":
        ensure_layout(data_dir)
        init_db().dispose()
        _print_json({"data_dir": str(data_dir), "database": config.get_db_url()})
        return 0
    if args.command == "ingest":
        locator = store.ingest_from_path(args.source_path, args.file_type)
        _print_json({"locator": str(locator), "path": str(store.resolve_path(locator))})
        return 0
    if args.command == "resolve":
        path = store.resolve_path(args.locator)
        _print_json({"locator": args.locator, "path": str(path), "exists": path.is_file()})
        return 0
    if args.command == "delete-asset":
        _print_json({"locator": args.locator, "deleted": store.delete(args.locator)})
        return 0

    engine = init_db()
    try:
        index = SearchIndex(engine)
        service = SearchService(index)
        if args.command == "stats":
            _print_json({
                "index": index.stats(),
                "metrics": metrics.get_summary(),
                "operations": metrics.get_metrics(),
            })
        elif args.command == "suggest":
            _print_json(service.suggest(args.prefix, limit=args.limit))
        elif args.command == "search":
            results = service.search(
                args.query,
                types=args.types,
                date_from=args.date_from,
                date_to=args.date_to,
                limit=args.limit,
            )
            _print_json([r.model_dump(mode="json") for r in results])
    finally:
        engine.dispose()
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Run the canvasnote command line interface."""
    args = parse_args(argv)
    update_config(args)

    log_level = getattr(logging, args.log_level.upper(), logging.WARNING)
    if args.log_dir:
        try:
            configure_logging(log_dir=args.log_dir, level=log_level, console=True)
        except OSError as e:
            logging.basicConfig(level=log_level)
            logger.warning(f"Failed to configure file logging: {e}")
    else:
        logging.basicConfig(level=log_level)

    try:
        return run(args)
    except CanvasNoteError as e:
        logger.error(f"{args.command} failed: {e}")
        print(json.dumps(e.to_dict(), default=str), file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())

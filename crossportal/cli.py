"""
Command line entry point.

Usage:
    # Scrape a listing and print it as JSON
    crossportal extract https://www.idealista.it/immobile/12345678/

    # Scrape several listings (3 browsers at a time) and look each up on other portals
    crossportal extract URL1 URL2 URL3 --workers 3 --search

    # Look up a listing already known by address/price/size
    crossportal search --address "Via Roma 12" --price 350000 --size 85

    # Cluster duplicate listings of the CRM database
    crossportal dedup --limit 500

    # Visible browser for debugging
    crossportal extract URL --no-headless -v
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError

from .clustering import deduplicate_properties
from .config import Settings
from .cross_portal import CrossPortalSearch
from .errors import CrossPortalError
from .extractor import PortalExtractor
from .models import SourceListing
from .normalize import detect_portal
from .store import PropertyStore


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
        stream=sys.stderr,
    )


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, ensure_ascii=False, default=str))


def cmd_extract(args: argparse.Namespace, settings: Settings) -> int:
    extractor = PortalExtractor(settings)
    outcomes = extractor.extract_many(args.urls, max_workers=args.workers)
    search = CrossPortalSearch(PropertyStore.from_url(settings.database_url)) if args.search else None

    output = []
    failed = 0
    for outcome in outcomes:
        entry: dict[str, Any] = {"url": outcome.url}
        if outcome.ok:
            entry["property"] = outcome.listing.to_dict()
            if search:
                result = search.search(SourceListing.from_extracted(outcome.listing))
                entry["cross_portal"] = result.to_dict()
        else:
            failed += 1
            entry["error"] = outcome.error
        output.append(entry)

    _print_json(output if len(output) > 1 else output[0])
    return 1 if failed == len(outcomes) else 0


def cmd_search(args: argparse.Namespace, settings: Settings) -> int:
    source = SourceListing(
        address=args.address,
        price=args.price,
        size=args.size,
        portal_source=detect_portal(args.url),
        url=args.url,
    )
    result = CrossPortalSearch(PropertyStore.from_url(settings.database_url)).search(source)
    _print_json(result.to_dict())
    return 0


def cmd_dedup(args: argparse.Namespace, settings: Settings) -> int:
    store = PropertyStore.from_url(settings.database_url)
    result = deduplicate_properties(store.load_properties(limit=args.limit))
    _print_json(result.to_dict())
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="crossportal",
        description="Extract Italian real-estate listings and find their duplicates across portals",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--db", help="Database URL (default: DATABASE_URL)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")

    sub = parser.add_subparsers(dest="command", required=True)

    p_extract = sub.add_parser("extract", help="Scrape listing URLs")
    p_extract.add_argument("urls", nargs="+", help="Listing URLs")
    p_extract.add_argument("--workers", "-w", type=int, help="Browsers open at once")
    p_extract.add_argument("--search", "-s", action="store_true", help="Also search other portals")
    p_extract.add_argument("--no-headless", action="store_true", help="Show browser")
    p_extract.set_defaults(func=cmd_extract)

    p_search = sub.add_parser("search", help="Find a listing on other portals")
    p_search.add_argument("--address", "-a", required=True)
    p_search.add_argument("--price", "-p", type=int)
    p_search.add_argument("--size", type=int, help="Surface in m²")
    p_search.add_argument("--url", "-u", help="Listing URL, excluded from the results")
    p_search.set_defaults(func=cmd_search)

    p_dedup = sub.add_parser("dedup", help="Cluster duplicate listings")
    p_dedup.add_argument("--limit", "-l", type=int, help="Maximum listings to load")
    p_dedup.set_defaults(func=cmd_dedup)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging(args.verbose)

    try:
        settings = Settings.from_env()
    except CrossPortalError as e:
        logging.error(f"Configuration error: {e}")
        return 2

    if args.db:
        settings.database_url = args.db
    if getattr(args, "no_headless", False):
        settings.headless = False
    if getattr(args, "workers", None) is not None and args.workers < 1:
        parser.error("--workers must be at least 1")

    try:
        return args.func(args, settings)
    except SQLAlchemyError as e:
        logging.error(f"Database error: {e}")
        return 1
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        return 130


if __name__ == '__main__':
    sys.exit(main())

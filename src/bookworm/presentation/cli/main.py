"""
CLI entry point

Runs the maintenance jobs and the crawl outside the API process. Every
command prints JSON to stdout.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from typing import Any, Optional

from dotenv import find_dotenv, load_dotenv

from bookworm.application.workflows.recommendation_discovery import (
    DiscoveryConfig,
    RecommendationDiscovery,
)
from bookworm.domain.errors import BookwormError
from bookworm.infrastructure.queue import jobs

# Load local .env automatically so the Hardcover key and Calibre path are available.
load_dotenv(find_dotenv(usecwd=True), override=False)


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="bookworm",
        description="Bookworm - Calibre mirror and Hardcover list recommendations",
    )
    parser.add_argument("--version", action="store_true", help="Print the version and exit")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("sync", help="Refresh the Calibre mirror")

    crawl_parser = subparsers.add_parser("crawl", help="Crawl Hardcover lists for mirrored books")
    crawl_parser.add_argument("--take", type=int, default=None, help="Only the newest N books")
    crawl_parser.add_argument("--lists", type=int, default=None, help="Lists per book")
    crawl_parser.add_argument("--per-list", type=int, default=None, help="Books per list")
    crawl_parser.add_argument("--min-rating", type=float, default=None, help="Minimum rating (0-5)")
    crawl_parser.add_argument("--delay-ms", type=int, default=None, help="Delay between books")
    crawl_parser.add_argument(
        "--steps", action="store_true", help="Include the per-book trace in the output"
    )

    rank_parser = subparsers.add_parser("rank", help="Rank stored suggestions")
    rank_parser.add_argument(
        "--cleanup", action="store_true", help="Delete suggestions already in Calibre"
    )
    rank_parser.add_argument("--limit", type=int, default=20, help="Rows to print (0 = all)")

    subparsers.add_parser("want-sync", help="Refresh the want-to-read cache")
    subparsers.add_parser("resolve-bookshelf", help="Map Calibre books to Hardcover ids")

    return parser


def _print(payload: Any) -> None:
    print(json.dumps(payload, ensure_ascii=False, indent=2, default=str))


async def _crawl(parsed: argparse.Namespace) -> dict:
    config = DiscoveryConfig.bulk(
        take=parsed.take,
        lists=parsed.lists,
        per_list=parsed.per_list,
        min_rating=parsed.min_rating,
        delay_ms=parsed.delay_ms,
    )
    async with RecommendationDiscovery() as discovery:
        summary = await discovery.run_sync(config)
    payload = summary.to_dict()
    if not parsed.steps:
        payload.pop("steps", None)
    return payload


def _rank(parsed: argparse.Namespace) -> dict:
    ranked, removed = jobs.rank_stored_suggestions(cleanup=parsed.cleanup)
    items = ranked[: parsed.limit] if parsed.limit and parsed.limit > 0 else ranked
    return {
        "count": len(ranked),
        "removedOwned": removed,
        "items": [r.to_dict() for r in items],
    }


def run_cli(args: Optional[list] = None) -> int:
    """Run the CLI; returns the exit code."""
    parser = create_parser()
    parsed = parser.parse_args(args)

    if parsed.version:
        print("Bookworm v0.1.0")
        return 0

    if not parsed.command:
        parser.print_help()
        return 0

    try:
        if parsed.command == "sync":
            _print(asyncio.run(jobs.run_calibre_sync()))
        elif parsed.command == "crawl":
            _print(asyncio.run(_crawl(parsed)))
        elif parsed.command == "rank":
            _print(_rank(parsed))
        elif parsed.command == "want-sync":
            _print(asyncio.run(jobs.run_want_sync()))
        elif parsed.command == "resolve-bookshelf":
            _print(asyncio.run(jobs.run_bookshelf_resolve()))
        return 0

    except BookwormError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def main() -> None:
    sys.exit(run_cli())


if __name__ == "__main__":
    main()

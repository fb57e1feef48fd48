"""
CLI entry point for QuickDefine.

Usage:
    quickdefine define serendipity "ad hoc"
    quickdefine preload [--file data/dictionary.json] [--force]
    quickdefine stats
    quickdefine clear
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from quickdefine.config import Settings, get_settings
from quickdefine.coordinator import ResolutionCoordinator, create_coordinator
from quickdefine.exceptions import QuickDefineException


def configure_logging(settings: Settings, verbose: bool = False) -> None:
    """Apply the configured log level and format to the root logger."""
    level = logging.DEBUG if verbose else getattr(logging, settings.logging.level.upper(), logging.INFO)
    logging.basicConfig(level=level, format=settings.logging.format)


async def cmd_define(coordinator: ResolutionCoordinator, args: argparse.Namespace) -> int:
    """Resolve one or more words and print the results."""
    results = await asyncio.gather(*(coordinator.resolve(w) for w in args.words))
    failed = 0
    for result in results:
        print(json.dumps(result.model_dump(mode="json"), indent=2))
        if not result.ok:
            failed += 1
    return 1 if failed else 0


async def cmd_preload(coordinator: ResolutionCoordinator, args: argparse.Namespace) -> int:
    """Load the bundled dictionary file into the persistent store."""

    def on_progress(done: int, total: int) -> None:
        print(f"  preloaded {done}/{total}", file=sys.stderr)

    report = await coordinator.preload_from_file(
        path=Path(args.file) if args.file else None,
        on_progress=on_progress,
        force=args.force,
    )
    print(json.dumps(report.model_dump(), indent=2))
    return 0


async def cmd_stats(coordinator: ResolutionCoordinator, args: argparse.Namespace) -> int:
    """Print cache and store statistics."""
    stats = await coordinator.stats()
    print(json.dumps(stats.model_dump(), indent=2))
    return 0


async def cmd_clear(coordinator: ResolutionCoordinator, args: argparse.Namespace) -> int:
    """Empty the cache and the persistent store."""
    await coordinator.clear_all()
    print("Cleared cache and store")
    return 0


async def _run(args: argparse.Namespace, settings: Settings) -> int:
    async with create_coordinator(settings) as coordinator:
        return await args.func(coordinator, args)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="quickdefine",
        description="Three-tier dictionary lookup",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    p_define = sub.add_parser("define", help="Look up words")
    p_define.add_argument("words", nargs="+")
    p_define.set_defaults(func=cmd_define)

    p_preload = sub.add_parser("preload", help="Preload the bundled dictionary")
    p_preload.add_argument("--file", default=None, help="Dictionary JSON file")
    p_preload.add_argument("--force", action="store_true", help="Load even if already preloaded")
    p_preload.set_defaults(func=cmd_preload)

    p_stats = sub.add_parser("stats", help="Show cache and store statistics")
    p_stats.set_defaults(func=cmd_stats)

    p_clear = sub.add_parser("clear", help="Clear cache and store")
    p_clear.set_defaults(func=cmd_clear)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()
    configure_logging(settings, verbose=args.verbose)
    try:
        return asyncio.run(_run(args, settings))
    except QuickDefineException as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())

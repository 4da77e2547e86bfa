#!/usr/bin/env python3
"""
Playlist catalog command line.
Loads one content kind from the configured M3U playlist or Xtream catalog,
prints the grouped result, and optionally writes it to JSON.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import List, Optional

from iptvcatalog.entries import KINDS, KIND_LIVE
from iptvcatalog.groups import filter_entries, filter_groups
from iptvcatalog.ingestion import IngestionResult, build_lists, build_service
from iptvcatalog.settings import CONNECTION_M3U, ConfigError, load_settings, load_user_settings
from iptvcatalog.store import JsonFileStore
from iptvcatalog.xtream import CatalogError

logger = logging.getLogger(__name__)

SUMMARY_GROUP_LIMIT = 25


def configure_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Ingest and group an IPTV playlist or catalog")
    parser.add_argument("--settings", help="JSON settings file")
    parser.add_argument("--url", help="M3U playlist URL (overrides settings)")
    parser.add_argument("--store", help="JSON store file (overrides settings)")
    parser.add_argument("--kind", choices=KINDS, default=KIND_LIVE, help="Content kind to load")
    parser.add_argument("--category", help="Only load this group / category")
    parser.add_argument("--search", help="Filter groups and entries by name")
    parser.add_argument("--no-cache", action="store_true", help="Ignore and skip the content cache")
    parser.add_argument("--refresh", action="store_true", help="Fetch fresh data and update the cache")
    parser.add_argument("--clear-cache", action="store_true", help="Drop cached results before loading")
    parser.add_argument("--json", dest="json_out", help="Write the grouped result to this file")
    parser.add_argument("--play", metavar="ENTRY", help="Record an entry (id or name) as recently played")
    parser.add_argument("--favorite", metavar="ENTRY", help="Toggle an entry (id or name) as favorite")
    parser.add_argument("--explain", action="store_true", help="Show which rules matched each entry")
    parser.add_argument("--verbose", action="store_true", help="Debug logging")
    return parser


def print_summary(result: IngestionResult, search: Optional[str] = None, explain_with=None) -> None:
    groups = filter_groups(result.groups, search)
    source = "cache" if result.from_cache else "source"
    if result.stale:
        source = "offline snapshot"

    print(f"\n{'=' * 70}")
    print(f"{result.kind.upper()}: {result.total} entries in {len(result.groups)} groups (from {source})")
    if result.error:
        print(f"  ! {result.error}")
    print(f"{'=' * 70}")

    for group in groups[:SUMMARY_GROUP_LIMIT]:
        print(f"  {group.name} ({group.count})")
        if search or explain_with is not None:
            for entry in filter_entries(group.entries, search):
                line = f"    - {entry.name}"
                if explain_with is not None:
                    line += f"  [{', '.join(explain_with.explain(entry)) or 'default'}]"
                print(line)
    if len(groups) > SUMMARY_GROUP_LIMIT:
        print(f"  ... {len(groups) - SUMMARY_GROUP_LIMIT} more groups")
    print(flush=True)


def find_entry(result: IngestionResult, wanted: str):
    """Match an entry by exact id, then by case-insensitive name."""
    key = (wanted or "").strip()
    for entry in result.entries:
        if entry.id == key:
            return entry
    for entry in result.entries:
        if entry.name.casefold() == key.casefold():
            return entry
    return None


async def update_lists(lists, result: IngestionResult, args: argparse.Namespace) -> None:
    if args.play:
        entry = find_entry(result, args.play)
        if entry is None:
            print(f"No {result.kind} entry matches {args.play!r}")
        else:
            recent = await lists.record_play(result.kind, entry)
            print(f"Recently played {result.kind}: " + ", ".join(e.name for e in recent))
    if args.favorite:
        entry = find_entry(result, args.favorite)
        if entry is None:
            print(f"No {result.kind} entry matches {args.favorite!r}")
        else:
            favorites, added = await lists.toggle_favorite(result.kind, entry)
            action = "Added" if added else "Removed"
            print(f"{action} favorite {entry.name} ({len(favorites)} {result.kind} favorites)")


async def run(args: argparse.Namespace) -> int:
    try:
        settings = load_settings(args.settings, strict=bool(args.settings))
    except ConfigError as e:
        print(f"Config error, exiting: {e}", file=sys.stderr)
        return 2

    if args.store:
        settings["store_path"] = args.store
    store = JsonFileStore(settings["store_path"])

    settings = await load_user_settings(store, settings)
    if args.url:
        settings["playlist_url"] = args.url
        settings["connection_type"] = CONNECTION_M3U
    service = build_service(settings, store)

    try:
        await service.open()
    except CatalogError as e:
        logger.warning("Catalog connection failed: %s", e)

    try:
        if args.clear_cache:
            removed = await service.clear_cache()
            print(f"Cleared {removed} cached records.")
        if args.refresh:
            result = await service.refresh(args.kind, args.category, write_cache=not args.no_cache)
        else:
            result = await service.load(args.kind, args.category, use_cache=not args.no_cache)
    finally:
        await service.close()

    explain_with = getattr(service.source, "classifier", None) if args.explain else None
    print_summary(result, search=args.search, explain_with=explain_with)

    if args.play or args.favorite:
        await update_lists(build_lists(settings, store), result, args)

    if args.json_out:
        with open(args.json_out, "w", encoding="utf-8") as handle:
            json.dump(result.to_dict(), handle, indent=2, ensure_ascii=False)
        print(f"Saved {result.total} entries to {args.json_out}")

    if result.error and not result.entries:
        return 1
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.verbose)
    return asyncio.run(run(args))


if __name__ == "__main__":
    raise SystemExit(main())

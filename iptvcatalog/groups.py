#!/usr/bin/env python3
"""Group organizer: bucket classified entries by cleaned group label."""

from __future__ import annotations

import re
from collections import OrderedDict
from typing import Dict, Iterable, List, Optional

from iptvcatalog.entries import (
    DEFAULT_GROUP,
    FALLBACK_GROUP_BY_KIND,
    KIND_LIVE,
    KIND_MOVIE,
    KIND_SERIES,
    KINDS,
    Entry,
    Group,
    validate_kind,
)

EDGE_PIPES_RE = re.compile(r"^\s*\|+|\|+\s*$")
WHITESPACE_RE = re.compile(r"\s+")

CATEGORY_AFFIX_RES = {
    KIND_MOVIE: (
        re.compile(r"^(?:filmes?|movies?)\s*\|\s*", re.IGNORECASE),
        re.compile(r"\s*\|\s*(?:filmes?|movies?)$", re.IGNORECASE),
    ),
    KIND_SERIES: (
        re.compile(r"^(?:s[ée]ries?)\s*\|\s*", re.IGNORECASE),
        re.compile(r"\s*\|\s*(?:s[ée]ries?)$", re.IGNORECASE),
    ),
}

GENERIC_LABELS = {
    KIND_MOVIE: {"filme", "filmes", "movie", "movies"},
    KIND_SERIES: {"serie", "series", "série", "séries"},
}


def normalize_group_label(label: Optional[str], kind: str = KIND_LIVE) -> str:
    """Clean a raw group-title for display.

    Live labels are only trimmed. Movie and series labels also lose edge pipes
    and redundant "Movies |" style affixes; generic leftovers fall back to the
    kind's miscellaneous label.
    """
    kind = validate_kind(kind)
    cleaned = WHITESPACE_RE.sub(" ", str(label or "")).strip()
    if kind == KIND_LIVE:
        return cleaned or DEFAULT_GROUP

    cleaned = EDGE_PIPES_RE.sub("", cleaned).strip()
    for affix_re in CATEGORY_AFFIX_RES[kind]:
        cleaned = affix_re.sub("", cleaned).strip()

    if (
        not cleaned
        or cleaned.casefold() in GENERIC_LABELS[kind]
        or cleaned == DEFAULT_GROUP
    ):
        return FALLBACK_GROUP_BY_KIND[kind]
    return cleaned


def organize_groups(entries: Iterable[Entry], kind: str) -> List[Group]:
    """Bucket entries by normalized label.

    Live groups sort alphabetically; movie and series groups sort by size,
    largest first, keeping first-seen order between equal sizes.
    """
    kind = validate_kind(kind)
    buckets: "OrderedDict[str, Group]" = OrderedDict()
    for entry in entries:
        name = normalize_group_label(entry.group, kind)
        group = buckets.get(name)
        if group is None:
            group = Group(name=name, kind=kind)
            buckets[name] = group
        group.entries.append(entry)

    groups = list(buckets.values())
    if kind == KIND_LIVE:
        groups.sort(key=lambda g: (g.name.casefold(), g.name))
    else:
        groups.sort(key=lambda g: g.count, reverse=True)
    return groups


def organize_by_kind(entries: Iterable[Entry]) -> Dict[str, List[Group]]:
    """Split classified entries per kind, then organize each bucket."""
    by_kind: Dict[str, List[Entry]] = {kind: [] for kind in KINDS}
    for entry in entries:
        by_kind.setdefault(entry.kind or KIND_LIVE, []).append(entry)
    return {kind: organize_groups(rows, kind) for kind, rows in by_kind.items() if rows}


def filter_entries(entries: Iterable[Entry], query: Optional[str]) -> List[Entry]:
    needle = (query or "").strip().casefold()
    rows = list(entries)
    if not needle:
        return rows
    return [entry for entry in rows if needle in entry.name.casefold()]


def filter_groups(groups: Iterable[Group], query: Optional[str]) -> List[Group]:
    """Keep groups whose name, or any of whose entries, contains the query."""
    needle = (query or "").strip().casefold()
    rows = list(groups)
    if not needle:
        return rows
    return [
        group
        for group in rows
        if needle in group.name.casefold()
        or any(needle in entry.name.casefold() for entry in group.entries)
    ]


def find_group(groups: Iterable[Group], name: Optional[str]) -> Optional[Group]:
    key = (name or "").strip().casefold()
    for group in groups:
        if group.name.casefold() == key:
            return group
    return None

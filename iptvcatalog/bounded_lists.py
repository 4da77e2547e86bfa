#!/usr/bin/env python3
"""Recently played and favorites lists: most recent first, unique ids, capped."""

from __future__ import annotations

import logging
from copy import deepcopy
from typing import Dict, List, Sequence, Tuple, Union

from iptvcatalog.entries import Entry, entries_from_dicts, validate_kind
from iptvcatalog.store import KeyValueStore, read_json, write_json

logger = logging.getLogger(__name__)

DEFAULT_LIST_LIMIT = 10
RECENT_PREFIX = "recent:"
FAVORITES_PREFIX = "favorites:"

EntryLike = Union[Entry, Dict]


def _entry_id(item: EntryLike) -> str:
    if isinstance(item, dict):
        return str(item.get("id", ""))
    return str(item.id)


def push_bounded(items: Sequence[EntryLike], entry: EntryLike, limit: int = DEFAULT_LIST_LIMIT) -> List:
    """Drop any item with the same id, prepend entry, cut to `limit`."""
    limit = int(limit)
    if limit <= 0:
        return []
    entry_id = _entry_id(entry)
    rest = [item for item in items if _entry_id(item) != entry_id]
    return [entry] + rest[: limit - 1]


def remove_by_id(items: Sequence[EntryLike], entry_id: str) -> List:
    return [item for item in items if _entry_id(item) != str(entry_id)]


class BoundedListManager:
    """Store-backed recents and favorites per content kind.

    Stored items are copies of the entry dicts, so later ingestion passes never
    change them. Store failures are logged; the computed list is still returned.
    """

    def __init__(self, store: KeyValueStore, limit: int = DEFAULT_LIST_LIMIT):
        self.store = store
        self.limit = max(1, int(limit))

    @staticmethod
    def recent_key(kind: str) -> str:
        return RECENT_PREFIX + validate_kind(kind)

    @staticmethod
    def favorites_key(kind: str) -> str:
        return FAVORITES_PREFIX + validate_kind(kind)

    async def _load(self, key: str) -> List[Dict]:
        rows = await read_json(self.store, key, default=[])
        if not isinstance(rows, list):
            return []
        return [row for row in rows if isinstance(row, dict) and row.get("id")]

    async def _save(self, key: str, rows: List[Dict]) -> List[Dict]:
        await write_json(self.store, key, rows)
        return rows

    @staticmethod
    def _snapshot(entry: EntryLike) -> Dict:
        return entry.to_dict() if isinstance(entry, Entry) else deepcopy(dict(entry))

    async def record_play(self, kind: str, entry: EntryLike) -> List[Entry]:
        key = self.recent_key(kind)
        rows = push_bounded(await self._load(key), self._snapshot(entry), self.limit)
        return entries_from_dicts(await self._save(key, rows))

    async def add_favorite(self, kind: str, entry: EntryLike) -> List[Entry]:
        key = self.favorites_key(kind)
        rows = push_bounded(await self._load(key), self._snapshot(entry), self.limit)
        return entries_from_dicts(await self._save(key, rows))

    async def remove_favorite(self, kind: str, entry_id: str) -> List[Entry]:
        key = self.favorites_key(kind)
        rows = remove_by_id(await self._load(key), entry_id)
        return entries_from_dicts(await self._save(key, rows))

    async def toggle_favorite(self, kind: str, entry: EntryLike) -> Tuple[List[Entry], bool]:
        """Remove the entry if it is a favorite, add it otherwise."""
        entry_id = _entry_id(entry)
        if await self.is_favorite(kind, entry_id):
            return await self.remove_favorite(kind, entry_id), False
        return await self.add_favorite(kind, entry), True

    async def is_favorite(self, kind: str, entry_id: str) -> bool:
        rows = await self._load(self.favorites_key(kind))
        return any(_entry_id(row) == str(entry_id) for row in rows)

    async def recent(self, kind: str) -> List[Entry]:
        return entries_from_dicts((await self._load(self.recent_key(kind)))[: self.limit])

    async def favorites(self, kind: str) -> List[Entry]:
        return entries_from_dicts((await self._load(self.favorites_key(kind)))[: self.limit])

    async def clear(self, kind: str) -> None:
        for key in (self.recent_key(kind), self.favorites_key(kind)):
            await self._save(key, [])

#!/usr/bin/env python3
"""
Ingestion pipeline.

source (M3U download or Xtream catalog) -> classifier -> group organizer ->
content cache. Loads are cache-first, de-duplicated per cache key, and fall back
to the last good snapshot when the source is unreachable.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from iptvcatalog.bounded_lists import BoundedListManager
from iptvcatalog.classifier import ContentClassifier, classify_entries, load_classification_rules
from iptvcatalog.content_cache import ContentCache, SingleFlight, cache_key
from iptvcatalog.entries import Entry, Group, entries_from_dicts, validate_kind
from iptvcatalog.groups import normalize_group_label, organize_groups
from iptvcatalog.m3u_parser import parse_m3u
from iptvcatalog.settings import CONNECTION_XTREAM
from iptvcatalog.store import KeyValueStore, StoreError, read_json, write_json
from iptvcatalog.transport import DEFAULT_USER_AGENT, PlaylistFetcher, TransportError, create_session
from iptvcatalog.xtream import CatalogError, XtreamClient

logger = logging.getLogger(__name__)

SNAPSHOT_PREFIX = "snapshot:"
DEFAULT_SNAPSHOT_LIMIT = 2000


@dataclass
class IngestionResult:
    kind: str
    category: Optional[str]
    entries: List[Entry] = field(default_factory=list)
    groups: List[Group] = field(default_factory=list)
    from_cache: bool = False
    stale: bool = False
    error: Optional[str] = None

    @property
    def total(self) -> int:
        return len(self.entries)

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict:
        return {
            "kind": self.kind,
            "category": self.category,
            "total": self.total,
            "from_cache": self.from_cache,
            "stale": self.stale,
            "error": self.error,
            "groups": [group.to_dict() for group in self.groups],
        }


class PlaylistSource:
    """Extended-M3U playlist downloaded over HTTP."""

    def __init__(self, url: str, fetcher: PlaylistFetcher, classifier: ContentClassifier):
        self.url = url
        self.fetcher = fetcher
        self.classifier = classifier

    async def open(self) -> None:
        return None

    async def close(self) -> None:
        self.fetcher.close()

    async def fetch_entries(self, kind: str, category: Optional[str] = None) -> List[Entry]:
        if not self.url:
            raise TransportError("No playlist URL configured")
        text = await self.fetcher.fetch_async(self.url)
        parsed = parse_m3u(text)
        entries = [e for e in classify_entries(parsed, self.classifier) if e.kind == kind]
        logger.info("Parsed %d entries, %d classified as %s", len(parsed), len(entries), kind)
        if category:
            wanted = category.strip().casefold()
            entries = [
                e for e in entries
                if normalize_group_label(e.group, kind).casefold() == wanted
            ]
        return entries


class CatalogSource:
    """Xtream catalog; the client must be opened before loading."""

    def __init__(self, client: XtreamClient, classifier: ContentClassifier):
        self.client = client
        self.classifier = classifier

    async def open(self) -> None:
        await asyncio.to_thread(self.client.connect)

    async def close(self) -> None:
        self.client.close()

    def _fetch_sync(self, kind: str, category: Optional[str]) -> List[Entry]:
        categories = self.client.list_categories(kind)
        category_id = None
        if category:
            wanted = category.strip().casefold()
            match = next(
                (
                    cat for cat in categories
                    if cat["id"] == category.strip() or cat["name"].casefold() == wanted
                ),
                None,
            )
            if match is None:
                logger.info("No %s category named %s in catalog", kind, category)
                return []
            category_id = match["id"]
        rows = self.client.list_streams(kind, category_id)
        entries = self.client.to_entries(kind, rows, categories)
        return classify_entries(entries, self.classifier)

    async def fetch_entries(self, kind: str, category: Optional[str] = None) -> List[Entry]:
        return await asyncio.to_thread(self._fetch_sync, kind, category)


class IngestionService:
    def __init__(
        self,
        source,
        cache: ContentCache,
        store: KeyValueStore,
        use_cache: bool = True,
        snapshot_limit: int = DEFAULT_SNAPSHOT_LIMIT,
    ):
        self.source = source
        self.cache = cache
        self.store = store
        self.use_cache = bool(use_cache)
        self.snapshot_limit = max(0, int(snapshot_limit))
        self.single_flight = SingleFlight()

    async def open(self) -> None:
        await self.source.open()

    async def close(self) -> None:
        await self.source.close()

    @staticmethod
    def snapshot_key(kind: str, category: Optional[str] = None) -> str:
        return SNAPSHOT_PREFIX + cache_key(kind, category)

    @staticmethod
    def _result(kind: str, category: Optional[str], entries: List[Entry], **flags) -> IngestionResult:
        return IngestionResult(
            kind=kind,
            category=category,
            entries=entries,
            groups=organize_groups(entries, kind),
            **flags,
        )

    async def load(
        self,
        kind: str,
        category: Optional[str] = None,
        use_cache: Optional[bool] = None,
    ) -> IngestionResult:
        """Cached result if fresh, otherwise one shared ingestion per cache key."""
        kind = validate_kind(kind)
        use_cache = self.use_cache if use_cache is None else bool(use_cache)

        if use_cache:
            payload = await self.cache.get(kind, category)
            if isinstance(payload, dict):
                entries = entries_from_dicts(payload.get("entries"))
                logger.info("Serving %d cached %s entries", len(entries), kind)
                return self._result(kind, category, entries, from_cache=True)

        return await self.single_flight.run(
            cache_key(kind, category),
            lambda: self._ingest(kind, category, write_cache=use_cache),
        )

    async def refresh(
        self,
        kind: str,
        category: Optional[str] = None,
        write_cache: Optional[bool] = None,
    ) -> IngestionResult:
        """Skip the cache read, ingest, and store the fresh result unless told not to."""
        kind = validate_kind(kind)
        write_cache = self.use_cache if write_cache is None else bool(write_cache)
        return await self.single_flight.run(
            cache_key(kind, category),
            lambda: self._ingest(kind, category, write_cache=write_cache),
        )

    async def _ingest(self, kind: str, category: Optional[str], write_cache: bool) -> IngestionResult:
        logger.info("Fetching fresh %s entries (%s)", kind, category or "all")
        try:
            entries = await self.source.fetch_entries(kind, category)
        except (TransportError, CatalogError) as e:
            logger.warning("Ingestion failed for %s: %s", cache_key(kind, category), e)
            return await self._fallback(kind, category, str(e))

        result = self._result(kind, category, entries)
        if write_cache:
            await self.cache.set(kind, category, {"entries": [e.to_dict() for e in entries]})
        await self._write_snapshot(kind, category, entries)
        return result

    async def _write_snapshot(self, kind: str, category: Optional[str], entries: List[Entry]) -> None:
        if not self.snapshot_limit:
            return
        rows = [entry.to_dict() for entry in entries[: self.snapshot_limit]]
        await write_json(self.store, self.snapshot_key(kind, category), rows)

    async def _fallback(self, kind: str, category: Optional[str], error: str) -> IngestionResult:
        rows = await read_json(self.store, self.snapshot_key(kind, category), default=None)
        entries = entries_from_dicts(rows)
        if entries:
            logger.info("Using offline snapshot with %d %s entries", len(entries), kind)
            return self._result(kind, category, entries, from_cache=True, stale=True, error=error)
        return self._result(kind, category, [], error=error)

    async def clear_cache(self) -> int:
        """Drop cache records and offline snapshots."""
        removed = await self.cache.clear()
        try:
            keys = [key for key in await self.store.keys() if key.startswith(SNAPSHOT_PREFIX)]
            for key in keys:
                await self.store.remove(key)
        except StoreError as e:
            logger.warning("Snapshot cleanup failed: %s", e)
            return removed
        return removed + len(keys)


def build_service(settings: Dict, store: KeyValueStore) -> IngestionService:
    """Wire source, classifier and cache from loaded settings."""
    fetcher = PlaylistFetcher(
        session=create_session(settings["max_retries"], settings["retry_backoff"]),
        timeout=settings["request_timeout"],
        user_agent=settings.get("user_agent") or DEFAULT_USER_AGENT,
    )
    classifier = ContentClassifier(load_classification_rules(settings.get("rules_file") or None))

    if settings["connection_type"] == CONNECTION_XTREAM:
        xtream = settings.get("xtream") or {}
        client = XtreamClient(
            xtream.get("host", ""),
            xtream.get("username", ""),
            xtream.get("password", ""),
            fetcher=fetcher,
        )
        source = CatalogSource(client, classifier)
    else:
        source = PlaylistSource(settings.get("playlist_url", ""), fetcher, classifier)

    cache = ContentCache(store, ttl=settings["cache_ttl_seconds"])
    return IngestionService(
        source,
        cache,
        store,
        use_cache=settings["use_cache"],
        snapshot_limit=settings["snapshot_limit"],
    )


def build_lists(settings: Dict, store: KeyValueStore) -> BoundedListManager:
    """Recents and favorites sized by the `list_limit` setting."""
    return BoundedListManager(store, limit=settings["list_limit"])

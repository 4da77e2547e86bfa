#!/usr/bin/env python3
"""
TTL content cache over the key-value store, plus a single-flight guard.

Records are {"key", "payload", "stored_at"}. A record older than the TTL is
deleted on read and reported as a miss. Store trouble never reaches callers.
"""

from __future__ import annotations

import asyncio
import json
import logging
import math
import time
from typing import Awaitable, Callable, Dict, Iterable, Optional

from iptvcatalog.store import KeyValueStore, StoreError

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 3600
STORE_PREFIX = "content_cache:"


def cache_key(content_type: str, content_filter: Optional[str] = None) -> str:
    return f"{content_type}:{content_filter or 'all'}"


class ContentCache:
    def __init__(
        self,
        store: KeyValueStore,
        ttl: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.ttl = float(ttl)
        self.clock = clock
        self.stats = {"hits": 0, "misses": 0, "expired": 0, "writes": 0, "store_errors": 0}

    @staticmethod
    def store_key(content_type: str, content_filter: Optional[str] = None) -> str:
        return STORE_PREFIX + cache_key(content_type, content_filter)

    async def _discard(self, store_key: str) -> None:
        try:
            await self.store.remove(store_key)
        except StoreError as e:
            self.stats["store_errors"] += 1
            logger.warning("Could not delete cache record %s: %s", store_key, e)

    async def get(self, content_type: str, content_filter: Optional[str] = None):
        """Return the cached payload, or None on a miss."""
        key = self.store_key(content_type, content_filter)
        try:
            raw = await self.store.get(key)
        except StoreError as e:
            self.stats["store_errors"] += 1
            self.stats["misses"] += 1
            logger.warning("Cache read failed for %s: %s", key, e)
            return None

        if raw is None:
            self.stats["misses"] += 1
            return None

        try:
            record = json.loads(raw)
            stored_at = float(record["stored_at"])
            payload = record["payload"]
        except (ValueError, TypeError, KeyError):
            logger.warning("Dropping corrupt cache record %s", key)
            self.stats["misses"] += 1
            await self._discard(key)
            return None

        age = self.clock() - stored_at
        if not math.isfinite(age) or age < 0:
            logger.warning("Dropping cache record %s with a bad timestamp", key)
            self.stats["misses"] += 1
            await self._discard(key)
            return None

        if age >= self.ttl:
            logger.debug("Cache expired for %s (age %.0fs)", key, age)
            self.stats["expired"] += 1
            self.stats["misses"] += 1
            await self._discard(key)
            return None

        self.stats["hits"] += 1
        logger.debug("Cache hit for %s", key)
        return payload

    async def set(self, content_type: str, content_filter: Optional[str], payload) -> bool:
        """Overwrite the record for this key with a fresh timestamp."""
        key = self.store_key(content_type, content_filter)
        record = {
            "key": cache_key(content_type, content_filter),
            "payload": payload,
            "stored_at": self.clock(),
        }
        try:
            await self.store.set(key, json.dumps(record, ensure_ascii=False))
        except (StoreError, TypeError, ValueError) as e:
            self.stats["store_errors"] += 1
            logger.warning("Cache write skipped for %s: %s", key, e)
            return False
        self.stats["writes"] += 1
        logger.debug("Cache saved for %s", key)
        return True

    async def invalidate(self, content_type: str, content_filter: Optional[str] = None) -> None:
        await self._discard(self.store_key(content_type, content_filter))

    async def clear(self) -> int:
        """Remove every cache record. Returns how many were removed."""
        try:
            keys = [key for key in await self.store.keys() if key.startswith(STORE_PREFIX)]
        except StoreError as e:
            self.stats["store_errors"] += 1
            logger.warning("Cache clear failed: %s", e)
            return 0
        for key in keys:
            await self._discard(key)
        return len(keys)


async def usage_bytes(store: KeyValueStore, keys: Iterable[str]) -> int:
    """UTF-8 size of the stored values for the given keys."""
    total = 0
    for key in keys:
        try:
            raw = await store.get(key)
        except StoreError as e:
            logger.warning("Size check failed for %s: %s", key, e)
            continue
        if raw:
            total += len(raw.encode("utf-8"))
    return total


class SingleFlight:
    """Share one in-flight coroutine per key between concurrent callers."""

    def __init__(self):
        self._inflight: Dict[str, "asyncio.Future"] = {}

    def in_flight(self, key: str) -> bool:
        return key in self._inflight

    def _finish(self, key: str, task: "asyncio.Future") -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        if not task.cancelled():
            # Mark retrieved so a failure nobody awaits is not logged as lost.
            task.exception()

    async def run(self, key: str, factory: Callable[[], Awaitable]):
        """Await the shared task for `key`, starting it if none is running.

        The task belongs to the flight, not to a caller: cancelling one caller
        leaves the load running for everyone else who joined.
        """
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(factory())
            self._inflight[key] = task
            task.add_done_callback(lambda done: self._finish(key, done))
        else:
            logger.debug("Joining in-flight load for %s", key)
        return await asyncio.shield(task)

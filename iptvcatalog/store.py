#!/usr/bin/env python3
"""
Persistent key-value stores.
String keys to string values, the same contract the app's device storage has.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
import threading
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """Raised when the backing store cannot be read or written."""


class KeyValueStore:
    """Async store contract: get / set / remove / clear / keys."""

    async def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    async def set(self, key: str, value: str) -> None:
        raise NotImplementedError

    async def remove(self, key: str) -> None:
        raise NotImplementedError

    async def clear(self) -> None:
        raise NotImplementedError

    async def keys(self) -> List[str]:
        raise NotImplementedError


class MemoryStore(KeyValueStore):
    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self.data: Dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> Optional[str]:
        return self.data.get(key)

    async def set(self, key: str, value: str) -> None:
        if not isinstance(value, str):
            raise StoreError(f"Value for {key!r} must be a string")
        self.data[key] = value

    async def remove(self, key: str) -> None:
        self.data.pop(key, None)

    async def clear(self) -> None:
        self.data.clear()

    async def keys(self) -> List[str]:
        return list(self.data.keys())


class JsonFileStore(KeyValueStore):
    """Whole-document JSON store on disk.

    Reads load the file on first access; every write rewrites the file through
    a temp file and os.replace. File I/O runs in a worker thread.
    """

    def __init__(self, path: str):
        self.path = path
        self._data: Optional[Dict[str, str]] = None
        self._lock = threading.Lock()

    def _load_locked(self) -> Dict[str, str]:
        if self._data is not None:
            return self._data
        if not os.path.exists(self.path):
            self._data = {}
            return self._data
        try:
            with open(self.path, "r", encoding="utf-8") as handle:
                loaded = json.load(handle)
        except (OSError, ValueError) as e:
            raise StoreError(f"Cannot read store {self.path}: {e}") from e
        if not isinstance(loaded, dict):
            raise StoreError(f"Store {self.path} does not hold a JSON object")
        self._data = {str(k): v for k, v in loaded.items() if isinstance(v, str)}
        return self._data

    def _flush_locked(self) -> None:
        directory = os.path.dirname(os.path.abspath(self.path))
        try:
            os.makedirs(directory, exist_ok=True)
            fd, temp_path = tempfile.mkstemp(prefix=".store-", suffix=".json", dir=directory)
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(self._data or {}, handle, ensure_ascii=False)
            os.replace(temp_path, self.path)
        except OSError as e:
            raise StoreError(f"Cannot write store {self.path}: {e}") from e

    def _get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._load_locked().get(key)

    def _set(self, key: str, value: str) -> None:
        if not isinstance(value, str):
            raise StoreError(f"Value for {key!r} must be a string")
        with self._lock:
            self._load_locked()[key] = value
            self._flush_locked()

    def _remove(self, key: str) -> None:
        with self._lock:
            data = self._load_locked()
            if key in data:
                del data[key]
                self._flush_locked()

    def _clear(self) -> None:
        with self._lock:
            self._data = {}
            self._flush_locked()

    def _keys(self) -> List[str]:
        with self._lock:
            return list(self._load_locked().keys())

    async def get(self, key: str) -> Optional[str]:
        return await asyncio.to_thread(self._get, key)

    async def set(self, key: str, value: str) -> None:
        await asyncio.to_thread(self._set, key, value)

    async def remove(self, key: str) -> None:
        await asyncio.to_thread(self._remove, key)

    async def clear(self) -> None:
        await asyncio.to_thread(self._clear)

    async def keys(self) -> List[str]:
        return await asyncio.to_thread(self._keys)


async def read_json(store: KeyValueStore, key: str, default=None):
    """Read and decode a JSON value. Store and decode failures return `default`."""
    try:
        raw = await store.get(key)
    except StoreError as e:
        logger.warning("Store read failed for %s: %s", key, e)
        return default
    if raw is None:
        return default
    try:
        return json.loads(raw)
    except ValueError:
        logger.warning("Discarding undecodable store value for %s", key)
        return default


async def write_json(store: KeyValueStore, key: str, value) -> bool:
    """Encode and write a JSON value. Returns False when the store refused it."""
    try:
        await store.set(key, json.dumps(value, ensure_ascii=False))
    except (StoreError, TypeError, ValueError) as e:
        logger.warning("Store write failed for %s: %s", key, e)
        return False
    return True

#!/usr/bin/env python3
"""
Xtream Codes catalog client.
Structured alternative to an M3U download: categories and streams come from
player_api.php and are translated into the same Entry shape the parser emits.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional
from urllib.parse import parse_qs, urlparse

from iptvcatalog.entries import (
    DEFAULT_ENTRY_NAME,
    DEFAULT_GROUP,
    KIND_LIVE,
    KIND_MOVIE,
    KIND_SERIES,
    Entry,
    validate_kind,
)
from iptvcatalog.transport import PlaylistFetcher, TransportError

logger = logging.getLogger(__name__)

CATEGORY_ACTIONS = {
    KIND_LIVE: "get_live_categories",
    KIND_MOVIE: "get_vod_categories",
    KIND_SERIES: "get_series_categories",
}
STREAM_ACTIONS = {
    KIND_LIVE: "get_live_streams",
    KIND_MOVIE: "get_vod_streams",
    KIND_SERIES: "get_series",
}
URL_SEGMENTS = {KIND_LIVE: "live", KIND_MOVIE: "movie", KIND_SERIES: "series"}
DEFAULT_EXTENSIONS = {KIND_LIVE: "ts", KIND_MOVIE: "mp4", KIND_SERIES: "mp4"}
FALLBACK_GROUPS = {KIND_LIVE: DEFAULT_GROUP, KIND_MOVIE: "Movies", KIND_SERIES: "Series"}

# Catalog row field -> Entry.metadata key.
METADATA_FIELDS = {
    KIND_LIVE: {
        "epg_channel_id": "epg_channel_id",
        "added": "added",
    },
    KIND_MOVIE: {
        "added": "added",
        "rating": "rating",
        "year": "year",
        "plot": "plot",
        "cast": "cast",
        "director": "director",
        "genre": "genre",
        "duration": "duration",
        "releaseDate": "release_date",
        "tmdb_id": "tmdb_id",
        "rating_5based": "rating_5based",
        "container_extension": "container_extension",
    },
    KIND_SERIES: {
        "plot": "plot",
        "cast": "cast",
        "director": "director",
        "genre": "genre",
        "year": "year",
        "rating": "rating",
        "last_modified": "last_modified",
        "episode_run_time": "episode_run_time",
        "backdrop_path": "backdrop",
        "tmdb_id": "tmdb_id",
    },
}


class CatalogError(Exception):
    """Catalog unreachable, credentials rejected or payload malformed."""


class XtreamClient:
    """Xtream Codes API client with an explicit connect / close lifecycle."""

    def __init__(
        self,
        host: str,
        username: str,
        password: str,
        fetcher: Optional[PlaylistFetcher] = None,
    ):
        parsed = urlparse(host if "://" in (host or "") else f"http://{host}")
        # Keep netloc so Basic Auth (user@host) survives.
        self.base_url = f"{parsed.scheme or 'http'}://{parsed.netloc}".rstrip("/")
        self.username = username or ""
        self.password = password or ""
        self.fetcher = fetcher or PlaylistFetcher()
        self.is_connected = False
        self.account: Dict = {}

    @classmethod
    def from_url(cls, url: str, fetcher: Optional[PlaylistFetcher] = None) -> "XtreamClient":
        """Parse credentials from an M3U-style provider URL."""
        parsed = urlparse(url)
        params = parse_qs(parsed.query)
        if "username" in params and "password" in params:
            username = params["username"][0]
            password = params["password"][0]
        else:
            parts = [p for p in parsed.path.split("/") if p]
            username, password = (parts[0], parts[1]) if len(parts) >= 2 else ("", "")
        scheme = parsed.scheme or "http"
        return cls(f"{scheme}://{parsed.netloc}", username, password, fetcher=fetcher)

    @property
    def has_credentials(self) -> bool:
        return bool(self.base_url and self.username and self.password)

    def _api_call(self, action: Optional[str] = None, **params):
        if not self.has_credentials:
            raise CatalogError("Xtream credentials are missing")

        query: Dict[str, object] = {"username": self.username, "password": self.password}
        if action:
            query["action"] = action
        for key, value in params.items():
            if value is not None and value != "":
                query[key] = value

        try:
            return self.fetcher.fetch_json(f"{self.base_url}/player_api.php", params=query)
        except TransportError as e:
            raise CatalogError(f"Catalog call failed ({action or 'account'}): {e}") from e

    def _list_call(self, action: str, **params) -> List[Dict]:
        data = self._api_call(action, **params)
        if not isinstance(data, list):
            raise CatalogError(f"Catalog call {action} did not return a list")
        return [row for row in data if isinstance(row, dict)]

    def get_account_info(self) -> Dict:
        data = self._api_call()
        if not isinstance(data, dict) or not isinstance(data.get("user_info"), dict):
            raise CatalogError("Account info missing user_info")
        if str(data["user_info"].get("auth", "1")) == "0":
            raise CatalogError("Catalog rejected the credentials")
        return {"user_info": data["user_info"], "server_info": data.get("server_info") or {}}

    def connect(self) -> Dict:
        """Validate the credentials. Must succeed before listing content."""
        self.account = self.get_account_info()
        self.is_connected = True
        logger.info(
            "Xtream client connected to %s as %s",
            self.base_url,
            self.account["user_info"].get("username", self.username),
        )
        return self.account

    def close(self) -> None:
        self.is_connected = False
        self.account = {}
        self.fetcher.close()

    def _require_connection(self) -> None:
        if not self.is_connected:
            raise CatalogError("Xtream client is not connected")

    def list_categories(self, kind: str) -> List[Dict]:
        kind = validate_kind(kind)
        self._require_connection()
        rows = self._list_call(CATEGORY_ACTIONS[kind])
        return [
            {
                "id": str(row.get("category_id", "")),
                "name": str(row.get("category_name") or "").strip(),
                "kind": kind,
            }
            for row in rows
        ]

    def list_streams(self, kind: str, category_id: Optional[str] = None) -> List[Dict]:
        kind = validate_kind(kind)
        self._require_connection()
        return self._list_call(STREAM_ACTIONS[kind], category_id=category_id)

    def build_stream_url(self, kind: str, stream_id: object, extension: Optional[str] = None) -> str:
        kind = validate_kind(kind)
        if not self.has_credentials:
            return ""
        ext = (extension or DEFAULT_EXTENSIONS[kind]).lstrip(".")
        return (
            f"{self.base_url}/{URL_SEGMENTS[kind]}/"
            f"{self.username}/{self.password}/{stream_id}.{ext}"
        )

    def to_entries(
        self,
        kind: str,
        rows: Iterable[Dict],
        categories: Optional[Iterable[Dict]] = None,
    ) -> List[Entry]:
        """Translate catalog rows into entries. The kind comes from the endpoint."""
        kind = validate_kind(kind)
        category_names = {
            str(cat.get("id")): cat.get("name")
            for cat in categories or []
            if isinstance(cat, dict) and cat.get("name")
        }
        id_field = "series_id" if kind == KIND_SERIES else "stream_id"
        logo_field = "cover" if kind == KIND_SERIES else "stream_icon"

        entries: List[Entry] = []
        seen = set()
        for row in rows:
            stream_id = row.get(id_field)
            if stream_id in (None, ""):
                continue
            # Panels list one stream under several categories; first listing wins.
            entry_id = f"{kind}-{stream_id}"
            if entry_id in seen:
                continue
            seen.add(entry_id)
            category_id = str(row.get("category_id") or "")
            group = (
                row.get("category_name")
                or category_names.get(category_id)
                or FALLBACK_GROUPS[kind]
            )
            metadata = {
                target: row[source]
                for source, target in METADATA_FIELDS[kind].items()
                if row.get(source) not in (None, "")
            }
            metadata["category_id"] = category_id
            metadata["is_adult"] = str(row.get("is_adult", "0")) == "1"

            url = None
            if kind != KIND_SERIES:
                url = self.build_stream_url(kind, stream_id, row.get("container_extension"))

            entries.append(
                Entry(
                    id=entry_id,
                    name=str(row.get("name") or "").strip() or DEFAULT_ENTRY_NAME,
                    logo=row.get(logo_field) or None,
                    group=str(group).strip() or FALLBACK_GROUPS[kind],
                    url=url,
                    kind=kind,
                    metadata=metadata,
                )
            )
        return entries

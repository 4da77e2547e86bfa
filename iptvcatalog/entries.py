#!/usr/bin/env python3
"""Playlist entry and group records shared by parser, catalog and cache."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Dict, List, Optional

KIND_LIVE = "live"
KIND_MOVIE = "movie"
KIND_SERIES = "series"
KINDS = (KIND_LIVE, KIND_MOVIE, KIND_SERIES)

DEFAULT_ENTRY_NAME = "Untitled"
DEFAULT_GROUP = "Uncategorized"
FALLBACK_GROUP_BY_KIND = {
    KIND_LIVE: DEFAULT_GROUP,
    KIND_MOVIE: "Miscellaneous Movies",
    KIND_SERIES: "Miscellaneous Series",
}


def new_entry_id(prefix: str = "m3u") -> str:
    return f"{prefix}-{uuid.uuid4().hex}"


def validate_kind(kind: str) -> str:
    value = str(kind or "").strip().lower()
    if value not in KINDS:
        raise ValueError(f"Unknown content kind: {kind!r}")
    return value


@dataclass
class Entry:
    """One playable item. `kind` stays None until classified."""

    id: str
    name: str = DEFAULT_ENTRY_NAME
    logo: Optional[str] = None
    group: str = DEFAULT_GROUP
    url: Optional[str] = None
    kind: Optional[str] = None
    metadata: Dict[str, object] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, object]:
        data: Dict[str, object] = {
            "id": self.id,
            "name": self.name,
            "logo": self.logo,
            "group": self.group,
            "url": self.url,
            "kind": self.kind,
        }
        if self.metadata:
            data["metadata"] = dict(self.metadata)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, object]) -> "Entry":
        metadata = data.get("metadata")
        return cls(
            id=str(data.get("id") or new_entry_id()),
            name=str(data.get("name") or DEFAULT_ENTRY_NAME),
            logo=data.get("logo") or None,
            group=str(data.get("group") or DEFAULT_GROUP),
            url=data.get("url") or None,
            kind=data.get("kind") or None,
            metadata=dict(metadata) if isinstance(metadata, dict) else {},
        )


@dataclass
class Group:
    name: str
    kind: str
    entries: List[Entry] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.entries)

    def to_dict(self) -> Dict[str, object]:
        return {
            "name": self.name,
            "kind": self.kind,
            "count": self.count,
            "entries": [entry.to_dict() for entry in self.entries],
        }


def entries_from_dicts(rows: object) -> List[Entry]:
    """Rebuild entries from a stored JSON list, skipping anything that is not a dict."""
    if not isinstance(rows, list):
        return []
    return [Entry.from_dict(row) for row in rows if isinstance(row, dict)]

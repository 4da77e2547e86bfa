#!/usr/bin/env python3
"""
Extended-M3U parser.
Turns raw playlist text into unclassified entries. Malformed lines are skipped,
never raised.
"""

from __future__ import annotations

import re
from typing import Dict, List, Optional

from iptvcatalog.entries import DEFAULT_ENTRY_NAME, DEFAULT_GROUP, Entry, new_entry_id

EXTINF_MARKER = "#EXTINF:"
STREAM_SCHEMES = ("http", "rtmp", "rtsp")
PLAYLIST_URL_HINTS = (".m3u", "m3u8", "type=m3u", "output=m3u")

NAME_RE = re.compile(r",([^,]*)$")
LOGO_RE = re.compile(r'tvg-logo="([^"]*)"', re.IGNORECASE)
GROUP_RE = re.compile(r'group-title="([^"]*)"', re.IGNORECASE)


def _parse_extinf(line: str) -> Dict[str, Optional[str]]:
    name_match = NAME_RE.search(line)
    logo_match = LOGO_RE.search(line)
    group_match = GROUP_RE.search(line)

    name = name_match.group(1).strip() if name_match else ""
    logo = logo_match.group(1).strip() if logo_match else ""
    group = group_match.group(1).strip() if group_match else ""
    return {
        "name": name or DEFAULT_ENTRY_NAME,
        "logo": logo or None,
        "group": group or DEFAULT_GROUP,
    }


def parse_m3u(raw_text: Optional[str]) -> List[Entry]:
    """Parse playlist text into entries in playlist order.

    A `#EXTINF:` line opens a pending entry, the next stream URL line closes it.
    A second `#EXTINF:` before any URL replaces the pending one, and URL lines
    without pending metadata are dropped.
    """
    entries: List[Entry] = []
    if not raw_text:
        return entries

    pending: Optional[Dict[str, Optional[str]]] = None
    for raw_line in str(raw_text).splitlines():
        line = raw_line.strip()
        if not line:
            continue

        if line[: len(EXTINF_MARKER)].upper() == EXTINF_MARKER:
            pending = _parse_extinf(line)
            pending["id"] = new_entry_id()
        elif line.lower().startswith(STREAM_SCHEMES):
            if pending is None or not pending.get("name"):
                continue
            entries.append(
                Entry(
                    id=pending["id"],
                    name=pending["name"],
                    logo=pending["logo"],
                    group=pending["group"],
                    url=line,
                )
            )
            pending = None

    return entries


def looks_like_m3u(text: Optional[str], url: str = "") -> bool:
    """Cheap content sniff used before saving a playlist source."""
    content = text or ""
    if "#EXTM3U" in content or "#EXTINF" in content:
        return True
    lowered_url = (url or "").lower()
    return any(hint in lowered_url for hint in PLAYLIST_URL_HINTS)


def is_playlist_url(url: Optional[str]) -> bool:
    value = (url or "").strip().lower()
    return value.startswith("http://") or value.startswith("https://")

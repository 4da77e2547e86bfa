#!/usr/bin/env python3
"""
Keyword rule table for live / movie / series classification.

Every rule is tested against the lower-cased entry fields; the matching rule
with the highest priority decides the kind. Entries that match nothing are
live channels.
"""

from __future__ import annotations

import json
import logging
import os
import re
from copy import deepcopy
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence

from iptvcatalog.entries import KIND_LIVE, KIND_MOVIE, KIND_SERIES, KINDS, Entry

logger = logging.getLogger(__name__)

VALID_FIELDS = ("name", "group", "url")

PRIORITY_LIVE = 300
PRIORITY_MOVIE_EXPLICIT = 250
PRIORITY_SERIES = 200
PRIORITY_LIVE_URL = 150
PRIORITY_VOD = 100

YEAR_RE = r"\b(?:19[5-9]\d|20[0-4]\d)\b"

DEFAULT_CLASSIFICATION_RULES: List[Dict] = [
    {
        "name": "live_brands",
        "kind": KIND_LIVE,
        "priority": PRIORITY_LIVE,
        "fields": ["name", "group"],
        "keywords": [
            "globo", "rede tv", "tv brasil", "tv senado", "tv câmara", "tv justiça",
            "multishow", "sportv", "telecine", "hbo max", "paramount", "espn",
            "fox sports", "premiere", "band news", "globo news", "sbt news",
            "discovery channel", "history channel", "natgeo", "nat geo",
            "animal planet", "cartoon network", "nickelodeon", "disney channel",
        ],
        "words": [
            "sbt", "record", "band", "cultura", "gnt", "fox", "universal", "sony",
            "warner", "combate", "cnn", "bbc", "mtv", "music", "vh1", "bis",
            "investigation", "sports", "esporte", "esportes", "news", "noticias",
            "notícias",
        ],
    },
    {
        "name": "live_tokens",
        "kind": KIND_LIVE,
        "priority": PRIORITY_LIVE,
        "fields": ["name", "group"],
        "keywords": ["ao vivo", "broadcasting", "transmissão", "transmissao", "24/7"],
        "words": ["live", "canal", "tv", "stream", "channel", "24h"],
    },
    {
        "name": "movie_explicit",
        "kind": KIND_MOVIE,
        "priority": PRIORITY_MOVIE_EXPLICIT,
        "fields": ["name", "group"],
        "keywords": ["filme", "movie", "cinema", "lançamento", "lancamento"],
    },
    {
        "name": "series_tokens",
        "kind": KIND_SERIES,
        "priority": PRIORITY_SERIES,
        "fields": ["name", "group"],
        "keywords": [
            "serie", "série", "temporada", "season", "episodio", "episódio",
            "episode", "sitcom", "miniserie", "minissérie",
        ],
        "words": ["ep", "temp", "t01", "t02", "t03"],
        "patterns": [r"\bs\d{1,2}\s*e\d{1,3}\b", r"\bs0[1-7]\b", r"\be0[1-7]\b"],
    },
    {
        "name": "series_url",
        "kind": KIND_SERIES,
        "priority": PRIORITY_SERIES,
        "fields": ["url"],
        "keywords": ["/series/"],
    },
    {
        "name": "live_url",
        "kind": KIND_LIVE,
        "priority": PRIORITY_LIVE_URL,
        "fields": ["url"],
        "keywords": ["/live/"],
    },
    {
        "name": "vod_url",
        "kind": KIND_MOVIE,
        "priority": PRIORITY_VOD,
        "fields": ["url"],
        "keywords": ["/movie/", "/movies/", "/filme/", "/filmes/", "movie", "filme"],
        "patterns": [r"\.(?:mp4|mkv|avi)(?:\?|$)"],
    },
    {
        "name": "vod_group",
        "kind": KIND_MOVIE,
        "priority": PRIORITY_VOD,
        "fields": ["group"],
        "keywords": [
            "lançamentos", "lancamentos", "releases",
            "ação", "acao", "action", "aventura", "adventure", "comédia", "comedia",
            "comedy", "drama", "suspense", "thriller", "terror", "horror", "romance",
            "romântico", "ficção", "sci-fi", "fantasia", "fantasy", "animação",
            "animation", "documentário", "documentary",
            "full hd", "4k", "uhd", "bluray", "blu-ray", "dvdrip", "webrip", "hdtv",
        ],
        "words": ["hd", "cam", "ts", "dublado", "legendado", "dual", "nacional"],
        "patterns": [YEAR_RE],
    },
    {
        "name": "vod_name",
        "kind": KIND_MOVIE,
        "priority": PRIORITY_VOD,
        "fields": ["name"],
        "keywords": [
            "full hd", "4k", "uhd", "bluray", "blu-ray", "dvdrip", "webrip", "hdtv",
            "dublado", "legendado", "dual audio", "vol.",
        ],
        "words": ["hd", "cam", "ts", "r5", "nacional", "part", "parte", "disc", "disco"],
        "patterns": [r"[\(\[]\s*(?:19|20)\d{2}\s*[\)\]]", r"-\s*(?:19|20)\d{2}\b"],
    },
]


@dataclass(frozen=True)
class ClassificationRule:
    name: str
    kind: str
    priority: int
    fields: tuple
    regex: "re.Pattern[str]"
    order: int = 0

    def matches(self, values: Dict[str, str]) -> bool:
        for field_name in self.fields:
            if self.regex.search(values.get(field_name, "")):
                return True
        return False


def _string_list(raw: object) -> List[str]:
    if not isinstance(raw, (list, tuple)):
        return []
    return [str(item).lower() for item in raw if str(item or "").strip()]


def compile_rule(raw: Dict, order: int = 0) -> ClassificationRule:
    """Build one rule from its table row. Raises ValueError on a bad row."""
    name = str(raw.get("name") or f"rule_{order}")
    kind = str(raw.get("kind") or "").strip().lower()
    if kind not in KINDS:
        raise ValueError(f"Rule {name!r} has unknown kind {raw.get('kind')!r}")

    fields = tuple(f for f in _string_list(raw.get("fields")) if f in VALID_FIELDS)
    if not fields:
        raise ValueError(f"Rule {name!r} has no valid fields")

    alternatives = [re.escape(k) for k in _string_list(raw.get("keywords"))]
    alternatives += [rf"\b{re.escape(w)}\b" for w in _string_list(raw.get("words"))]
    alternatives += [str(p) for p in raw.get("patterns", []) or [] if str(p or "")]
    if not alternatives:
        raise ValueError(f"Rule {name!r} has no keywords, words or patterns")

    try:
        regex = re.compile("|".join(f"(?:{alt})" for alt in alternatives))
    except re.error as e:
        raise ValueError(f"Rule {name!r} has an invalid pattern: {e}") from e

    return ClassificationRule(
        name=name,
        kind=kind,
        priority=int(raw.get("priority", PRIORITY_VOD)),
        fields=fields,
        regex=regex,
        order=order,
    )


def _field_values(entry: object) -> Dict[str, str]:
    if isinstance(entry, dict):
        getter = entry.get
    else:
        getter = lambda key: getattr(entry, key, None)  # noqa: E731
    return {key: str(getter(key) or "").lower() for key in VALID_FIELDS}


class ContentClassifier:
    """Deterministic rule-table classifier shared by every content screen."""

    def __init__(self, rules: Optional[Sequence[Dict]] = None, default_kind: str = KIND_LIVE):
        table = DEFAULT_CLASSIFICATION_RULES if rules is None else rules
        compiled = [compile_rule(raw, order) for order, raw in enumerate(table)]
        self.rules: List[ClassificationRule] = sorted(
            compiled, key=lambda rule: (-rule.priority, rule.order)
        )
        self.default_kind = default_kind

    def explain(self, entry: object) -> List[str]:
        """Names of every matching rule, highest priority first."""
        values = _field_values(entry)
        return [rule.name for rule in self.rules if rule.matches(values)]

    def classify(self, entry: object) -> str:
        values = _field_values(entry)
        for rule in self.rules:
            if rule.matches(values):
                return rule.kind
        return self.default_kind


def classify_entries(entries: Iterable[Entry], classifier: ContentClassifier) -> List[Entry]:
    """Assign a kind to every entry that does not carry one yet."""
    output: List[Entry] = []
    for entry in entries:
        if not entry.kind:
            entry.kind = classifier.classify(entry)
        output.append(entry)
    return output


def merge_rules(defaults: List[Dict], overrides: Iterable[object]) -> List[Dict]:
    """Replace default rules by name and append the new ones."""
    merged = deepcopy(defaults)
    index_by_name = {rule["name"]: idx for idx, rule in enumerate(merged)}
    for raw in overrides:
        if not isinstance(raw, dict) or not raw.get("name"):
            continue
        name = raw["name"]
        if name in index_by_name:
            merged[index_by_name[name]] = dict(raw)
        else:
            index_by_name[name] = len(merged)
            merged.append(dict(raw))
    return merged


def load_classification_rules(path: Optional[str]) -> List[Dict]:
    """Load a rule file and merge it over the defaults.

    Accepted shapes: a JSON list of rules, or {"rules": [...]}.
    """
    rules = deepcopy(DEFAULT_CLASSIFICATION_RULES)
    if not path or not os.path.exists(path):
        return rules
    try:
        with open(path, "r", encoding="utf-8") as handle:
            loaded = json.load(handle)
        if isinstance(loaded, dict):
            loaded = loaded.get("rules", [])
        if not isinstance(loaded, list):
            raise ValueError("rule file must hold a list of rules")
        rules = merge_rules(rules, loaded)
        for order, raw in enumerate(rules):
            compile_rule(raw, order)
    except (OSError, ValueError) as e:
        logger.warning("Ignoring classification rules from %s: %s", path, e)
        return deepcopy(DEFAULT_CLASSIFICATION_RULES)
    return rules

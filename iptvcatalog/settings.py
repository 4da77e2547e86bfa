#!/usr/bin/env python3
"""Settings: defaults, optional JSON file, environment overrides, stored user toggles."""

from __future__ import annotations

import json
import logging
import os
from copy import deepcopy
from typing import Dict, Optional

from iptvcatalog.store import KeyValueStore, read_json, write_json

logger = logging.getLogger(__name__)

CONNECTION_M3U = "m3u"
CONNECTION_XTREAM = "xtream"
USER_SETTINGS_KEY = "user_settings"

DEFAULT_SETTINGS: Dict = {
    "connection_type": CONNECTION_M3U,
    "playlist_url": "",
    "xtream": {
        "host": "",
        "username": "",
        "password": "",
    },
    "use_cache": True,
    "auto_play": True,
    "cache_ttl_seconds": 3600,
    "list_limit": 10,
    "snapshot_limit": 2000,
    "request_timeout": 30,
    "max_retries": 3,
    "retry_backoff": 0.5,
    "user_agent": "",
    "rules_file": "",
    "store_path": "iptvcatalog_store.json",
}

# Keys a user may change from the app and that are persisted in the store.
USER_SETTING_KEYS = ("connection_type", "playlist_url", "xtream", "use_cache", "auto_play")

ENV_OVERRIDES = {
    "IPTVCATALOG_PLAYLIST_URL": ("playlist_url",),
    "IPTVCATALOG_XTREAM_HOST": ("xtream", "host"),
    "IPTVCATALOG_XTREAM_USERNAME": ("xtream", "username"),
    "IPTVCATALOG_XTREAM_PASSWORD": ("xtream", "password"),
    "IPTVCATALOG_CACHE_TTL": ("cache_ttl_seconds",),
    "IPTVCATALOG_STORE_PATH": ("store_path",),
}

INT_KEYS = ("cache_ttl_seconds", "list_limit", "snapshot_limit", "request_timeout", "max_retries")


class ConfigError(Exception):
    """Raised on an unreadable or invalid settings file in strict mode."""


def _deep_merge_dict(dst: Dict, src: Dict) -> Dict:
    for key, value in src.items():
        if isinstance(value, dict) and isinstance(dst.get(key), dict):
            _deep_merge_dict(dst[key], value)
        else:
            dst[key] = value
    return dst


def _apply_env(settings: Dict, environ) -> Dict:
    for env_name, path in ENV_OVERRIDES.items():
        raw = environ.get(env_name)
        if raw is None or raw == "":
            continue
        target = settings
        for part in path[:-1]:
            if not isinstance(target.get(part), dict):
                target[part] = {}
            target = target[part]
        target[path[-1]] = raw
    return settings


def _coerce(settings: Dict) -> Dict:
    for key in INT_KEYS:
        try:
            settings[key] = int(settings[key])
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Setting {key!r} must be an integer") from e
    try:
        settings["retry_backoff"] = float(settings["retry_backoff"])
    except (TypeError, ValueError) as e:
        raise ConfigError("Setting 'retry_backoff' must be a number") from e
    for key in ("use_cache", "auto_play"):
        value = settings[key]
        if isinstance(value, str):
            settings[key] = value.strip().lower() not in {"false", "0", "no", "off", ""}
        else:
            settings[key] = bool(value)
    if settings["connection_type"] not in (CONNECTION_M3U, CONNECTION_XTREAM):
        raise ConfigError(f"Unknown connection_type {settings['connection_type']!r}")
    return settings


def load_settings(path: Optional[str] = None, strict: bool = False, environ=None) -> Dict:
    """Load a settings file and merge it over defaults, then apply env overrides.

    Non-strict loading falls back to defaults on a malformed file.
    """
    settings = deepcopy(DEFAULT_SETTINGS)
    if path:
        if not os.path.exists(path):
            if strict:
                raise ConfigError(f"Settings file not found: {path}")
        else:
            try:
                with open(path, "r", encoding="utf-8") as handle:
                    loaded = json.load(handle)
                if not isinstance(loaded, dict):
                    raise ValueError("settings file must hold a JSON object")
                settings = _deep_merge_dict(settings, loaded)
            except (OSError, ValueError) as e:
                if strict:
                    raise ConfigError(f"Cannot load settings from {path}: {e}") from e
                logger.warning("Ignoring settings file %s: %s", path, e)
                settings = deepcopy(DEFAULT_SETTINGS)

    settings = _apply_env(settings, os.environ if environ is None else environ)
    try:
        return _coerce(settings)
    except ConfigError:
        if strict:
            raise
        logger.warning("Invalid settings values; using defaults")
        return _coerce(_apply_env(deepcopy(DEFAULT_SETTINGS), {}))


async def save_user_settings(store: KeyValueStore, settings: Dict) -> bool:
    payload = {key: deepcopy(settings[key]) for key in USER_SETTING_KEYS if key in settings}
    return await write_json(store, USER_SETTINGS_KEY, payload)


async def load_user_settings(store: KeyValueStore, base: Optional[Dict] = None) -> Dict:
    """Overlay the user's stored toggles and provider fields on `base`."""
    settings = deepcopy(base) if base is not None else load_settings()
    stored = await read_json(store, USER_SETTINGS_KEY, default={})
    if isinstance(stored, dict):
        _deep_merge_dict(settings, {k: v for k, v in stored.items() if k in USER_SETTING_KEYS})
    try:
        return _coerce(settings)
    except ConfigError as e:
        logger.warning("Ignoring stored user settings: %s", e)
        return deepcopy(base) if base is not None else load_settings()

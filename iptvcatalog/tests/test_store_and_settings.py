import json
import tempfile
import unittest
from pathlib import Path
import sys

TESTS_DIR = Path(__file__).resolve().parent
REPO_DIR = TESTS_DIR.parent.parent
if str(REPO_DIR) not in sys.path:
    sys.path.insert(0, str(REPO_DIR))

from iptvcatalog.settings import (
    DEFAULT_SETTINGS,
    ConfigError,
    load_settings,
    load_user_settings,
    save_user_settings,
)
from iptvcatalog.store import JsonFileStore, MemoryStore, StoreError, read_json, write_json


class JsonFileStoreTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)
        self.path = Path(self.tmp.name) / "nested" / "store.json"

    async def test_values_survive_a_new_instance(self):
        store = JsonFileStore(str(self.path))
        await store.set("recent:live", "[]")
        await store.set("user_settings", '{"auto_play": false}')
        await store.remove("recent:live")

        reopened = JsonFileStore(str(self.path))
        self.assertIsNone(await reopened.get("recent:live"))
        self.assertEqual('{"auto_play": false}', await reopened.get("user_settings"))
        self.assertEqual(["user_settings"], await reopened.keys())

    async def test_clear_empties_file(self):
        store = JsonFileStore(str(self.path))
        await store.set("a", "1")
        await store.clear()
        self.assertEqual({}, json.loads(self.path.read_text(encoding="utf-8")))

    async def test_unreadable_file_raises_store_error(self):
        self.path.parent.mkdir(parents=True)
        self.path.write_text("{oops", encoding="utf-8")
        store = JsonFileStore(str(self.path))
        with self.assertRaises(StoreError):
            await store.get("a")
        self.assertEqual("fallback", await read_json(store, "a", default="fallback"))

    async def test_non_string_values_are_refused(self):
        store = MemoryStore()
        with self.assertRaises(StoreError):
            await store.set("a", 1)
        self.assertTrue(await write_json(store, "a", {"n": 1}))
        self.assertEqual({"n": 1}, await read_json(store, "a"))


class LoadSettingsTests(unittest.TestCase):
    def _write(self, payload):
        handle = tempfile.NamedTemporaryFile("w+", suffix=".json", delete=False, encoding="utf-8")
        with handle:
            handle.write(payload if isinstance(payload, str) else json.dumps(payload))
        self.addCleanup(lambda: Path(handle.name).unlink(missing_ok=True))
        return handle.name

    def test_defaults_without_file(self):
        settings = load_settings(None, environ={})
        self.assertEqual(DEFAULT_SETTINGS, settings)
        self.assertIsNot(DEFAULT_SETTINGS["xtream"], settings["xtream"])

    def test_file_is_deep_merged_over_defaults(self):
        path = self._write({"connection_type": "xtream", "xtream": {"host": "http://h:8080"}, "list_limit": "5"})
        settings = load_settings(path, environ={})
        self.assertEqual("xtream", settings["connection_type"])
        self.assertEqual("http://h:8080", settings["xtream"]["host"])
        self.assertEqual("", settings["xtream"]["username"])
        self.assertEqual(5, settings["list_limit"])

    def test_environment_overrides_file(self):
        path = self._write({"playlist_url": "http://file/list.m3u"})
        environ = {
            "IPTVCATALOG_PLAYLIST_URL": "http://env/list.m3u",
            "IPTVCATALOG_XTREAM_USERNAME": "alice",
            "IPTVCATALOG_CACHE_TTL": "60",
        }
        settings = load_settings(path, environ=environ)
        self.assertEqual("http://env/list.m3u", settings["playlist_url"])
        self.assertEqual("alice", settings["xtream"]["username"])
        self.assertEqual(60, settings["cache_ttl_seconds"])

    def test_malformed_file_falls_back_unless_strict(self):
        path = self._write("{not json")
        self.assertEqual(DEFAULT_SETTINGS, load_settings(path, environ={}))
        with self.assertRaises(ConfigError):
            load_settings(path, strict=True, environ={})
        with self.assertRaises(ConfigError):
            load_settings("/nonexistent/settings.json", strict=True, environ={})

    def test_invalid_values(self):
        path = self._write({"connection_type": "satellite"})
        with self.assertRaises(ConfigError):
            load_settings(path, strict=True, environ={})
        self.assertEqual("m3u", load_settings(path, environ={})["connection_type"])

    def test_boolean_strings_are_coerced(self):
        settings = load_settings(self._write({"use_cache": "off", "auto_play": "yes"}), environ={})
        self.assertFalse(settings["use_cache"])
        self.assertTrue(settings["auto_play"])


class UserSettingsTests(unittest.IsolatedAsyncioTestCase):
    async def test_round_trip_only_user_keys(self):
        store = MemoryStore()
        base = load_settings(None, environ={})
        changed = dict(base, use_cache=False, playlist_url="http://p/list.m3u", request_timeout=1)
        self.assertTrue(await save_user_settings(store, changed))

        stored = json.loads(store.data["user_settings"])
        self.assertNotIn("request_timeout", stored)

        loaded = await load_user_settings(store, base)
        self.assertFalse(loaded["use_cache"])
        self.assertEqual("http://p/list.m3u", loaded["playlist_url"])
        self.assertEqual(30, loaded["request_timeout"])
        self.assertTrue(base["use_cache"])

    async def test_bad_stored_values_are_ignored(self):
        base = load_settings(None, environ={})
        store = MemoryStore({"user_settings": json.dumps({"connection_type": "fax"})})
        self.assertEqual(base, await load_user_settings(store, base))


if __name__ == "__main__":
    unittest.main()

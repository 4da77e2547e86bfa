import asyncio
import json
import unittest
from pathlib import Path
from unittest import mock
import sys

TESTS_DIR = Path(__file__).resolve().parent
REPO_DIR = TESTS_DIR.parent.parent
if str(REPO_DIR) not in sys.path:
    sys.path.insert(0, str(REPO_DIR))

from iptvcatalog.classifier import ContentClassifier
from iptvcatalog.content_cache import ContentCache
from iptvcatalog.entries import Entry
from iptvcatalog.ingestion import CatalogSource, IngestionService, PlaylistSource, build_lists, build_service
from iptvcatalog.settings import load_settings
from iptvcatalog.store import MemoryStore
from iptvcatalog.transport import PlaylistFetcher, TransportError
from iptvcatalog.xtream import CatalogError

PLAYLIST = """#EXTM3U
#EXTINF:-1 group-title="Filmes | Ação",Avengers (2024)
http://x/movie/u/p/1.mp4
#EXTINF:-1 group-title="Ação",Matrix (1999)
http://x/movie/u/p/2.mp4
#EXTINF:-1 group-title="Drama",Titanic (1997)
http://x/movie/u/p/3.mp4
#EXTINF:-1 group-title="Sports",ESPN HD
http://x/live/u/p/4.ts
"""


def movie(idx, group="Drama"):
    return Entry(id=f"movie-{idx}", name=f"Film {idx}", group=group, url=f"http://x/{idx}.mp4", kind="movie")


class FakeSource:
    def __init__(self, entries=None):
        self.entries = list(entries or [])
        self.error = None
        self.calls = 0

    async def open(self):
        return None

    async def close(self):
        return None

    async def fetch_entries(self, kind, category=None):
        self.calls += 1
        await asyncio.sleep(0.01)
        if self.error is not None:
            raise self.error
        return [e for e in self.entries if not category or e.group == category]


class IngestionServiceTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.store = MemoryStore()
        self.source = FakeSource([movie(1, "Drama"), movie(2, "Ação"), movie(3, "Ação")])
        self.service = IngestionService(self.source, ContentCache(self.store), self.store)

    async def test_second_load_is_served_from_cache(self):
        first = await self.service.load("movie")
        self.assertFalse(first.from_cache)
        self.assertEqual(["Ação", "Drama"], [g.name for g in first.groups])

        second = await self.service.load("movie")
        self.assertTrue(second.from_cache)
        self.assertEqual(1, self.source.calls)
        self.assertEqual([g.name for g in first.groups], [g.name for g in second.groups])
        self.assertEqual(["movie-2", "movie-3"], [e.id for e in second.groups[0].entries])

    async def test_concurrent_loads_share_one_fetch(self):
        first, second = await asyncio.gather(self.service.load("movie"), self.service.load("movie"))
        self.assertEqual(1, self.source.calls)
        self.assertEqual(first.total, second.total)

    async def test_no_cache_skips_read_and_write(self):
        await self.service.load("movie", use_cache=False)
        await self.service.load("movie", use_cache=False)
        self.assertEqual(2, self.source.calls)
        self.assertFalse(any(key.startswith("content_cache:") for key in self.store.data))

    async def test_refresh_ignores_fresh_cache(self):
        await self.service.load("movie")
        self.source.entries.append(movie(4, "Terror"))
        result = await self.service.refresh("movie")
        self.assertEqual(2, self.source.calls)
        self.assertEqual(4, result.total)
        cached = await self.service.load("movie")
        self.assertTrue(cached.from_cache)
        self.assertEqual(4, cached.total)

    async def test_refresh_without_cache_write(self):
        result = await self.service.refresh("movie", write_cache=False)
        self.assertEqual(3, result.total)
        self.assertNotIn("content_cache:movie:all", self.store.data)
        self.assertIn("snapshot:movie:all", self.store.data)

    async def test_category_has_its_own_cache_key(self):
        result = await self.service.load("movie", "Ação")
        self.assertEqual(2, result.total)
        self.assertIn("content_cache:movie:Ação", self.store.data)
        self.assertNotIn("content_cache:movie:all", self.store.data)

    async def test_failure_falls_back_to_snapshot(self):
        await self.service.load("movie", use_cache=False)
        self.source.error = TransportError("HTTP 503", status_code=503)
        result = await self.service.load("movie", use_cache=False)
        self.assertTrue(result.stale)
        self.assertTrue(result.from_cache)
        self.assertEqual(3, result.total)
        self.assertIn("503", result.error)

    async def test_failure_without_snapshot_is_empty_with_error(self):
        self.source.error = CatalogError("Xtream client is not connected")
        result = await self.service.load("series")
        self.assertEqual([], result.entries)
        self.assertEqual([], result.groups)
        self.assertFalse(result.ok)
        self.assertFalse(result.stale)

    async def test_snapshot_is_capped(self):
        service = IngestionService(self.source, ContentCache(self.store), self.store, snapshot_limit=2)
        await service.load("movie")
        self.assertEqual(2, len(json.loads(self.store.data["snapshot:movie:all"])))

    async def test_clear_cache_drops_records_and_snapshots(self):
        await self.service.load("movie")
        self.store.data["recent:movie"] = "[]"
        self.assertEqual(2, await self.service.clear_cache())
        self.assertEqual(["recent:movie"], list(self.store.data))

    async def test_result_to_dict(self):
        payload = (await self.service.load("movie")).to_dict()
        self.assertEqual(3, payload["total"])
        self.assertEqual({"name": "Ação", "kind": "movie", "count": 2}, {
            key: payload["groups"][0][key] for key in ("name", "kind", "count")
        })


class PlaylistSourceTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        session = mock.Mock()
        response = mock.Mock(status_code=200, text=PLAYLIST, content=PLAYLIST.encode("utf-8"))
        session.get.return_value = response
        self.source = PlaylistSource("http://x/get.php", PlaylistFetcher(session=session), ContentClassifier())

    async def test_entries_are_filtered_by_kind(self):
        movies = await self.source.fetch_entries("movie")
        self.assertEqual(["Avengers (2024)", "Matrix (1999)", "Titanic (1997)"], [e.name for e in movies])
        live = await self.source.fetch_entries("live")
        self.assertEqual(["ESPN HD"], [e.name for e in live])

    async def test_category_matches_normalized_group(self):
        movies = await self.source.fetch_entries("movie", "ação")
        self.assertEqual(["Avengers (2024)", "Matrix (1999)"], [e.name for e in movies])

    async def test_missing_url_is_a_transport_error(self):
        source = PlaylistSource("", PlaylistFetcher(session=mock.Mock()), ContentClassifier())
        with self.assertRaises(TransportError):
            await source.fetch_entries("live")


class CatalogSourceTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.client = mock.Mock()
        self.client.list_categories.return_value = [
            {"id": "7", "name": "Ação", "kind": "movie"},
            {"id": "8", "name": "Drama", "kind": "movie"},
        ]
        self.client.list_streams.return_value = [{"stream_id": 1}]
        self.client.to_entries.return_value = [movie(1, "Drama")]
        self.source = CatalogSource(self.client, ContentClassifier())

    async def test_open_connects_client(self):
        await self.source.open()
        self.client.connect.assert_called_once()

    async def test_category_name_resolves_to_id(self):
        entries = await self.source.fetch_entries("movie", "drama")
        self.client.list_streams.assert_called_once_with("movie", "8")
        self.assertEqual(["movie-1"], [e.id for e in entries])
        self.assertEqual("movie", entries[0].kind)

    async def test_unknown_category_returns_nothing(self):
        self.assertEqual([], await self.source.fetch_entries("movie", "Kids"))
        self.client.list_streams.assert_not_called()


class BuildServiceTests(unittest.TestCase):
    def test_source_follows_connection_type(self):
        settings = load_settings(None, environ={})
        settings["playlist_url"] = "http://x/list.m3u"
        service = build_service(settings, MemoryStore())
        self.assertIsInstance(service.source, PlaylistSource)
        self.assertEqual(3600, service.cache.ttl)

        settings.update(connection_type="xtream", use_cache=False)
        settings["xtream"] = {"host": "http://h:8080", "username": "u", "password": "p"}
        service = build_service(settings, MemoryStore())
        self.assertIsInstance(service.source, CatalogSource)
        self.assertEqual("http://h:8080", service.source.client.base_url)
        self.assertFalse(service.use_cache)


class BuildListsTests(unittest.IsolatedAsyncioTestCase):
    async def test_list_limit_setting_caps_recents(self):
        settings = load_settings(None, environ={})
        settings["list_limit"] = 2
        store = MemoryStore()
        lists = build_lists(settings, store)
        self.assertEqual(2, lists.limit)
        for idx in range(3):
            await lists.record_play("movie", movie(idx))
        self.assertEqual(["movie-2", "movie-1"], [e.id for e in await lists.recent("movie")])
        self.assertEqual(2, len(json.loads(store.data["recent:movie"])))


if __name__ == "__main__":
    unittest.main()

import tempfile
import unittest
from pathlib import Path

from fakes import FakeHttpClient

from page_cache.cache.lock import DummyLock
from page_cache.cache.size_tracker import SizeTracker
from page_cache.cache.store import Store
from page_cache.http.client import HttpResponse
from page_cache.models import Item
from page_cache.state.kv_store import MemoryKeyValueStore
from page_cache.warmup.feeder import DEFAULT_QUEUE_KEY, Feeder, UrlListProvider
from page_cache.warmup.sitemap import XmlSitemapReader

HOME = "https://www.example.com/"
PAGES = ["https://www.example.com/a/", "https://www.example.com/b/"]


class UrlListProviderTests(unittest.IsolatedAsyncioTestCase):
    async def test_home_first_then_sitemap_urls(self) -> None:
        http = FakeHttpClient(
            {
                "https://www.example.com/robots.txt": HttpResponse(200, ""),
                "https://www.example.com/sitemap.xml": HttpResponse(
                    200,
                    "<urlset>"
                    "<url><loc>https://www.example.com/</loc></url>"
                    "<url><loc>https://www.example.com/a/</loc></url>"
                    "<url><loc>https://www.example.com/wp-admin/</loc></url>"
                    "<url><loc>https://www.example.com/a/</loc></url>"
                    "</urlset>",
                ),
            }
        )
        provider = UrlListProvider(
            home_url=HOME,
            sitemap_reader=XmlSitemapReader(
                http,
                robots_txt_url="https://www.example.com/robots.txt",
                default_sitemap_url="https://www.example.com/sitemap.xml",
            ),
            exclude_patterns=["/wp-admin/"],
        )

        self.assertEqual(await provider.get_urls(), [HOME, "https://www.example.com/a/"])

    async def test_sitemap_failure_yields_home_only(self) -> None:
        provider = UrlListProvider(
            home_url=HOME,
            sitemap_reader=XmlSitemapReader(
                FakeHttpClient(),
                robots_txt_url="https://www.example.com/robots.txt",
                default_sitemap_url="https://www.example.com/sitemap.xml",
            ),
        )
        self.assertEqual(await provider.get_urls(), [HOME])

    async def test_initial_urls_and_filter(self) -> None:
        provider = UrlListProvider(
            home_url=HOME,
            initial_urls=PAGES,
            url_filter=lambda urls: [url for url in urls if not url.endswith("/b/")],
        )
        self.assertEqual(await provider.get_urls(), [HOME, "https://www.example.com/a/"])


class FeederTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        self.kv = MemoryKeyValueStore()
        self.store = Store(str(Path(self._tmp.name) / "cache"), SizeTracker(self.kv), DummyLock())
        self.store.setup()
        self.provider = UrlListProvider(home_url=HOME, initial_urls=PAGES)
        self.feeder = Feeder(self.store, self.kv, DummyLock(), self.provider, ["", "mobile"])

    async def test_queue_is_built_on_first_fetch(self) -> None:
        self.assertIsNone(self.kv.get(DEFAULT_QUEUE_KEY))

        self.assertEqual(await self.feeder.fetch_next(), Item(HOME, ""))
        self.assertEqual(await self.feeder.fetch_next(), Item(HOME, "mobile"))
        self.assertEqual(await self.feeder.get_size(), 4)
        self.assertEqual(await self.feeder.get_stats(), {"processed": 2, "waiting": 4, "total": 6})

    async def test_exhausted_queue_is_not_rebuilt(self) -> None:
        fetched = []
        while True:
            item = await self.feeder.fetch_next()
            if item is None:
                break
            fetched.append(item)

        self.assertEqual(len(fetched), 6)
        self.assertIsNone(await self.feeder.fetch_next())
        self.assertEqual(await self.feeder.get_size(), 0)

        self.assertTrue(self.feeder.reset())
        self.assertEqual(await self.feeder.get_size(), 6)

    async def test_queue_state_survives_new_feeder(self) -> None:
        await self.feeder.fetch_next()
        other = Feeder(self.store, self.kv, DummyLock(), self.provider, ["", "mobile"])
        self.assertEqual(await other.fetch_next(), Item(HOME, "mobile"))

    async def test_unknown_format_version_rebuilds_queue(self) -> None:
        await self.feeder.fetch_next()
        document = dict(self.kv.get(DEFAULT_QUEUE_KEY))
        document["format_version"] = 2
        self.kv.set(DEFAULT_QUEUE_KEY, document)

        self.assertEqual(await self.feeder.fetch_next(), Item(HOME, ""))
        self.assertEqual(await self.feeder.get_size(), 5)

    async def test_push_requeues_processed_item(self) -> None:
        first = await self.feeder.fetch_next()
        self.assertTrue(await self.feeder.push(first))
        self.assertEqual(await self.feeder.fetch_next(), first)

    async def test_synchronize_pulls_cached_items(self) -> None:
        self.store.write("https://www.example.com/a", "cached")
        self.store.write("https://www.example.com/b/", "cached", "mobile")

        self.assertTrue(await self.feeder.synchronize())

        stats = await self.feeder.get_stats()
        self.assertEqual(stats, {"processed": 2, "waiting": 4, "total": 6})
        fetched = [await self.feeder.fetch_next() for _ in range(4)]
        self.assertNotIn(Item("https://www.example.com/a/", ""), fetched)
        self.assertNotIn(Item("https://www.example.com/b/", "mobile"), fetched)

    async def test_teardown_removes_persisted_queue(self) -> None:
        await self.feeder.fetch_next()
        self.assertTrue(self.feeder.teardown())
        self.assertIsNone(self.kv.get(DEFAULT_QUEUE_KEY))


if __name__ == "__main__":
    unittest.main()

from __future__ import annotations

import logging
import re
from typing import Callable, Dict, List, Optional, Sequence

from page_cache.cache.lock import Lock, hold
from page_cache.cache.store import Store
from page_cache.models import Item
from page_cache.state.kv_store import KeyValueStore
from page_cache.warmup.queue import WarmUpQueue, decode_queue, encode_queue
from page_cache.warmup.sitemap import SitemapError, XmlSitemapReader

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_KEY = "page-cache/crawler-queue"

UrlListFilter = Callable[[List[str]], List[str]]


def _unique(urls: Sequence[str]) -> List[str]:
    return list(dict.fromkeys(url for url in urls if url))


class UrlListProvider:
    """
    Builds the list of URLs to warm up: home URL first, then the sitemap URLs.

    `initial_urls` short-cuts sitemap reading. The final list passes through `exclude_patterns`
    (regular expressions matched against the URL) and then `url_filter`.
    """

    def __init__(
        self,
        *,
        home_url: str,
        sitemap_reader: Optional[XmlSitemapReader] = None,
        initial_urls: Optional[Sequence[str]] = None,
        exclude_patterns: Sequence[str] = (),
        url_filter: Optional[UrlListFilter] = None,
    ) -> None:
        self._home_url = home_url
        self._sitemap_reader = sitemap_reader
        self._initial_urls = list(initial_urls) if initial_urls is not None else None
        self._exclude = [re.compile(pattern) for pattern in exclude_patterns]
        self._url_filter = url_filter

    async def get_urls(self) -> List[str]:
        if self._initial_urls is not None:
            discovered = self._initial_urls
        else:
            discovered = await self._read_sitemaps()

        urls = [url for url in [self._home_url, *discovered] if not self._is_excluded(url)]
        if self._url_filter is not None:
            urls = self._url_filter(urls)
        return _unique(urls)

    async def _read_sitemaps(self) -> List[str]:
        if self._sitemap_reader is None:
            return []
        try:
            return await self._sitemap_reader.get_urls()
        except SitemapError as e:
            logger.warning("Failed to read XML sitemaps, warming up home URL only. error=%s", e)
            return []

    def _is_excluded(self, url: str) -> bool:
        return any(pattern.search(url) for pattern in self._exclude)


class Feeder:
    """
    Front of the warm-up queue.

    Builds the queue on demand and persists it in the key-value store. A missing key means
    "not built yet"; a persisted queue with no waiting items means "exhausted" and is never
    rebuilt until reset(), so a crawl cycle cannot restart on its own.
    """

    def __init__(
        self,
        store: Store,
        kv_store: KeyValueStore,
        lock: Lock,
        url_provider: UrlListProvider,
        request_variants: Sequence[str],
        *,
        key: str = DEFAULT_QUEUE_KEY,
    ) -> None:
        self._store = store
        self._kv = kv_store
        self._lock = lock
        self._url_provider = url_provider
        self._request_variants = list(request_variants) or [""]
        self._key = key

    async def build_initial_list(self) -> List[str]:
        return await self._url_provider.get_urls()

    async def requeue(self) -> WarmUpQueue:
        urls = await self.build_initial_list()
        items = [Item(url=url, request_variant=variant) for url in urls for variant in self._request_variants]
        queue = WarmUpQueue(items)
        self._save(queue)
        logger.info("Warm-up queue built. urls=%d items=%d", len(urls), len(items))
        return queue

    async def fetch_next(self) -> Optional[Item]:
        """Pop the next item to crawl. None if the queue is exhausted or the lock is unavailable."""
        with hold(self._lock, exclusive=True) as acquired:
            if not acquired:
                logger.warning("Could not acquire feeder lock for fetch.")
                return None
            queue = await self._get_queue()
            item = queue.fetch()
            if item is None:
                return None
            self._save(queue)
            return item

    async def push(self, item: Item) -> bool:
        """Put `item` back on top of the queue (to be crawled next)."""
        with hold(self._lock, exclusive=True) as acquired:
            if not acquired:
                logger.warning("Could not acquire feeder lock for push. url=%s", item.url)
                return False
            queue = await self._get_queue()
            if queue.push(item):
                return self._save(queue)
            return True

    async def synchronize(self) -> bool:
        """Mark every item the store already holds as processed."""
        with hold(self._lock, exclusive=True) as acquired:
            if not acquired:
                logger.warning("Could not acquire feeder lock for synchronize.")
                return False
            entries = self._store.inspect()
            if entries is None:
                return False
            queue = await self._get_queue()
            # Match on cache paths: queued URLs need not be in the directory form inspect() reports.
            cached = {(entry.path, entry.request_variant) for entry in entries}
            dirty = False
            for item in queue.waiting:
                result = self._store.codec.try_encode(item.url)
                if result.ok and (result.value, item.request_variant) in cached:
                    dirty = queue.pull(item) or dirty
            if dirty:
                return self._save(queue)
            return True

    async def get_size(self) -> int:
        """Number of items waiting in the queue."""
        # Shared lock is best effort here.
        with hold(self._lock, exclusive=False):
            queue = await self._get_queue()
            return queue.waiting_count

    async def get_stats(self) -> Dict[str, int]:
        with hold(self._lock, exclusive=False):
            queue = await self._get_queue()
            return queue.stats()

    def reset(self) -> bool:
        with hold(self._lock, exclusive=True) as acquired:
            if not acquired:
                logger.warning("Could not acquire feeder lock for reset.")
                return False
            return self._kv.delete(self._key)

    def setup(self) -> bool:
        return self.reset()

    def teardown(self) -> bool:
        return self._kv.delete(self._key)

    async def _get_queue(self) -> WarmUpQueue:
        queue = decode_queue(self._kv.get(self._key))
        if queue is None:
            queue = await self.requeue()
        return queue

    def _save(self, queue: WarmUpQueue) -> bool:
        if not self._kv.set(self._key, encode_queue(queue)):
            logger.warning("Failed to persist warm-up queue. key=%s", self._key)
            return False
        return True

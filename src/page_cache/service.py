from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Union

from page_cache.cache.lock import DummyLock, FileLock, Lock
from page_cache.cache.size_tracker import SizeTracker
from page_cache.cache.store import Store
from page_cache.config.models import AppConfig
from page_cache.http.client import AiohttpHttpClient, HttpClient
from page_cache.models import DEFAULT_REQUEST_VARIANT, Item, RequestContext
from page_cache.state.kv_store import JsonFileKeyValueStore, KeyValueStore
from page_cache.warmup.crawler import Crawler
from page_cache.warmup.feeder import Feeder, UrlListProvider
from page_cache.warmup.scheduler import AsyncioScheduler, Scheduler
from page_cache.warmup.sitemap import XmlSitemapReader

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class CachedPage:
    body: bytes
    compressed: bool


@dataclass(frozen=True, slots=True)
class CacheStatus:
    size: Optional[int]
    age: Optional[int]
    warm_up: Optional[Dict[str, int]]
    next_run_at: Optional[float]


class PageCacheService:
    """
    Wires store, feeder and crawler together from the application config.

    Flushing the cache resets the warm-up queue and plans a warm-up run (when warm-up is enabled).
    """

    def __init__(
        self,
        config: AppConfig,
        *,
        kv_store: Optional[KeyValueStore] = None,
        http_client: Optional[HttpClient] = None,
        scheduler: Optional[Scheduler] = None,
    ) -> None:
        self._config = config
        self._kv = kv_store if kv_store is not None else JsonFileKeyValueStore(config.state.state_dir)

        self._owned_http_client: Optional[AiohttpHttpClient] = None
        if http_client is None:
            self._owned_http_client = AiohttpHttpClient(timeout_seconds=config.warm_up.request_timeout_seconds)
            http_client = self._owned_http_client
        self._http = http_client
        self._scheduler = scheduler if scheduler is not None else AsyncioScheduler()

        self._cache_lock = self._build_lock(config.cache.lock_path)
        self._feeder_lock = self._build_lock(config.warm_up.feeder_lock_path)

        self.store = Store(
            config.cache.cache_dir,
            SizeTracker(self._kv),
            self._cache_lock,
            compression_level=config.cache.compression_level,
        )

        warm_up = config.warm_up
        url_provider = UrlListProvider(
            home_url=warm_up.home_url,
            sitemap_reader=XmlSitemapReader(
                self._http,
                robots_txt_url=warm_up.robots_txt_url or "",
                default_sitemap_url=warm_up.sitemap_url or "",
            ),
            initial_urls=warm_up.initial_urls,
            exclude_patterns=warm_up.exclude_url_patterns,
        )
        self.feeder = Feeder(
            self.store,
            self._kv,
            self._feeder_lock,
            url_provider,
            self.request_variants,
        )
        self.crawler = Crawler(
            self.store,
            self.feeder,
            self._http,
            self._scheduler,
            warm_up,
            self._kv,
            request_headers={token: variant.headers for token, variant in config.cache.request_variants.items()},
        )
        self.store.add_flush_listener(self._on_flush)

    @property
    def request_variants(self) -> List[str]:
        return list(self._config.cache.request_variants)

    @property
    def warm_up_enabled(self) -> bool:
        return self._config.warm_up.enabled

    def _build_lock(self, path: str) -> Lock:
        if self._config.cache.locking_enabled:
            return FileLock(path)
        return DummyLock()

    def _on_flush(self, full_wipe: bool) -> None:
        self.feeder.reset()
        if full_wipe or not self._config.warm_up.enabled:
            self.crawler.deactivate()
            return
        self.crawler.on_invalidation()

    def setup(self) -> bool:
        if not (self._cache_lock.setup() and self._feeder_lock.setup()):
            return False
        if not self.store.setup():
            return False
        self.feeder.setup()
        if self._config.warm_up.enabled:
            self.crawler.activate()
        logger.info("Page cache set up. cache_dir=%s", self.store.cache_dir)
        return True

    def teardown(self) -> bool:
        self.crawler.deactivate()
        ok = self.store.teardown()
        self.feeder.teardown()
        ok = self._cache_lock.teardown() and ok
        ok = self._feeder_lock.teardown() and ok
        logger.info("Page cache torn down. cache_dir=%s ok=%s", self.store.cache_dir, ok)
        return ok

    async def close(self) -> None:
        if isinstance(self._scheduler, AsyncioScheduler):
            await self._scheduler.close()
        if self._owned_http_client is not None:
            await self._owned_http_client.stop()

    def flush_once(self, ctx: RequestContext) -> bool:
        """Flush the cache unless it has already been flushed while handling the same request."""
        if ctx.flush_result is None:
            ctx.flush_result = self.store.flush()
        return ctx.flush_result

    async def delete(self, url: str, request_variant: Optional[str] = None) -> bool:
        """Delete cached data of `url` and queue it for warm-up again."""
        if not self.store.delete(url, request_variant):
            return False

        if self._config.warm_up.enabled:
            variants = [request_variant] if request_variant is not None else self.request_variants
            for variant in variants:
                item = Item(url=url, request_variant=variant)
                if not await self.feeder.push(item):
                    logger.warning(
                        "Failed to queue deleted entry for warm-up. url=%s request_variant=%r",
                        item.url,
                        item.request_variant,
                    )
            self.crawler.activate()
        return True

    def serve(
        self,
        url: str,
        request_variant: str = DEFAULT_REQUEST_VARIANT,
        *,
        accepts_gzip: bool = False,
    ) -> Optional[CachedPage]:
        """Return the cached page for `url`, gzipped when the client accepts it and a compressed copy exists."""
        if accepts_gzip:
            body = self.store.read(url, request_variant, compressed=True)
            if body is not None:
                return CachedPage(body=body, compressed=True)
        body = self.store.read(url, request_variant)
        if body is None:
            return None
        return CachedPage(body=body, compressed=False)

    def store_response(
        self,
        url: str,
        payload: Union[bytes, str],
        request_variant: str = DEFAULT_REQUEST_VARIANT,
    ) -> Optional[int]:
        return self.store.write(url, payload, request_variant)

    async def status(self) -> CacheStatus:
        warm_up_stats: Optional[Dict[str, int]] = None
        if self._config.warm_up.enabled:
            await self.feeder.synchronize()
            warm_up_stats = await self.feeder.get_stats()
        return CacheStatus(
            size=self.store.get_size(),
            age=self.store.get_age(),
            warm_up=warm_up_stats,
            next_run_at=self.crawler.next_run_at(),
        )

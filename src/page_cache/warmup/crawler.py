from __future__ import annotations

import enum
import logging
from typing import Mapping, Optional

from page_cache.cache.store import Store
from page_cache.config.models import WarmUpSettings
from page_cache.http.client import HttpClient, HttpFetchError
from page_cache.models import Item
from page_cache.state.kv_store import KeyValueStore
from page_cache.warmup.feeder import Feeder
from page_cache.warmup.scheduler import Scheduler

logger = logging.getLogger(__name__)

NEXT_RUN_KEY = "page-cache/crawler-next-run"


class CrawlerState(enum.Enum):
    IDLE = "idle"
    SCHEDULED = "scheduled"
    RUNNING = "running"


class Crawler:
    """
    Warms the cache up by requesting every queued (URL, variant) pair that is not cached yet.

    Runs are time-boxed by a budget and resumable: the queue is persisted by the feeder, so a run
    that stops early (budget spent, failure, killed process) continues where it left off on the
    next run. A run never retries; the first failed fetch ends it without rescheduling.
    """

    def __init__(
        self,
        store: Store,
        feeder: Feeder,
        http_client: HttpClient,
        scheduler: Scheduler,
        settings: WarmUpSettings,
        kv_store: KeyValueStore,
        *,
        request_headers: Optional[Mapping[str, Mapping[str, str]]] = None,
    ) -> None:
        self._store = store
        self._feeder = feeder
        self._http = http_client
        self._scheduler = scheduler
        self._settings = settings
        self._kv = kv_store
        self._request_headers = dict(request_headers or {})
        self._state = CrawlerState.IDLE

    @property
    def state(self) -> CrawlerState:
        return self._state

    def on_invalidation(self) -> None:
        """Plan a delayed run after the cache has been invalidated."""
        self.schedule(self._settings.invocation_delay_seconds)

    activate = on_invalidation

    def schedule(self, delay: float = 0) -> None:
        self._scheduler.cancel_scheduled(self.tick)
        self._scheduler.schedule_once(delay, self.tick)
        self._kv.set(NEXT_RUN_KEY, self._scheduler.now() + delay)
        self._state = CrawlerState.SCHEDULED
        logger.info("Warm-up run scheduled. delay_seconds=%s", delay)

    def deactivate(self) -> None:
        self._scheduler.cancel_scheduled(self.tick)
        self._kv.delete(NEXT_RUN_KEY)
        self._state = CrawlerState.IDLE

    def next_run_at(self) -> Optional[float]:
        value = self._kv.get(NEXT_RUN_KEY)
        if isinstance(value, (int, float)):
            return float(value)
        return None

    async def remaining_count(self) -> int:
        return await self._feeder.get_size()

    async def tick(self, tick_budget: Optional[float] = None) -> int:
        """One scheduler tick: run within the configured timeout, capped by the time left in the tick."""
        budget = self._settings.run_timeout_seconds
        if tick_budget is not None:
            budget = min(budget, tick_budget)
        return await self.run(budget)

    async def run(self, budget: Optional[float] = None) -> int:
        """
        Crawl queued items until the queue is empty, a fetch fails, or `budget` seconds have passed.

        The budget is checked after each step, so at least one item is processed. Returns the
        number of items still waiting.
        """

        self._state = CrawlerState.RUNNING
        self._kv.delete(NEXT_RUN_KEY)
        started_at = self._scheduler.now()
        processed = 0
        outcome = "exhausted"

        try:
            while True:
                item = await self._feeder.fetch_next()
                if item is None:
                    # None also means the feeder lock was busy; retry while items are waiting.
                    if await self._feeder.get_size() > 0:
                        outcome = "locked"
                        self.schedule(0)
                    else:
                        self._state = CrawlerState.IDLE
                    break

                if not await self._warm_up(item):
                    outcome = "failed"
                    self._state = CrawlerState.IDLE
                    break
                processed += 1

                if budget is not None and self._scheduler.now() - started_at >= budget:
                    if await self._feeder.get_size() > 0:
                        outcome = "timeout"
                        self.schedule(0)
                    else:
                        self._state = CrawlerState.IDLE
                    break
        except BaseException:
            self._state = CrawlerState.IDLE
            raise

        remaining = await self._feeder.get_size()
        logger.info(
            "Warm-up run finished. outcome=%s processed=%d remaining=%d elapsed_seconds=%.2f",
            outcome,
            processed,
            remaining,
            self._scheduler.now() - started_at,
        )
        return remaining

    async def _warm_up(self, item: Item) -> bool:
        if self._store.has(item.url, item.request_variant):
            logger.debug("Skipping cached item. url=%s variant=%s", item.url, item.request_variant)
            return True

        headers = self._request_headers.get(item.request_variant) or None
        try:
            response = await self._http.fetch(item.url, follow_redirects=False, headers=headers)
        except HttpFetchError as e:
            logger.warning(
                "Warm-up request failed, stopping run. url=%s variant=%s reason=%s",
                item.url,
                item.request_variant,
                e.reason,
            )
            return False

        if response.status_code >= 500:
            logger.warning(
                "Warm-up request got server error, stopping run. url=%s variant=%s status=%s",
                item.url,
                item.request_variant,
                response.status_code,
            )
            return False

        if self._settings.store_responses and response.status_code == 200:
            self._store.write(item.url, response.body, item.request_variant)

        logger.debug(
            "Warmed up item. url=%s variant=%s status=%s",
            item.url,
            item.request_variant,
            response.status_code,
        )
        return True

from page_cache.models import Item
from page_cache.warmup.crawler import Crawler, CrawlerState
from page_cache.warmup.feeder import Feeder, UrlListProvider
from page_cache.warmup.queue import WarmUpQueue

__all__ = ["Crawler", "CrawlerState", "Feeder", "Item", "UrlListProvider", "WarmUpQueue"]

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

DEFAULT_REQUEST_VARIANT = ""

# Never valid inside a raw URL, so it can separate URL and request variant.
ITEM_SEPARATOR = "\t"


@dataclass(frozen=True, slots=True)
class Item:
    """A single unit of cache: URL plus request variant."""

    url: str
    request_variant: str = DEFAULT_REQUEST_VARIANT

    def serialize(self) -> str:
        return f"{self.url}{ITEM_SEPARATOR}{self.request_variant}"

    @classmethod
    def deserialize(cls, value: str) -> Item:
        url, separator, request_variant = value.partition(ITEM_SEPARATOR)
        if not separator or not url:
            raise ValueError(f"Not a serialized item: {value!r}")
        return cls(url=url, request_variant=request_variant)


@dataclass(frozen=True, slots=True)
class CacheEntry:
    """A cache entry as found on disk."""

    entry_id: str
    path: str
    url: str
    request_variant: str
    timestamp: Optional[int]
    html_size: int
    gzip_size: int

    @property
    def size(self) -> int:
        return self.html_size + self.gzip_size

    def item(self) -> Item:
        return Item(url=self.url, request_variant=self.request_variant)


@dataclass(slots=True)
class RequestContext:
    """
    State bound to the lifetime of one incoming request.

    `flush_result` is None until the cache has been flushed while handling the request.
    """

    url: str = ""
    request_variant: str = DEFAULT_REQUEST_VARIANT
    flush_result: Optional[bool] = None

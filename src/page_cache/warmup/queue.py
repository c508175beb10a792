from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Iterable, List, Optional

from page_cache.models import Item

logger = logging.getLogger(__name__)

FORMAT_VERSION = 1


class WarmUpQueue:
    """
    Work list of warm-up items split into processed and waiting items.

    Waiting items form a LIFO stack: the next item to fetch sits at the end of the list.
    An item is never present in both lists at the same time.
    """

    def __init__(self, items: Iterable[Item] = ()) -> None:
        self._processed: List[Item] = []
        self._waiting: List[Item] = list(reversed(list(items)))

    @property
    def processed(self) -> List[Item]:
        return list(self._processed)

    @property
    def waiting(self) -> List[Item]:
        return list(self._waiting)

    @property
    def processed_count(self) -> int:
        return len(self._processed)

    @property
    def waiting_count(self) -> int:
        return len(self._waiting)

    @property
    def remaining_count(self) -> int:
        return len(self._waiting)

    @property
    def total_count(self) -> int:
        return len(self._processed) + len(self._waiting)

    def stats(self) -> Dict[str, int]:
        return {
            "processed": self.processed_count,
            "waiting": self.waiting_count,
            "total": self.total_count,
        }

    def is_empty(self) -> bool:
        return not self._waiting

    def fetch(self) -> Optional[Item]:
        """Pop the next item and mark it as processed."""
        if not self._waiting:
            return None
        item = self._waiting.pop()
        self._processed.append(item)
        return item

    def pull(self, item: Item) -> bool:
        """Mark `item` as processed. Returns True if the queue state has changed."""
        dirty = False
        if item in self._waiting:
            self._waiting.remove(item)
            dirty = True
        if item not in self._processed:
            self._processed.append(item)
            dirty = True
        return dirty

    def push(self, item: Item) -> bool:
        """Mark `item` as waiting and put it on top. Returns True if the queue state has changed."""
        dirty = False
        if item in self._processed:
            self._processed.remove(item)
            dirty = True
        if item not in self._waiting:
            self._waiting.append(item)
            dirty = True
        return dirty

    @classmethod
    def restore(cls, *, processed: Iterable[Item], waiting: Iterable[Item]) -> WarmUpQueue:
        """Rebuild a queue from its lists, `waiting` given in stack order."""
        queue = cls()
        queue._processed = list(processed)
        queue._waiting = list(waiting)
        return queue


def encode_queue(queue: WarmUpQueue) -> dict:
    return {
        "format_version": FORMAT_VERSION,
        "payload": {
            "processed": [item.serialize() for item in queue.processed],
            "waiting": [item.serialize() for item in queue.waiting],
        },
    }


def _decode_v1(payload: Dict[str, Any]) -> WarmUpQueue:
    return WarmUpQueue.restore(
        processed=[Item.deserialize(value) for value in payload["processed"]],
        waiting=[Item.deserialize(value) for value in payload["waiting"]],
    )


_DECODERS: Dict[int, Callable[[Dict[str, Any]], WarmUpQueue]] = {
    1: _decode_v1,
}


def decode_queue(document: Any) -> Optional[WarmUpQueue]:
    """Decode a persisted queue. Returns None when the document cannot be used (queue must be rebuilt)."""
    if not isinstance(document, dict):
        return None

    version = document.get("format_version")
    decoder = _DECODERS.get(version) if isinstance(version, int) else None
    if decoder is None:
        logger.info("Discarding warm-up queue with unknown format version. format_version=%r", version)
        return None

    try:
        return decoder(document["payload"])
    except (KeyError, TypeError, ValueError):
        logger.warning("Discarding malformed warm-up queue. format_version=%s", version, exc_info=True)
        return None

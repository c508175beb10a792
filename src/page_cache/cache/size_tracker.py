from __future__ import annotations

import logging
import time
from typing import Callable, Optional

from page_cache.state.kv_store import KeyValueStore

logger = logging.getLogger(__name__)

DEFAULT_INFO_KEY = "page-cache/cache-info"

AGE_FIELD = "age"
SIZE_FIELD = "size"


class SizeTracker:
    """
    Aggregate cache size and cache age, kept in the key-value store.

    The size is advisory: every update is a read-modify-write against shared storage, so
    concurrent writers may lose updates. A precise recount (Store.get_size(precise=True))
    restores it. The size never becomes negative: an underflow marks it unknown instead.
    """

    def __init__(
        self,
        kv_store: KeyValueStore,
        *,
        key: str = DEFAULT_INFO_KEY,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._kv = kv_store
        self._key = key
        self._clock = clock

    def _read(self) -> dict:
        data = self._kv.get(self._key)
        if not isinstance(data, dict):
            return {AGE_FIELD: None, SIZE_FIELD: None}
        return {AGE_FIELD: data.get(AGE_FIELD), SIZE_FIELD: data.get(SIZE_FIELD)}

    def _write(self, data: dict) -> bool:
        if not self._kv.set(self._key, data):
            logger.warning("Failed to persist cache info. key=%s", self._key)
            return False
        return True

    def get_size(self) -> Optional[int]:
        size = self._read()[SIZE_FIELD]
        return int(size) if size is not None else None

    def get_age(self) -> Optional[int]:
        age = self._read()[AGE_FIELD]
        return int(age) if age is not None else None

    def set_size(self, size: int) -> bool:
        if size < 0:
            return False
        data = self._read()
        data[SIZE_FIELD] = int(size)
        return self._write(data)

    def unset_size(self) -> bool:
        data = self._read()
        data[SIZE_FIELD] = None
        return self._write(data)

    def increment(self, num_bytes: int) -> bool:
        data = self._read()
        if data[SIZE_FIELD] is None:
            return True
        data[SIZE_FIELD] = int(data[SIZE_FIELD]) + num_bytes
        return self._write(data)

    def decrement(self, num_bytes: int) -> bool:
        data = self._read()
        size = data[SIZE_FIELD]
        if size is None:
            return True
        if size >= num_bytes:
            data[SIZE_FIELD] = int(size) - num_bytes
        else:
            logger.warning(
                "Cache size underflow, marking size as unknown. size=%s decrement=%s", size, num_bytes
            )
            data[SIZE_FIELD] = None
        return self._write(data)

    def adjust(self, delta: int) -> bool:
        return self.increment(delta) if delta >= 0 else self.decrement(-delta)

    def reset(self) -> bool:
        """Cache has just been flushed: age is now, size is zero."""
        return self._write({AGE_FIELD: int(self._clock()), SIZE_FIELD: 0})

    def clear(self) -> bool:
        """Forget everything (size and age become unknown)."""
        return self._kv.delete(self._key)

from __future__ import annotations

import hashlib
import json
import logging
import time
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Protocol, Tuple

from page_cache.io import atomic_write_json, read_json_file

logger = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    """Small transient store for scalar state shared between processes."""

    def get(self, key: str) -> Optional[Any]:
        ...

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> bool:
        ...

    def delete(self, key: str) -> bool:
        ...


class MemoryKeyValueStore:
    def __init__(self, *, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._data: Dict[str, Tuple[Any, Optional[float]]] = {}

    def get(self, key: str) -> Optional[Any]:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and expires_at <= self._clock():
            del self._data[key]
            return None
        return value

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> bool:
        expires_at = self._clock() + ttl if ttl is not None else None
        self._data[key] = (value, expires_at)
        return True

    def delete(self, key: str) -> bool:
        self._data.pop(key, None)
        return True


class JsonFileKeyValueStore:
    """
    One JSON document per key under `state_dir`.

    Values must be JSON serializable. Expiry is stored next to the value and checked on read.
    """

    def __init__(self, state_dir: str, *, clock: Callable[[], float] = time.time) -> None:
        self._state_dir = Path(state_dir)
        self._clock = clock

    def _key_path(self, key: str) -> Path:
        digest = hashlib.sha256(key.encode("utf-8")).hexdigest()
        return self._state_dir / f"{digest}.json"

    def get(self, key: str) -> Optional[Any]:
        path = self._key_path(key)
        if not path.exists():
            return None
        try:
            document = read_json_file(path)
        except (OSError, json.JSONDecodeError):
            logger.warning("Failed to read state file, ignoring it. key=%s path=%s", key, path, exc_info=True)
            return None
        if not isinstance(document, dict) or document.get("key") != key:
            logger.warning("Unexpected state file content, ignoring it. key=%s path=%s", key, path)
            return None
        expires_at = document.get("expires_at")
        if expires_at is not None and float(expires_at) <= self._clock():
            path.unlink(missing_ok=True)
            return None
        return document.get("value")

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> bool:
        document = {
            "key": key,
            "value": value,
            "expires_at": self._clock() + ttl if ttl is not None else None,
        }
        try:
            atomic_write_json(self._key_path(key), document)
        except (OSError, TypeError, ValueError):
            logger.warning("Failed to write state file. key=%s", key, exc_info=True)
            return False
        return True

    def delete(self, key: str) -> bool:
        try:
            self._key_path(key).unlink(missing_ok=True)
        except OSError:
            logger.warning("Failed to delete state file. key=%s", key, exc_info=True)
            return False
        return True

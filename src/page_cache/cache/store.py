from __future__ import annotations

import gzip
import logging
import os
import re
import shutil
import zlib
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Tuple, Union

from page_cache.cache.errors import CacheIoError, NotADirectory
from page_cache.cache.lock import Lock, hold
from page_cache.cache.path_codec import PathCodec
from page_cache.cache.size_tracker import SizeTracker
from page_cache.io import atomic_write_bytes
from page_cache.models import DEFAULT_REQUEST_VARIANT, CacheEntry

logger = logging.getLogger(__name__)

VARIANT_RE = re.compile(r"^[A-Za-z0-9_]*$")
_ENTRY_FILE_RE = re.compile(r"^index(?:-(?P<variant>[A-Za-z0-9_]+))?\.html(?P<gzip>\.gz)?$")

FlushListener = Callable[[bool], None]


def is_valid_request_variant(request_variant: str) -> bool:
    return bool(VARIANT_RE.match(request_variant))


def base_filename(request_variant: str = DEFAULT_REQUEST_VARIANT) -> str:
    return f"index-{request_variant}" if request_variant else "index"


def html_filename(request_variant: str = DEFAULT_REQUEST_VARIANT) -> str:
    return base_filename(request_variant) + ".html"


def gzip_filename(request_variant: str = DEFAULT_REQUEST_VARIANT) -> str:
    return base_filename(request_variant) + ".html.gz"


def _raise_walk_error(error: OSError) -> None:
    raise error


def _file_size(path: Path) -> int:
    try:
        return path.stat().st_size if path.is_file() else 0
    except FileNotFoundError:
        return 0


def _delete_file(path: Path) -> int:
    """Delete a regular file, return the number of bytes removed from disk."""
    if not path.exists():
        return 0
    if not path.is_file():
        raise CacheIoError(f"Could not delete a non-regular file {path}.")
    size = path.stat().st_size
    path.unlink()
    return size


def _files_size(dirname: Path) -> int:
    """Total size of all regular files in `dirname` and its subdirectories."""
    if not dirname.is_dir():
        raise NotADirectory(f"{dirname} is not a directory!")
    size = 0
    for dirpath, _, filenames in os.walk(dirname, onerror=_raise_walk_error):
        for filename in filenames:
            try:
                stat = os.lstat(os.path.join(dirpath, filename))
            except FileNotFoundError:
                # Removed by a concurrent writer after the directory has been listed.
                continue
            size += stat.st_size
    return size


def _remove_directory(dirname: Path, *, contents_only: bool) -> None:
    if not dirname.is_dir():
        raise NotADirectory(f"{dirname} is not a directory!")
    if not contents_only:
        shutil.rmtree(dirname)
        return
    for child in dirname.iterdir():
        if child.is_dir() and not child.is_symlink():
            shutil.rmtree(child)
        else:
            child.unlink()


def _collect_entry_sizes(root: Path) -> List[Tuple[str, str, int, int, Optional[int]]]:
    """
    Walk the cache tree once and return (dirpath, request_variant, html_size, gzip_size, mtime)
    for every variant with a non-empty payload. Pure container directories yield nothing.
    """
    if not root.is_dir():
        raise NotADirectory(f"{root} is not a directory!")

    found: List[Tuple[str, str, int, int, Optional[int]]] = []
    for dirpath, _, filenames in os.walk(root, onerror=_raise_walk_error):
        sizes: Dict[str, List[Optional[int]]] = {}
        for filename in filenames:
            match = _ENTRY_FILE_RE.match(filename)
            if not match:
                continue
            try:
                stat = os.stat(os.path.join(dirpath, filename))
            except FileNotFoundError:
                continue
            variant = match.group("variant") or DEFAULT_REQUEST_VARIANT
            html_size, gzip_size, mtime = sizes.setdefault(variant, [0, 0, None])
            if match.group("gzip"):
                gzip_size = stat.st_size
            else:
                html_size = stat.st_size
                mtime = int(stat.st_mtime)
            sizes[variant] = [html_size, gzip_size, mtime]

        for variant, (html_size, gzip_size, mtime) in sorted(sizes.items()):
            if html_size + gzip_size > 0:
                found.append((dirpath, variant, html_size, gzip_size, mtime))
    return found


class Store:
    """
    On-disk page cache.

    Layout: CACHE_DIR/{scheme}/{host}/{path}/index[-{variant}].html plus a gzipped twin with
    `.html.gz` suffix. Mutations are serialized with an exclusive lock; reads are lock-free.
    Errors are logged and reported through the return value, never raised.
    """

    def __init__(
        self,
        cache_dir: str,
        size_tracker: SizeTracker,
        lock: Lock,
        *,
        compression_level: int = 9,
    ) -> None:
        self._codec = PathCodec(os.path.abspath(cache_dir))
        self._cache_dir = Path(self._codec.root)
        self._size_tracker = size_tracker
        self._lock = lock
        self._compression_level = compression_level
        self._flush_listeners: List[FlushListener] = []

    @property
    def cache_dir(self) -> Path:
        return self._cache_dir

    @property
    def codec(self) -> PathCodec:
        return self._codec

    def add_flush_listener(self, listener: FlushListener) -> None:
        """Register `listener(full_wipe)` to be called after every successful flush."""
        self._flush_listeners.append(listener)

    def setup(self) -> bool:
        """Make sure the cache directory exists, is empty and writable."""
        try:
            if self._cache_dir.is_dir():
                _remove_directory(self._cache_dir, contents_only=True)
            else:
                self._cache_dir.mkdir(parents=True, exist_ok=True)
        except (OSError, NotADirectory):
            logger.warning("Failed to set up cache directory. path=%s", self._cache_dir, exc_info=True)
            return False

        if not os.access(self._cache_dir, os.W_OK):
            logger.warning("Cache directory is not writable. path=%s", self._cache_dir)
            return False

        self._size_tracker.reset()
        return True

    def teardown(self) -> bool:
        return self.flush(full_wipe=True)

    def write(self, url: str, payload: Union[bytes, str], request_variant: str = DEFAULT_REQUEST_VARIANT) -> Optional[int]:
        """Store `payload` for `url`. Returns the number of bytes written or None on failure."""
        data = payload.encode("utf-8") if isinstance(payload, str) else payload

        if not is_valid_request_variant(request_variant):
            logger.warning("Invalid request variant, not caching. url=%s request_variant=%r", url, request_variant)
            return None

        path = self._resolve(url)
        if path is None:
            return None

        with hold(self._lock, exclusive=True, non_blocking=True) as acquired:
            if not acquired:
                logger.debug("Cache is locked, skipping write. url=%s", url)
                return None

            try:
                path.mkdir(parents=True, exist_ok=True)
            except OSError:
                logger.warning("Unable to create cache directory. url=%s path=%s", url, path, exc_info=True)
                return None

            html_path = path / html_filename(request_variant)
            gzip_path = path / gzip_filename(request_variant)
            try:
                previous = _file_size(html_path) + _file_size(gzip_path)
                written = atomic_write_bytes(html_path, data)
                written += self._write_compressed(gzip_path, data)
            except OSError:
                logger.warning("Failed to write cache entry. url=%s path=%s", url, path, exc_info=True)
                self._size_tracker.unset_size()
                return None

            self._size_tracker.adjust(written - previous)

        logger.debug("Cache entry written. url=%s request_variant=%r bytes=%d", url, request_variant, written)
        return written

    def _write_compressed(self, gzip_path: Path, data: bytes) -> int:
        try:
            compressed = gzip.compress(data, compresslevel=self._compression_level)
            return atomic_write_bytes(gzip_path, compressed)
        except (zlib.error, OSError):
            logger.debug("Skipping compressed cache file. path=%s", gzip_path, exc_info=True)
        # Never leave a compressed copy of older content behind.
        gzip_path.unlink(missing_ok=True)
        return 0

    def has(self, url: str, request_variant: str = DEFAULT_REQUEST_VARIANT) -> bool:
        if not is_valid_request_variant(request_variant):
            return False
        path = self._resolve(url, quiet=True)
        if path is None:
            return False
        return (path / html_filename(request_variant)).is_file()

    def read(
        self,
        url: str,
        request_variant: str = DEFAULT_REQUEST_VARIANT,
        *,
        compressed: bool = False,
    ) -> Optional[bytes]:
        if not is_valid_request_variant(request_variant):
            return None
        path = self._resolve(url, quiet=True)
        if path is None:
            return None
        filename = gzip_filename(request_variant) if compressed else html_filename(request_variant)
        try:
            return (path / filename).read_bytes()
        except FileNotFoundError:
            return None
        except OSError:
            logger.warning("Failed to read cache entry. url=%s path=%s", url, path / filename, exc_info=True)
            return None

    def delete(self, url: str, request_variant: Optional[str] = None) -> bool:
        """
        Delete cached data of `url`: a single request variant or, if none given, all of them.

        Deleting an entry that does not exist succeeds.
        """
        if request_variant is not None and not is_valid_request_variant(request_variant):
            logger.warning("Invalid request variant. url=%s request_variant=%r", url, request_variant)
            return False

        path = self._resolve(url)
        if path is None:
            return False

        if not path.exists():
            return True

        with hold(self._lock, exclusive=True) as acquired:
            if not acquired:
                logger.warning("Could not acquire cache lock for delete. url=%s", url)
                return False

            try:
                variants = [request_variant] if request_variant is not None else self._variants_in(path)
                bytes_deleted = 0
                for variant in variants:
                    bytes_deleted += _delete_file(path / html_filename(variant))
                    bytes_deleted += _delete_file(path / gzip_filename(variant))
                self._remove_if_empty(path)
            except (OSError, CacheIoError):
                logger.warning("Failed to delete cache entry. url=%s path=%s", url, path, exc_info=True)
                self._size_tracker.unset_size()
                return False

            self._size_tracker.decrement(bytes_deleted)

        logger.debug("Cache entry deleted. url=%s request_variant=%r bytes=%d", url, request_variant, bytes_deleted)
        return True

    def flush(self, full_wipe: bool = False) -> bool:
        """
        Remove all cache entries. With `full_wipe` the cache directory itself is removed and
        size tracking is cleared, as no writes are expected until the next setup.
        """
        with hold(self._lock, exclusive=True) as acquired:
            if not acquired:
                logger.warning("Could not acquire cache lock for flush. path=%s", self._cache_dir)
                return False

            if self._cache_dir.is_dir():
                try:
                    _remove_directory(self._cache_dir, contents_only=not full_wipe)
                except (OSError, NotADirectory):
                    logger.warning("Failed to flush cache. path=%s", self._cache_dir, exc_info=True)
                    self._size_tracker.unset_size()
                    return False

            if full_wipe:
                self._size_tracker.clear()
            else:
                self._size_tracker.reset()

        logger.info("Cache flushed. path=%s full_wipe=%s", self._cache_dir, full_wipe)
        self._notify_flushed(full_wipe)
        return True

    def _notify_flushed(self, full_wipe: bool) -> None:
        for listener in self._flush_listeners:
            try:
                listener(full_wipe)
            except Exception:
                logger.exception("Cache flush listener failed. listener=%r", listener)

    def inspect(self) -> Optional[List[CacheEntry]]:
        """List all cache entries. Returns None if the cache could not be read."""
        if not self._cache_dir.is_dir():
            return []

        with hold(self._lock, exclusive=False) as acquired:
            if not acquired:
                logger.warning("Could not acquire cache lock for inspect. path=%s", self._cache_dir)
                return None
            try:
                found = _collect_entry_sizes(self._cache_dir)
            except (OSError, NotADirectory):
                logger.warning("Failed to inspect cache. path=%s", self._cache_dir, exc_info=True)
                return None

        entries: List[CacheEntry] = []
        for dirpath, variant, html_size, gzip_size, mtime in found:
            result = self._codec.try_decode(dirpath)
            if not result.ok:
                logger.warning("Skipping cache directory with no valid URL. path=%s error=%s", dirpath, result.error)
                continue
            entry_path = Path(dirpath) / base_filename(variant)
            entries.append(
                CacheEntry(
                    entry_id=entry_path.relative_to(self._cache_dir).as_posix(),
                    path=dirpath,
                    url=result.value or "",
                    request_variant=variant,
                    timestamp=mtime,
                    html_size=html_size,
                    gzip_size=gzip_size,
                )
            )
        entries.sort(key=lambda entry: entry.entry_id)
        return entries

    def get_size(self, precise: bool = False) -> Optional[int]:
        """Aggregate size of cache data in bytes or None if it cannot be determined."""
        if not precise:
            size = self._size_tracker.get_size()
            if size is not None:
                return size

        with hold(self._lock, exclusive=False) as acquired:
            if not acquired:
                logger.warning("Could not acquire cache lock for size computation. path=%s", self._cache_dir)
                return None
            try:
                size = _files_size(self._cache_dir) if self._cache_dir.is_dir() else 0
            except (OSError, NotADirectory):
                logger.warning("Failed to compute cache size. path=%s", self._cache_dir, exc_info=True)
                return None

        self._size_tracker.set_size(size)
        return size

    def get_age(self) -> Optional[int]:
        """Time (unix timestamp) of the last full flush or None if unknown."""
        return self._size_tracker.get_age()

    def _resolve(self, url: str, *, quiet: bool = False) -> Optional[Path]:
        result = self._codec.try_encode(url)
        if not result.ok:
            if not quiet:
                logger.warning("Invalid cache URL. url=%s error=%s", url, result.error)
            return None
        return Path(result.value or "")

    def _variants_in(self, path: Path) -> Iterable[str]:
        variants = set()
        for child in path.iterdir():
            match = _ENTRY_FILE_RE.match(child.name)
            if match and child.is_file():
                variants.add(match.group("variant") or DEFAULT_REQUEST_VARIANT)
        return sorted(variants)

    def _remove_if_empty(self, path: Path) -> None:
        # Directories holding nested pages stay.
        if path != self._cache_dir and not any(path.iterdir()):
            path.rmdir()

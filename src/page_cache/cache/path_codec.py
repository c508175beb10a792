from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Generic, Optional, TypeVar
from urllib.parse import urlsplit

from page_cache.cache.errors import InvalidPath, InvalidUrl, PathCodecError

SEPARATOR = "/"

_DRIVE_RE = re.compile(r"^[A-Za-z]:$")

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class CodecResult(Generic[T]):
    value: Optional[T] = None
    error: Optional[PathCodecError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def normalize(path: str) -> str:
    """
    Normalize an absolute path.

    Both separator variants are turned into `/`, empty and `.` segments are dropped and `..`
    pops the previous segment (never the root marker). No trailing separator is kept except
    for the bare root.
    """
    if not path:
        raise InvalidPath("Cannot normalize an empty path.")

    parts = path.replace("\\", SEPARATOR).split(SEPARATOR)
    root = parts[0]
    if root and not _DRIVE_RE.match(root):
        raise InvalidPath(f"Path is not absolute: {path}")

    absolutes = [root]
    for part in parts[1:]:
        if not part or part == ".":
            continue
        if part == "..":
            if len(absolutes) > 1:
                absolutes.pop()
        else:
            absolutes.append(part)

    if len(absolutes) == 1:
        return root + SEPARATOR
    return SEPARATOR.join(absolutes)


class PathCodec:
    """Bidirectional mapping between page URLs and cache directories."""

    def __init__(self, cache_root: str) -> None:
        self._root = normalize(cache_root)
        self._prefix = self._root.rstrip(SEPARATOR) + SEPARATOR

    @property
    def root(self) -> str:
        return self._root

    def normalize(self, path: str) -> str:
        return normalize(path)

    def encode(self, url: str) -> str:
        try:
            parts = urlsplit(url.strip())
            port = parts.port
        except ValueError as e:
            raise InvalidUrl(f"Could not parse URL {url}: {e}") from e

        scheme = parts.scheme.lower()
        host = (parts.hostname or "").lower()
        if not scheme or not host:
            raise InvalidUrl(f"URL must have a scheme and a host: {url}")
        if port is not None:
            host = f"{host}:{port}"

        base = self._prefix + scheme + SEPARATOR + host
        try:
            normalized_base = normalize(base)
            normalized = normalize(base + SEPARATOR + parts.path)
        except InvalidPath as e:
            raise InvalidUrl(f"Could not retrieve a valid cache path from URL {url}.") from e

        # Host must map to exactly one segment and the page path must stay below it.
        if normalized_base != base:
            raise InvalidUrl(f"Could not retrieve a valid cache path from URL {url}.")
        if normalized != base and not normalized.startswith(base + SEPARATOR):
            raise InvalidUrl(f"Could not retrieve a valid cache path from URL {url}.")
        return normalized

    def decode(self, path: str) -> str:
        normalized = normalize(path)
        if not normalized.startswith(self._prefix):
            raise InvalidPath(f"Path {path} is not a valid cache path.")

        parts = normalized[len(self._prefix) :].split(SEPARATOR, 1)
        if len(parts) != 2 or not parts[0] or not parts[1]:
            raise InvalidPath(f"Could not retrieve a valid URL from cache path {path}.")
        scheme, remainder = parts
        return f"{scheme}://{remainder}/"

    def try_encode(self, url: str) -> CodecResult[str]:
        try:
            return CodecResult(value=self.encode(url))
        except PathCodecError as e:
            return CodecResult(error=e)

    def try_decode(self, path: str) -> CodecResult[str]:
        try:
            return CodecResult(value=self.decode(path))
        except PathCodecError as e:
            return CodecResult(error=e)

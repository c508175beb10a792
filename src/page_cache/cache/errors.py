from __future__ import annotations


class PageCacheError(Exception):
    """Base class for all cache errors."""


class PathCodecError(PageCacheError):
    pass


class InvalidUrl(PathCodecError):
    pass


class InvalidPath(PathCodecError):
    pass


class CacheIoError(PageCacheError):
    """Directory or file could not be created, read, written or removed."""


class NotADirectory(PageCacheError):
    pass

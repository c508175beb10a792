from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Mapping, Optional, Protocol

import aiohttp

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0


class HttpFetchError(Exception):
    """No HTTP response could be obtained (connection error, timeout, ...)."""

    def __init__(self, url: str, reason: str) -> None:
        super().__init__(f"Failed to fetch {url}: {reason}")
        self.url = url
        self.reason = reason


@dataclass(frozen=True, slots=True)
class HttpResponse:
    status_code: int
    body: str = ""


class HttpClient(Protocol):
    async def fetch(
        self,
        url: str,
        *,
        follow_redirects: bool = True,
        headers: Optional[Mapping[str, str]] = None,
    ) -> HttpResponse:
        ...


class AiohttpHttpClient:
    """HttpClient on top of a shared aiohttp session."""

    def __init__(self, *, timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS, user_agent: str = "page-cache") -> None:
        self._timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._user_agent = user_agent
        self._session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self) -> AiohttpHttpClient:
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()

    async def start(self) -> None:
        if self._session is not None:
            return
        self._session = aiohttp.ClientSession(
            timeout=self._timeout,
            headers={"User-Agent": self._user_agent},
        )

    async def stop(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None

    async def fetch(
        self,
        url: str,
        *,
        follow_redirects: bool = True,
        headers: Optional[Mapping[str, str]] = None,
    ) -> HttpResponse:
        should_close = False
        if self._session is None:
            await self.start()
            should_close = True

        try:
            assert self._session is not None
            logger.debug("HTTP request. url=%s follow_redirects=%s", url, follow_redirects)
            async with self._session.get(
                url,
                allow_redirects=follow_redirects,
                headers=dict(headers) if headers else None,
            ) as response:
                body = await response.text(errors="replace")
                return HttpResponse(status_code=response.status, body=body)
        except asyncio.TimeoutError as e:
            raise HttpFetchError(url, "timeout") from e
        except aiohttp.ClientError as e:
            raise HttpFetchError(url, str(e) or type(e).__name__) from e
        finally:
            if should_close:
                await self.stop()

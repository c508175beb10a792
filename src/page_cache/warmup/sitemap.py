from __future__ import annotations

import logging
import re
from typing import List

from bs4 import BeautifulSoup

from page_cache.http.client import HttpClient, HttpFetchError

logger = logging.getLogger(__name__)

_ROBOTS_SITEMAP_RE = re.compile(r"^[Ss]itemap: ?(.+)$", re.MULTILINE)


class SitemapError(Exception):
    pass


def _parse(xml: str) -> BeautifulSoup:
    # html.parser keeps tag names lowercase, which is what the sitemap protocol uses anyway.
    return BeautifulSoup(xml, "html.parser")


def _locations(soup: BeautifulSoup, container: str) -> List[str]:
    locations: List[str] = []
    for element in soup.find_all(container):
        loc = element.find("loc")
        if loc is None:
            continue
        value = loc.get_text(strip=True)
        if value:
            locations.append(value)
    return locations


def read_urls_from_sitemap(xml: str) -> List[str]:
    """Return all page URLs of an XML sitemap in document order."""
    soup = _parse(xml)
    if soup.find("urlset") is None:
        return []
    return _locations(soup, "url")


def read_sitemaps_from_index(xml: str) -> List[str]:
    """Return all sitemap URLs listed in an XML sitemap index."""
    soup = _parse(xml)
    if soup.find("sitemapindex") is None:
        return []
    return _locations(soup, "sitemap")


def read_sitemaps_from_robots_txt(robots_txt: str) -> List[str]:
    return [match.strip() for match in _ROBOTS_SITEMAP_RE.findall(robots_txt) if match.strip()]


class XmlSitemapReader:
    """
    Reads page URLs from XML sitemaps (and sitemap indexes) of a site.

    Sitemaps are discovered through `Sitemap:` lines in robots.txt, `default_sitemap_url` is used
    when robots.txt lists none.
    """

    def __init__(self, http_client: HttpClient, *, robots_txt_url: str, default_sitemap_url: str) -> None:
        self._http = http_client
        self._robots_txt_url = robots_txt_url
        self._default_sitemap_url = default_sitemap_url

    async def get_urls(self) -> List[str]:
        robots_txt = await self._get(self._robots_txt_url)
        sitemap_urls = read_sitemaps_from_robots_txt(robots_txt)
        if not sitemap_urls:
            return await self._fetch(self._default_sitemap_url)

        urls: List[str] = []
        for sitemap_url in sitemap_urls:
            urls.extend(await self._fetch(sitemap_url))
        return urls

    async def _fetch(self, url: str, *, expect_sitemap: bool = False) -> List[str]:
        body = await self._get(url)
        soup = _parse(body)

        if soup.find("sitemapindex") is not None:
            # Sitemap index entries must point to real sitemaps.
            if expect_sitemap:
                return []
            urls: List[str] = []
            for sitemap_url in read_sitemaps_from_index(body):
                urls.extend(await self._fetch(sitemap_url, expect_sitemap=True))
            return urls

        if soup.find("urlset") is not None:
            return read_urls_from_sitemap(body)

        logger.warning("Document is neither XML sitemap nor sitemap index. url=%s", url)
        return []

    async def _get(self, url: str) -> str:
        try:
            response = await self._http.fetch(url)
        except HttpFetchError as e:
            raise SitemapError(f"Could not get remote URL {url}: {e.reason}") from e
        if response.status_code != 200:
            raise SitemapError(f"Could not get remote URL {url}! status={response.status_code}")
        return response.body

"""Async page metadata fetcher with rate limiting."""

import asyncio
import logging
from urllib.parse import urlparse

import aiohttp
from bs4 import BeautifulSoup

from ..storage.models import PageMetadata
from .base import MetadataSource

logger = logging.getLogger(__name__)


def fallback_metadata(url: str) -> PageMetadata:
    """Metadata derived from the URL alone: the hostname without www. as title."""
    host = urlparse(url).hostname
    if host:
        title = host[4:] if host.startswith("www.") else host
        return PageMetadata(url=url, title=title, description="", domain=host, fallback=True)
    return PageMetadata(url=url, title=url, description="", fallback=True)


def parse_metadata(url: str, html_content: str) -> PageMetadata:
    """Extract Open Graph and standard meta tags from HTML."""
    soup = BeautifulSoup(html_content, "html.parser")

    def meta(attr: str, value: str) -> str | None:
        tag = soup.find("meta", attrs={attr: value})
        if tag and tag.get("content"):
            content = tag["content"].strip()
            return content or None
        return None

    title = meta("property", "og:title")
    if not title and soup.title and soup.title.string:
        title = soup.title.string.strip() or None

    return PageMetadata(
        url=url,
        title=title,
        description=meta("property", "og:description") or meta("name", "description"),
        image_url=meta("property", "og:image"),
        site_name=meta("property", "og:site_name"),
        domain=urlparse(url).netloc or None,
    )


class MetadataFetcher(MetadataSource):
    """Fetch page metadata over HTTP with per-domain rate limiting.

    Network, HTTP and parse failures never raise: the result falls back to
    metadata derived from the URL.
    """

    def __init__(
        self,
        requests_per_second: float = 1.0,
        timeout_seconds: float = 15.0,
        max_content_length: int = 1_000_000,
        user_agent: str = "LinkTagger/1.0",
    ):
        self.min_interval = 1.0 / requests_per_second
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self.max_content_length = max_content_length
        self.user_agent = user_agent
        self._domain_last_request: dict[str, float] = {}
        self._lock = asyncio.Lock()

    async def fetch(self, url: str, scope: str | None = None) -> PageMetadata:
        """Fetch and parse the metadata of a page."""
        domain = urlparse(url).netloc
        await self._rate_limit(domain)

        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                headers = {"User-Agent": self.user_agent}
                async with session.get(
                    url, headers=headers, allow_redirects=True
                ) as response:
                    if response.status != 200:
                        logger.warning(f"HTTP {response.status} fetching {url}")
                        return fallback_metadata(url)

                    content_type = response.headers.get("content-type", "")
                    if "text/html" not in content_type.lower():
                        logger.info(f"Non-HTML content ({content_type}) at {url}")
                        return fallback_metadata(url)

                    content = await response.text()
                    if len(content) > self.max_content_length:
                        content = content[: self.max_content_length]

            metadata = parse_metadata(url, content)
            if not metadata.title:
                metadata.title = fallback_metadata(url).title
            return metadata

        except asyncio.TimeoutError:
            logger.warning(f"Timed out fetching {url}")
        except aiohttp.ClientError as e:
            logger.warning(f"Failed to fetch {url}: {e}")
        except UnicodeDecodeError as e:
            logger.warning(f"Could not decode {url}: {e}")
        return fallback_metadata(url)

    async def _rate_limit(self, domain: str) -> None:
        """Apply per-domain rate limiting."""
        async with self._lock:
            now = asyncio.get_running_loop().time()
            last_request = self._domain_last_request.get(domain, 0)
            wait_time = self.min_interval - (now - last_request)
            if wait_time > 0:
                await asyncio.sleep(wait_time)
            self._domain_last_request[domain] = asyncio.get_running_loop().time()

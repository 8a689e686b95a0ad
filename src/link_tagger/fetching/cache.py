"""TTL and size bounded memoization keyed by URL."""

import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable
from urllib.parse import urlsplit, urlunsplit

from ..storage.models import PageMetadata
from .base import MetadataSource

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 120.0
DEFAULT_MAX_ENTRIES = 100


def normalize_url(url: str) -> str:
    """Cache key form of a URL: lower-case scheme and host, no fragment or trailing slash."""
    parts = urlsplit(url.strip())
    path = parts.path.rstrip("/")
    return urlunsplit(
        (parts.scheme.lower(), parts.netloc.lower(), path, parts.query, "")
    )


@dataclass
class _Entry:
    value: Any
    stored_at: float


class UrlCache:
    """TTL and capacity bounded cache keyed by normalized URL and user scope.

    Absence is always safe: callers fall through to the real source.
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: OrderedDict[tuple[str, str | None], _Entry] = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, url: str, scope: str | None = None) -> Any:
        key = (normalize_url(url), scope)
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() - entry.stored_at >= self.ttl_seconds:
            del self._entries[key]
            return None
        return entry.value

    def put(self, url: str, scope: str | None, value: Any) -> None:
        key = (normalize_url(url), scope)
        # Re-inserting moves the key to the end so eviction stays oldest-first
        self._entries.pop(key, None)
        self._entries[key] = _Entry(value=value, stored_at=self._clock())
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)

    def clear(self) -> None:
        self._entries.clear()


class MetadataCache(UrlCache):
    """Page metadata by URL, kept for a couple of minutes by default."""

    def get(self, url: str, scope: str | None = None) -> PageMetadata | None:
        return super().get(url, scope)


class CachedMetadataSource(MetadataSource):
    """Pass-through memoization in front of another metadata source."""

    def __init__(self, source: MetadataSource, cache: MetadataCache | None = None):
        self.source = source
        self.cache = cache if cache is not None else MetadataCache()

    async def fetch(self, url: str, scope: str | None = None) -> PageMetadata:
        cached = self.cache.get(url, scope)
        if cached is not None:
            logger.debug(f"Metadata cache hit for {url}")
            return cached

        metadata = await self.source.fetch(url, scope)
        # Hostname fallbacks are not worth remembering
        if not metadata.fallback:
            self.cache.put(url, scope, metadata)
        return metadata

"""Abstract base class for metadata sources."""

from abc import ABC, abstractmethod

from ..storage.models import PageMetadata


class MetadataSource(ABC):
    """Something that can describe the page behind a URL."""

    @abstractmethod
    async def fetch(self, url: str, scope: str | None = None) -> PageMetadata:
        """Fetch metadata for a URL on behalf of a user scope."""
        pass

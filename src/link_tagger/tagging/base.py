"""Abstract base class for tag suggesters."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from ..policy.plans import Plan
from ..storage.models import PageMetadata


@dataclass
class TagSuggestions:
    """Candidate tag names with the resource usage of producing them."""

    tags: list[str] = field(default_factory=list)
    from_cache: bool = False
    tokens_used: int = 0
    cost: float = 0.0


class TagSuggester(ABC):
    """Produces candidate tag names for a page."""

    @abstractmethod
    async def suggest(
        self,
        metadata: PageMetadata,
        scope: str | None = None,
        plan: Plan | None = None,
    ) -> TagSuggestions:
        """Suggest tags for the page.

        Raises QuotaExceededError when the provider's resources are
        exhausted and SuggestionError for any other provider failure.
        """
        pass

    @property
    @abstractmethod
    def model_name(self) -> str:
        """Return the model identifier."""
        pass

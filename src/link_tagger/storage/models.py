"""Data models for saved links and tags."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional


class LinkStatus(Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    NEEDS_ACTION = "needs_action"
    ERROR = "error"


class TagProvenance(Enum):
    MANUAL = "manual"
    AI = "ai"
    RECOMMENDED = "recommended"


class Priority(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


def normalize_tag_name(name: str) -> str:
    """Uniqueness key of a tag name: trimmed and case-folded."""
    return name.strip().casefold()


@dataclass
class PageMetadata:
    """Metadata fetched for a URL."""

    url: str
    title: Optional[str] = None
    description: Optional[str] = None
    image_url: Optional[str] = None
    site_name: Optional[str] = None
    domain: Optional[str] = None
    fallback: bool = False


@dataclass
class Tag:
    """A user-scoped label, unique by normalized name."""

    id: str
    name: str
    provenance: TagProvenance = TagProvenance.MANUAL
    user_id: str = "local"
    created_at: Optional[datetime] = None


@dataclass
class AIAnalysis:
    """Outcome of the AI tagging step attached to a completed link."""

    keywords: list[str] = field(default_factory=list)
    from_cache: bool = False
    tokens_used: int = 0
    cost: float = 0.0
    skipped_tags: list[str] = field(default_factory=list)
    analyzed_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict:
        return {
            "keywords": self.keywords,
            "from_cache": self.from_cache,
            "tokens_used": self.tokens_used,
            "cost": self.cost,
            "skipped_tags": self.skipped_tags,
            "analyzed_at": self.analyzed_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "AIAnalysis":
        return cls(
            keywords=list(data.get("keywords", [])),
            from_cache=bool(data.get("from_cache", False)),
            tokens_used=int(data.get("tokens_used", 0)),
            cost=float(data.get("cost", 0.0)),
            skipped_tags=list(data.get("skipped_tags", [])),
            analyzed_at=datetime.fromisoformat(data["analyzed_at"])
            if data.get("analyzed_at")
            else datetime.now(),
        )


@dataclass
class LinkError:
    """Structured error payload shown for links in the error state."""

    code: str
    message: str
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "LinkError":
        return cls(
            code=data["code"],
            message=data["message"],
            timestamp=datetime.fromisoformat(data["timestamp"]),
        )


@dataclass
class Link:
    """A saved URL with its tags and lifecycle status."""

    id: str
    url: str
    user_id: str = "local"
    title: Optional[str] = None
    description: Optional[str] = None
    domain: str = ""
    status: LinkStatus = LinkStatus.PENDING

    # Tag ids may dangle once a tag is deleted
    tag_ids: list[str] = field(default_factory=list)

    is_read: bool = False
    is_bookmarked: bool = False
    is_archived: bool = False
    priority: Priority = Priority.MEDIUM

    ai_analysis: Optional[AIAnalysis] = None
    error: Optional[LinkError] = None

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

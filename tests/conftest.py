"""
Shared pytest fixtures for link-tagger tests.

Provides fake metadata sources and tag suggesters so no test touches the
network or AWS.
"""

import asyncio
from pathlib import Path
from typing import Callable
from urllib.parse import urlparse

import pytest

from link_tagger.fetching.base import MetadataSource
from link_tagger.policy.plans import Plan, PlanTier
from link_tagger.processing.pipeline import LinkProcessor
from link_tagger.processing.registry import ProcessingRegistry
from link_tagger.storage.database import Database
from link_tagger.storage.models import Link, LinkStatus, PageMetadata, TagProvenance
from link_tagger.tagging.base import TagSuggester, TagSuggestions
from link_tagger.tagging.vocabulary import TagVocabulary


class FakeMetadataSource(MetadataSource):
    """Returns canned metadata; can be told to fail or to be slow."""

    def __init__(self, error: Exception | None = None, fail_times: int | None = None, delay: float = 0):
        self.error = error
        self.fail_times = fail_times
        self.delay = delay
        self.calls: list[tuple[str, str | None]] = []

    async def fetch(self, url: str, scope: str | None = None) -> PageMetadata:
        self.calls.append((url, scope))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None and (
            self.fail_times is None or len(self.calls) <= self.fail_times
        ):
            raise self.error
        return PageMetadata(
            url=url,
            title="Example page",
            description="A page about things",
            domain=urlparse(url).netloc,
        )


class FakeSuggester(TagSuggester):
    """Suggests a fixed tag list; can fail, or run a hook when called."""

    def __init__(
        self,
        tags: list[str] | None = None,
        error: Exception | None = None,
        fail_times: int | None = None,
        on_call: Callable[[], None] | None = None,
    ):
        self.tags = tags if tags is not None else []
        self.error = error
        self.fail_times = fail_times
        self.on_call = on_call
        self.calls: list[PageMetadata] = []

    @property
    def model_name(self) -> str:
        return "fake-model"

    async def suggest(self, metadata, scope=None, plan=None) -> TagSuggestions:
        self.calls.append(metadata)
        if self.on_call:
            self.on_call()
        await asyncio.sleep(0)
        if self.error is not None and (
            self.fail_times is None or len(self.calls) <= self.fail_times
        ):
            raise self.error
        return TagSuggestions(tags=list(self.tags), from_cache=False, tokens_used=42, cost=0.001)


@pytest.fixture
def db(tmp_path: Path) -> Database:
    return Database(tmp_path / "links.db")


@pytest.fixture
def make_link(db: Database):
    """Insert a link and return it."""

    def _make(
        url: str = "https://example.com/article",
        status: LinkStatus = LinkStatus.PENDING,
        tag_ids: list[str] | None = None,
        title: str | None = None,
        user_id: str = "local",
    ) -> Link:
        link = Link(
            id="",
            url=url,
            user_id=user_id,
            title=title,
            status=status,
            tag_ids=list(tag_ids or []),
        )
        db.insert_link(link)
        return link

    return _make


@pytest.fixture
def add_tag(db: Database):
    """Insert a tag with a fixed id."""

    def _add(name: str, tag_id: str | None = None, user_id: str = "local"):
        return db.insert_tag(user_id, name, TagProvenance.MANUAL, tag_id=tag_id)

    return _add


@pytest.fixture
def make_processor(db: Database):
    """Build a LinkProcessor around fakes with retries that do not sleep."""

    def _make(
        suggester: TagSuggester | None = None,
        source: MetadataSource | None = None,
        plan: Plan = PlanTier.UNLIMITED,
        registry: ProcessingRegistry | None = None,
        vocabulary: TagVocabulary | None = None,
        **kwargs,
    ) -> LinkProcessor:
        kwargs.setdefault("retry_delay", 0)
        return LinkProcessor(
            db=db,
            vocabulary=vocabulary or TagVocabulary(db, "local", plan),
            metadata_source=source or FakeMetadataSource(),
            suggester=suggester or FakeSuggester(),
            registry=registry,
            **kwargs,
        )

    return _make

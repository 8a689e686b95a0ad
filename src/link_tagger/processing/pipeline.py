"""Per-link AI tagging pipeline."""

import asyncio
import logging
import sqlite3
from dataclasses import dataclass, field
from typing import Iterable

from ..errors import (
    LinkNotFoundError,
    PlanLimitError,
    QuotaExceededError,
    TagLimitError,
)
from ..fetching.base import MetadataSource
from ..policy.plans import remaining_tag_slots
from ..policy.usage import AIUsageTracker
from ..storage.database import Database
from ..storage.models import AIAnalysis, Link, LinkError, LinkStatus, PageMetadata
from ..tagging.base import TagSuggester, TagSuggestions
from ..tagging.reconcile import reconcile_tags
from ..tagging.vocabulary import TagVocabulary
from .registry import ProcessingRegistry
from .retry import retry_async

logger = logging.getLogger(__name__)

# Registry progress after each step of a run
PROGRESS_STARTED = 0.1
PROGRESS_FETCHING = 0.3
PROGRESS_FETCHED = 0.6
PROGRESS_SUGGESTED = 0.8

QUOTA_MESSAGE = "The monthly AI tagging limit has been reached."
FAILURE_CODE = "AUTO_TAG_GENERATION_FAILED"
FAILURE_MESSAGE = "An error occurred while generating tags automatically."


@dataclass
class ProcessingOutcome:
    """Final state of one pipeline run as seen by the caller."""

    link_id: str
    status: LinkStatus | None
    tag_ids: list[str] = field(default_factory=list)
    created_tag_ids: list[str] = field(default_factory=list)
    skipped_tags: list[str] = field(default_factory=list)
    notice: str | None = None
    error_code: str | None = None
    started: bool = True
    deleted: bool = False

    @property
    def skipped_count(self) -> int:
        return len(self.skipped_tags)

    @property
    def needs_action(self) -> bool:
        return self.status == LinkStatus.NEEDS_ACTION


class LinkProcessor:
    """Drive a link from pending to completed.

    One run fetches metadata, asks for tag suggestions, reconciles them with
    the vocabulary and persists the result, publishing progress to the
    registry on the way. Runs for different links are independent and may
    interleave. ``process`` never raises for a failure inside a run; the
    outcome and the persisted link describe what happened.
    """

    def __init__(
        self,
        db: Database,
        vocabulary: TagVocabulary,
        metadata_source: MetadataSource,
        suggester: TagSuggester,
        registry: ProcessingRegistry | None = None,
        metadata_timeout: float | None = 15.0,
        ai_timeout: float | None = None,
        retry_attempts: int = 3,
        retry_delay: float = 0.5,
        retry_backoff: float = 2.0,
        mark_errors: bool = False,
        usage: AIUsageTracker | None = None,
    ):
        self.db = db
        self.vocabulary = vocabulary
        self.metadata_source = metadata_source
        self.suggester = suggester
        self.registry = registry if registry is not None else ProcessingRegistry()
        self.metadata_timeout = metadata_timeout
        self.ai_timeout = ai_timeout
        self.retry_attempts = retry_attempts
        self.retry_delay = retry_delay
        self.retry_backoff = retry_backoff
        self.mark_errors = mark_errors
        self.usage = usage

    @property
    def user_id(self) -> str:
        return self.vocabulary.user_id

    async def process(
        self, link_id: str, selected_tag_ids: Iterable[str] | None = None
    ) -> ProcessingOutcome:
        """Run the tagging pipeline for one link."""
        try:
            preflight = self._preflight(link_id, selected_tag_ids)
        except Exception as e:
            logger.error(f"Could not start processing link {link_id}: {e!r}")
            return ProcessingOutcome(
                link_id=link_id, status=None, error_code=FAILURE_CODE, started=False
            )
        if isinstance(preflight, ProcessingOutcome):
            return preflight
        link, manual_ids = preflight

        handle = self.registry.start(link_id, PROGRESS_STARTED)
        try:
            if not self.db.update_link(
                self.user_id, link_id, status=LinkStatus.PROCESSING, tag_ids=manual_ids
            ):
                raise LinkNotFoundError(link_id)
            logger.info(f"Processing {link.url[:60]}...")

            if self.usage is not None:
                self.usage.check()

            handle.advance(PROGRESS_FETCHING)
            metadata = await self._fetch_metadata(link.url)
            handle.advance(PROGRESS_FETCHED)

            suggestions = await self._suggest(metadata)
            if self.usage is not None and not suggestions.from_cache:
                self.usage.record(suggestions.tokens_used, suggestions.cost, link_id=link_id)
            handle.advance(PROGRESS_SUGGESTED)

            # Fresh snapshot so tags created by concurrent runs are matched
            vocabulary = self.vocabulary.list_tags()
            result = await reconcile_tags(
                suggestions.tags,
                vocabulary,
                self.vocabulary.plan,
                manual_ids,
                self.vocabulary,
            )

            status = LinkStatus.COMPLETED
            if not result.tag_ids and result.skipped:
                status = LinkStatus.NEEDS_ACTION

            changes = {
                "status": status,
                "tag_ids": result.tag_ids,
                "ai_analysis": self._analysis(suggestions, result.skipped),
                "error": None,
            }
            if not link.title and metadata.title:
                changes["title"] = metadata.title
            if not link.description and metadata.description:
                changes["description"] = metadata.description
            if not self.db.update_link(self.user_id, link_id, **changes):
                raise LinkNotFoundError(link_id)

            notice = None
            if result.skipped:
                notice = (
                    f"Tag limit reached: {len(result.skipped)} suggested tag(s) "
                    "were not created. Upgrade your plan to keep them."
                )
            logger.info(
                f"  [{status.value}] {link.url[:50]}... -> {len(result.tag_ids)} tags "
                f"({len(result.created)} new, {len(result.skipped)} skipped)"
            )
            return ProcessingOutcome(
                link_id=link_id,
                status=status,
                tag_ids=result.tag_ids,
                created_tag_ids=[tag.id for tag in result.created],
                skipped_tags=result.skipped,
                notice=notice,
            )

        except LinkNotFoundError:
            logger.warning(f"Link {link_id} was deleted while being processed")
            return ProcessingOutcome(
                link_id=link_id,
                status=None,
                error_code=LinkNotFoundError.code,
                deleted=True,
            )

        except QuotaExceededError as e:
            logger.warning(f"AI quota exhausted while tagging {link.url[:60]}: {e}")
            error = LinkError(code=QuotaExceededError.code, message=QUOTA_MESSAGE)
            return self._fail(
                link_id, manual_ids, LinkStatus.ERROR, error, QuotaExceededError.code, QUOTA_MESSAGE
            )

        except PlanLimitError as e:
            logger.info(f"Plan limit while tagging {link.url[:60]}: {e}")
            return self._fail(
                link_id,
                manual_ids,
                LinkStatus.NEEDS_ACTION,
                link.error,
                e.code,
                "Plan limit reached. Upgrade your plan or tag this link manually.",
            )

        except Exception as e:
            logger.error(f"Failed to process {link.url[:60]}: {e!r}")
            if self.mark_errors:
                error = LinkError(code=FAILURE_CODE, message=FAILURE_MESSAGE)
                return self._fail(
                    link_id, manual_ids, LinkStatus.ERROR, error, FAILURE_CODE, FAILURE_MESSAGE
                )
            previous = link.status
            if previous == LinkStatus.PROCESSING:
                previous = LinkStatus.PENDING
            return self._fail(link_id, manual_ids, previous, link.error, FAILURE_CODE, None)

        finally:
            handle.finish()

    def _preflight(
        self, link_id: str, selected_tag_ids: Iterable[str] | None
    ) -> ProcessingOutcome | tuple[Link, list[str]]:
        """Load the link and decide whether a run may start.

        Returns the link with its manual tag ids, or the outcome of a run
        that is not started.
        """
        link = self.db.get_link(link_id)
        if link is not None and link.user_id != self.user_id:
            logger.warning(f"Link {link_id} belongs to another user; not processing")
            link = None
        if link is None:
            logger.warning(f"Link {link_id} not found; nothing to process")
            return ProcessingOutcome(
                link_id=link_id,
                status=None,
                error_code=LinkNotFoundError.code,
                started=False,
                deleted=True,
            )

        if link_id in self.registry:
            logger.info(f"Link {link_id} is already being processed")
            return ProcessingOutcome(
                link_id=link_id,
                status=link.status,
                tag_ids=list(link.tag_ids),
                error_code="ALREADY_PROCESSING",
                started=False,
            )

        manual_ids = list(dict.fromkeys(link.tag_ids + self._own_tag_ids(selected_tag_ids)))

        # Without manual tags the run can only tag through new or matched AI
        # suggestions; with no tag slots left it is not started at all.
        if not manual_ids and remaining_tag_slots(self.vocabulary.plan, self.vocabulary.count()) == 0:
            logger.info(f"Tag limit reached; not processing {link.url[:60]}")
            return ProcessingOutcome(
                link_id=link_id,
                status=LinkStatus.NEEDS_ACTION,
                tag_ids=list(link.tag_ids),
                notice="Tag limit reached. Upgrade your plan or tag this link manually.",
                error_code=TagLimitError.code,
                started=False,
            )

        return link, manual_ids

    async def process_many(self, link_ids: Iterable[str]) -> list[ProcessingOutcome]:
        """Process several links concurrently."""
        return list(await asyncio.gather(*(self.process(link_id) for link_id in link_ids)))

    async def process_pending(self, limit: int | None = None) -> list[ProcessingOutcome]:
        """Process the user's pending links, newest first."""
        links = self.db.list_links(self.user_id, status=LinkStatus.PENDING, limit=limit)
        if not links:
            logger.info("No pending links")
            return []
        logger.info(f"Processing {len(links)} pending links...")
        return await self.process_many(link.id for link in links)

    def _own_tag_ids(self, tag_ids: Iterable[str] | None) -> list[str]:
        """Keep only the ids of tags in this user's vocabulary."""
        if not tag_ids:
            return []
        known = {tag.id for tag in self.vocabulary.list_tags()}
        selected = list(tag_ids)
        foreign = [tag_id for tag_id in selected if tag_id not in known]
        if foreign:
            logger.warning(f"Ignoring unknown tag ids: {foreign}")
        return [tag_id for tag_id in selected if tag_id in known]

    async def _fetch_metadata(self, url: str) -> PageMetadata:
        return await retry_async(
            lambda: asyncio.wait_for(
                self.metadata_source.fetch(url, self.user_id), self.metadata_timeout
            ),
            attempts=self.retry_attempts,
            delay_secs=self.retry_delay,
            backoff_multiplier=self.retry_backoff,
            description=f"Metadata fetch for {url[:60]}",
        )

    async def _suggest(self, metadata: PageMetadata) -> TagSuggestions:
        return await retry_async(
            lambda: asyncio.wait_for(
                self.suggester.suggest(metadata, self.user_id, self.vocabulary.plan),
                self.ai_timeout,
            ),
            attempts=self.retry_attempts,
            delay_secs=self.retry_delay,
            backoff_multiplier=self.retry_backoff,
            description=f"Tag suggestion for {metadata.url[:60]}",
        )

    def _analysis(self, suggestions: TagSuggestions, skipped: list[str]) -> AIAnalysis:
        return AIAnalysis(
            keywords=list(suggestions.tags),
            from_cache=suggestions.from_cache,
            tokens_used=suggestions.tokens_used,
            cost=suggestions.cost,
            skipped_tags=list(skipped),
        )

    def _fail(
        self,
        link_id: str,
        manual_ids: list[str],
        status: LinkStatus,
        error: LinkError | None,
        code: str,
        notice: str | None,
    ) -> ProcessingOutcome:
        """Write the failure status; tag ids stay as they were when the run started."""
        try:
            deleted = not self.db.update_link(self.user_id, link_id, status=status, error=error)
        except sqlite3.Error as e:
            logger.error(f"Could not record the failure of link {link_id}: {e}")
            return ProcessingOutcome(
                link_id=link_id, status=None, notice=notice, error_code=code
            )
        if deleted:
            logger.warning(f"Link {link_id} was deleted while being processed")
        return ProcessingOutcome(
            link_id=link_id,
            status=None if deleted else status,
            tag_ids=[] if deleted else manual_ids,
            notice=notice,
            error_code=code,
            deleted=deleted,
        )

"""The user's tag vocabulary."""

import asyncio
import logging
import sqlite3

from ..errors import TagCreationError, TagLimitError
from ..policy.plans import Plan, can_create_tag, get_plan_limits
from ..storage.database import Database
from ..storage.models import Tag, TagProvenance, normalize_tag_name

logger = logging.getLogger(__name__)


def find_by_normalized_name(vocabulary: list[Tag], name: str) -> Tag | None:
    """Find the tag whose name matches ``name`` ignoring case and surrounding whitespace."""
    key = normalize_tag_name(name)
    for tag in vocabulary:
        if normalize_tag_name(tag.name) == key:
            return tag
    return None


class TagVocabulary:
    """Tag store for one user, backed by the database.

    Reads return fresh snapshots. Creation is the only suspending call and
    refuses to go past the plan's tag limit.
    """

    def __init__(self, db: Database, user_id: str, plan: Plan):
        self.db = db
        self.user_id = user_id
        self.plan = plan

    def list_tags(self) -> list[Tag]:
        return self.db.get_tags(self.user_id)

    def count(self) -> int:
        return self.db.count_tags(self.user_id)

    def find(self, name: str) -> Tag | None:
        return find_by_normalized_name(self.list_tags(), name)

    def check_room(self, names: list[str]) -> None:
        """Raise TagLimitError unless every new name in ``names`` fits the plan."""
        vocabulary = self.list_tags()
        new_keys = {
            normalize_tag_name(name)
            for name in names
            if name.strip() and find_by_normalized_name(vocabulary, name) is None
        }
        if new_keys and not can_create_tag(self.plan, len(vocabulary) + len(new_keys) - 1):
            raise TagLimitError(
                f"Tag limit reached; cannot create {len(new_keys)} new tag(s)"
            )

    async def create_tag(
        self, name: str, provenance: TagProvenance = TagProvenance.MANUAL
    ) -> Tag:
        """Create a tag, or return the existing one with the same normalized name.

        Raises TagLimitError when the plan has no room left and
        TagCreationError when the write fails.
        """
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._create, name, provenance)

    def _create(self, name: str, provenance: TagProvenance) -> Tag:
        existing = self.find(name)
        if existing is not None:
            return existing

        try:
            tag = self.db.insert_tag(
                self.user_id,
                name,
                provenance,
                max_tags=get_plan_limits(self.plan).max_tags,
            )
        except (sqlite3.Error, ValueError) as e:
            raise TagCreationError(f"Failed to create tag {name!r}: {e}") from e
        if tag is None:
            raise TagLimitError(f"Tag limit reached; cannot create {name!r}")

        logger.info(f"Created {provenance.value} tag {tag.name!r} ({tag.id})")
        return tag

    def delete_tag(self, tag_id: str) -> bool:
        """Delete one of the user's tags. Links that reference it keep the now dangling id."""
        deleted = self.db.delete_tag(self.user_id, tag_id)
        if deleted:
            logger.info(f"Deleted tag {tag_id}")
        return deleted

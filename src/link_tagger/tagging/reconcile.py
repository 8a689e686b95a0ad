"""Reconcile suggested tag names with a user's tag vocabulary.

Reconciliation is split in two:

- ``plan_reconciliation`` is pure. It normalizes the suggestions, resolves
  the ones that already exist, deduplicates the rest and cuts them down to
  the plan's remaining tag slots.
- ``reconcile_tags`` runs the plan: it creates the retained names through
  a tag store and merges every id with the link's manual tags.

Names are compared trimmed and case-folded; a created tag keeps the casing
of the first suggestion that asked for it. Because matching goes through the
vocabulary, running reconciliation again against a vocabulary that already
holds the created tags resolves them instead of creating duplicates.
"""

import logging
from dataclasses import dataclass, field
from typing import Iterable, Protocol

from ..errors import TagLimitError
from ..policy.plans import Plan, remaining_tag_slots
from ..storage.models import Tag, TagProvenance, normalize_tag_name

logger = logging.getLogger(__name__)


class TagStore(Protocol):
    async def create_tag(self, name: str, provenance: TagProvenance) -> Tag: ...


@dataclass
class ReconciliationPlan:
    """What reconciliation intends to do, before any tag is created."""

    existing_ids: list[str] = field(default_factory=list)
    to_create: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)


@dataclass
class ReconciliationResult:
    """Final tag ids for a link plus what happened to each suggestion."""

    tag_ids: list[str] = field(default_factory=list)
    existing_ids: list[str] = field(default_factory=list)
    created: list[Tag] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)

    @property
    def skipped_count(self) -> int:
        return len(self.skipped)


def _unique(ids: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    result = []
    for item in ids:
        if item not in seen:
            seen.add(item)
            result.append(item)
    return result


def plan_reconciliation(
    suggestions: Iterable[str], vocabulary: list[Tag], plan: Plan
) -> ReconciliationPlan:
    """Classify suggestions into existing matches, names to create and skipped names."""
    by_key = {normalize_tag_name(tag.name): tag for tag in vocabulary}

    existing_ids: list[str] = []
    to_create: list[str] = []
    pending_keys: set[str] = set()

    for raw in suggestions:
        name = raw.strip()
        if not name:
            continue
        key = normalize_tag_name(name)
        match = by_key.get(key)
        if match is not None:
            if match.id not in existing_ids:
                existing_ids.append(match.id)
        elif key not in pending_keys:
            pending_keys.add(key)
            to_create.append(name)

    headroom = remaining_tag_slots(plan, len(vocabulary))
    skipped: list[str] = []
    if headroom is not None and len(to_create) > headroom:
        skipped = to_create[headroom:]
        to_create = to_create[:headroom]

    return ReconciliationPlan(existing_ids=existing_ids, to_create=to_create, skipped=skipped)


async def reconcile_tags(
    suggestions: Iterable[str],
    vocabulary: list[Tag],
    plan: Plan,
    manual_tag_ids: Iterable[str],
    store: TagStore,
    provenance: TagProvenance = TagProvenance.AI,
) -> ReconciliationResult:
    """Map suggested names to tag ids, creating the missing ones within the plan's limit.

    Manual tag ids always come first in the result and are never dropped.
    A failed creation drops only that name; a TagLimitError raised by the
    store (another run used the last slots) skips the remaining names.
    """
    manual_ids = list(manual_tag_ids)
    plan_ = plan_reconciliation(suggestions, vocabulary, plan)
    result = ReconciliationResult(
        existing_ids=plan_.existing_ids, skipped=list(plan_.skipped)
    )

    if plan_.skipped:
        logger.info(
            f"Tag limit reached; skipping {len(plan_.skipped)} new tag(s): {plan_.skipped}"
        )

    for index, name in enumerate(plan_.to_create):
        try:
            tag = await store.create_tag(name, provenance)
        except TagLimitError:
            remaining = plan_.to_create[index:]
            logger.info(f"Tag limit reached while creating; skipping {remaining}")
            result.skipped.extend(remaining)
            break
        except Exception as e:
            logger.warning(f"Could not create tag {name!r}: {e}")
            result.failed.append(name)
            continue
        result.created.append(tag)

    result.tag_ids = _unique(
        manual_ids + plan_.existing_ids + [tag.id for tag in result.created]
    )
    return result

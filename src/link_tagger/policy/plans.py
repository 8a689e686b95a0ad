"""Plan tiers and quota decisions.

Every function here is pure: callers pass the plan and the current counts,
and decide themselves what to do when a check fails.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union


class PlanTier(Enum):
    FREE = "free"
    PLUS = "plus"
    UNLIMITED = "unlimited"


@dataclass(frozen=True)
class PlanLimits:
    """Count limits of a plan. ``None`` means unbounded."""

    max_links: Optional[int]
    max_tags: Optional[int]
    max_links_per_day: Optional[int]
    max_tags_per_request: Optional[int] = None
    max_ai_requests_per_month: Optional[int] = None
    max_ai_requests_per_day: Optional[int] = None


PLAN_LIMITS: dict[PlanTier, PlanLimits] = {
    PlanTier.FREE: PlanLimits(
        max_links=3,
        max_tags=15,
        max_links_per_day=5,
        max_tags_per_request=5,
        max_ai_requests_per_month=5,
        max_ai_requests_per_day=5,
    ),
    PlanTier.PLUS: PlanLimits(
        max_links=50,
        max_tags=500,
        max_links_per_day=25,
        max_tags_per_request=8,
        max_ai_requests_per_month=50,
        max_ai_requests_per_day=10,
    ),
    PlanTier.UNLIMITED: PlanLimits(max_links=None, max_tags=None, max_links_per_day=None),
}

Plan = Union[PlanTier, PlanLimits, str]


def get_plan_limits(plan: Plan) -> PlanLimits:
    """Resolve a tier name, a PlanTier or explicit limits to PlanLimits."""
    if isinstance(plan, PlanLimits):
        return plan
    if isinstance(plan, str):
        plan = PlanTier(plan.lower())
    return PLAN_LIMITS[plan]


def _under_limit(limit: Optional[int], count: int) -> bool:
    return limit is None or count < limit


def can_create_link(plan: Plan, current_link_count: int) -> bool:
    return _under_limit(get_plan_limits(plan).max_links, current_link_count)


def can_create_link_today(plan: Plan, today_count: int) -> bool:
    return _under_limit(get_plan_limits(plan).max_links_per_day, today_count)


def can_create_tag(plan: Plan, current_tag_count: int) -> bool:
    return _under_limit(get_plan_limits(plan).max_tags, current_tag_count)


def remaining_tag_slots(plan: Plan, current_tag_count: int) -> Optional[int]:
    """Number of tags that may still be created, or None when unbounded."""
    max_tags = get_plan_limits(plan).max_tags
    if max_tags is None:
        return None
    return max(max_tags - current_tag_count, 0)


def can_request_ai(plan: Plan, month_count: int, today_count: int) -> bool:
    """Whether another AI request fits the plan's monthly and daily allowance."""
    limits = get_plan_limits(plan)
    return _under_limit(limits.max_ai_requests_per_month, month_count) and _under_limit(
        limits.max_ai_requests_per_day, today_count
    )


def tags_per_request(plan: Optional[Plan], default: int) -> int:
    """Number of tags one AI request may suggest under the plan."""
    if plan is None:
        return default
    limit = get_plan_limits(plan).max_tags_per_request
    return default if limit is None else limit

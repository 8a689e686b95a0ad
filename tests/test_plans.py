"""Tests for plan limits and quota checks."""

import pytest

from link_tagger.policy.plans import (
    PlanLimits,
    PlanTier,
    can_create_link,
    can_create_link_today,
    can_create_tag,
    can_request_ai,
    get_plan_limits,
    remaining_tag_slots,
    tags_per_request,
)


def test_tier_limits():
    assert get_plan_limits(PlanTier.FREE) == PlanLimits(3, 15, 5, 5, 5, 5)
    assert get_plan_limits("plus") == PlanLimits(50, 500, 25, 8, 50, 10)
    assert get_plan_limits("UNLIMITED").max_tags is None


def test_explicit_limits_pass_through():
    custom = PlanLimits(max_links=1, max_tags=2, max_links_per_day=None)
    assert get_plan_limits(custom) is custom


def test_unknown_tier_rejected():
    with pytest.raises(ValueError):
        get_plan_limits("gold")


@pytest.mark.parametrize(
    "count, expected",
    [(0, True), (2, True), (3, False), (10, False)],
)
def test_can_create_link(count, expected):
    assert can_create_link(PlanTier.FREE, count) is expected


def test_can_create_link_today():
    assert can_create_link_today(PlanTier.PLUS, 24)
    assert not can_create_link_today(PlanTier.PLUS, 25)


def test_can_create_tag():
    assert can_create_tag(PlanTier.FREE, 14)
    assert not can_create_tag(PlanTier.FREE, 15)


def test_unbounded_plan_always_allows():
    assert can_create_link(PlanTier.UNLIMITED, 10_000)
    assert can_create_link_today(PlanTier.UNLIMITED, 10_000)
    assert can_create_tag(PlanTier.UNLIMITED, 10_000)
    assert remaining_tag_slots(PlanTier.UNLIMITED, 10_000) is None


def test_remaining_tag_slots_never_negative():
    assert remaining_tag_slots(PlanTier.FREE, 10) == 5
    assert remaining_tag_slots(PlanTier.FREE, 15) == 0
    assert remaining_tag_slots(PlanTier.FREE, 40) == 0


def test_can_request_ai_checks_month_and_day():
    assert can_request_ai(PlanTier.PLUS, 49, 9)
    assert not can_request_ai(PlanTier.PLUS, 50, 0)
    assert not can_request_ai(PlanTier.PLUS, 12, 10)
    assert can_request_ai(PlanTier.UNLIMITED, 10_000, 10_000)


def test_tags_per_request():
    assert tags_per_request(PlanTier.FREE, 10) == 5
    assert tags_per_request(PlanTier.PLUS, 10) == 8
    assert tags_per_request(PlanTier.UNLIMITED, 10) == 10
    assert tags_per_request(None, 7) == 7

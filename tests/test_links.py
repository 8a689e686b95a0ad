"""Tests for saving links under plan limits."""

from datetime import datetime, timedelta

import pytest

from link_tagger.errors import (
    DailyLinkLimitError,
    DuplicateLinkError,
    LinkLimitError,
    LinkNotFoundError,
)
from link_tagger.links import LinkService
from link_tagger.policy.plans import PlanLimits, PlanTier
from link_tagger.storage.models import LinkStatus, Priority


@pytest.fixture
def service(db):
    return LinkService(db, "local", PlanTier.UNLIMITED)


def test_new_link_is_pending(service, db):
    link = service.add_link(" https://example.com/post ", title="Post")
    stored = db.get_link(link.id)
    assert stored.url == "https://example.com/post"
    assert stored.status == LinkStatus.PENDING
    assert stored.tag_ids == []
    assert stored.domain == "example.com"


def test_hand_tagged_link_without_auto_tag_is_completed(service, db):
    link = service.add_link("https://example.com", tag_ids=["t1", "t1"], auto_tag=False)
    stored = db.get_link(link.id)
    assert stored.status == LinkStatus.COMPLETED
    assert stored.tag_ids == ["t1"]


def test_rejects_non_http_urls(service):
    with pytest.raises(ValueError):
        service.add_link("ftp://example.com/file")
    with pytest.raises(ValueError):
        service.add_link("not a url")


def test_rejects_duplicates(service):
    first = service.add_link("https://example.com")
    with pytest.raises(DuplicateLinkError) as excinfo:
        service.add_link("https://example.com")
    assert excinfo.value.link_id == first.id


def test_total_link_limit(db):
    service = LinkService(db, "local", PlanTier.FREE)
    for i in range(3):
        service.add_link(f"https://example.com/{i}")
    with pytest.raises(LinkLimitError):
        service.add_link("https://example.com/3")


def test_daily_link_limit_resets_next_day(db):
    service = LinkService(db, "local", PlanLimits(max_links=None, max_tags=None, max_links_per_day=2))
    day = datetime(2026, 3, 1, 9, 0)
    service.add_link("https://example.com/1", now=day)
    service.add_link("https://example.com/2", now=day + timedelta(hours=1))

    with pytest.raises(DailyLinkLimitError):
        service.add_link("https://example.com/3", now=day + timedelta(hours=2))

    service.add_link("https://example.com/3", now=day + timedelta(days=1))


def test_user_flags(service, db):
    link = service.add_link("https://example.com")
    service.mark_read(link.id)
    assert service.toggle_bookmark(link.id) is True
    service.archive(link.id)
    service.set_priority(link.id, Priority.HIGH)

    stored = db.get_link(link.id)
    assert stored.is_read and stored.is_bookmarked and stored.is_archived
    assert stored.priority == Priority.HIGH
    assert service.toggle_bookmark(link.id) is False


def test_missing_link(service):
    with pytest.raises(LinkNotFoundError):
        service.mark_read("missing")
    with pytest.raises(LinkNotFoundError):
        service.get_link("missing")
    assert service.delete_link("missing") is False


def test_other_users_links_untouchable(service, db, make_link):
    foreign = make_link(user_id="bob")

    with pytest.raises(LinkNotFoundError):
        service.archive(foreign.id)
    with pytest.raises(LinkNotFoundError):
        service.set_priority(foreign.id, Priority.HIGH)
    assert service.delete_link(foreign.id) is False

    stored = db.get_link(foreign.id)
    assert stored.is_archived is False
    assert stored.priority == Priority.MEDIUM


def test_set_tags(service, db):
    link = service.add_link("https://example.com")
    service.set_tags(link.id, ["t1", "t2", "t1"], LinkStatus.COMPLETED)

    stored = db.get_link(link.id)
    assert stored.tag_ids == ["t1", "t2"]
    assert stored.status == LinkStatus.COMPLETED

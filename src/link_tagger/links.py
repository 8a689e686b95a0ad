"""Saving links and changing their user-controlled flags."""

import logging
from datetime import datetime
from urllib.parse import urlparse

from .errors import (
    DailyLinkLimitError,
    DuplicateLinkError,
    LinkLimitError,
    LinkNotFoundError,
)
from .policy.plans import Plan, can_create_link, can_create_link_today
from .storage.database import Database
from .storage.models import Link, LinkStatus, Priority

logger = logging.getLogger(__name__)


class LinkService:
    """Link creation and user actions for one user under one plan."""

    def __init__(self, db: Database, user_id: str, plan: Plan):
        self.db = db
        self.user_id = user_id
        self.plan = plan

    def add_link(
        self,
        url: str,
        title: str | None = None,
        description: str | None = None,
        tag_ids: list[str] | None = None,
        auto_tag: bool = True,
        now: datetime | None = None,
    ) -> Link:
        """Save a URL.

        The link starts pending so the tagging pipeline can pick it up. With
        hand-picked tags and auto_tag disabled it starts completed.

        Raises DuplicateLinkError, LinkLimitError or DailyLinkLimitError.
        """
        url = url.strip()
        parsed = urlparse(url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError(f"Not an http(s) URL: {url!r}")

        existing = self.db.find_link_by_url(self.user_id, url)
        if existing is not None:
            raise DuplicateLinkError(url, existing.id)

        if not can_create_link(self.plan, self.db.count_links(self.user_id)):
            raise LinkLimitError("Link limit reached for the current plan")

        now = now or datetime.now()
        midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
        if not can_create_link_today(
            self.plan, self.db.count_links_created_since(self.user_id, midnight)
        ):
            raise DailyLinkLimitError("Daily link limit reached for the current plan")

        tag_ids = list(dict.fromkeys(tag_ids or []))
        status = LinkStatus.PENDING
        if tag_ids and not auto_tag:
            status = LinkStatus.COMPLETED

        link = Link(
            id="",
            url=url,
            user_id=self.user_id,
            title=title,
            description=description,
            domain=parsed.netloc,
            status=status,
            tag_ids=tag_ids,
            created_at=now,
        )
        self.db.insert_link(link)
        logger.info(f"Saved link {link.id}: {url[:60]}")
        return link

    def get_link(self, link_id: str) -> Link:
        link = self.db.get_link(link_id)
        if link is None or link.user_id != self.user_id:
            raise LinkNotFoundError(f"Link {link_id} not found")
        return link

    def delete_link(self, link_id: str) -> bool:
        """Delete one of the user's links. Safe while the link is being processed."""
        deleted = self.db.delete_link(self.user_id, link_id)
        if deleted:
            logger.info(f"Deleted link {link_id}")
        return deleted

    def mark_read(self, link_id: str, is_read: bool = True) -> None:
        self._update(link_id, is_read=is_read)

    def toggle_bookmark(self, link_id: str) -> bool:
        link = self.get_link(link_id)
        self._update(link_id, is_bookmarked=not link.is_bookmarked)
        return not link.is_bookmarked

    def archive(self, link_id: str, is_archived: bool = True) -> None:
        self._update(link_id, is_archived=is_archived)

    def set_priority(self, link_id: str, priority: Priority) -> None:
        self._update(link_id, priority=priority)

    def set_tags(
        self, link_id: str, tag_ids: list[str], status: LinkStatus | None = None
    ) -> None:
        """Replace the tag ids of a link, optionally moving it to a new status."""
        changes: dict = {"tag_ids": list(dict.fromkeys(tag_ids))}
        if status is not None:
            changes["status"] = status
        self._update(link_id, **changes)

    def _update(self, link_id: str, **changes) -> None:
        if not self.db.update_link(self.user_id, link_id, **changes):
            raise LinkNotFoundError(f"Link {link_id} not found")

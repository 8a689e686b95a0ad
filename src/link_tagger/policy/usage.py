"""Per-user AI request accounting against the plan's allowance."""

import logging
from datetime import datetime

from ..errors import QuotaExceededError
from ..storage.database import Database
from .plans import Plan, can_request_ai, get_plan_limits

logger = logging.getLogger(__name__)


def _start_of_day(now: datetime) -> datetime:
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


def _start_of_month(now: datetime) -> datetime:
    return _start_of_day(now).replace(day=1)


class AIUsageTracker:
    """Counts a user's AI requests and refuses new ones past the plan's allowance."""

    def __init__(self, db: Database, user_id: str, plan: Plan):
        self.db = db
        self.user_id = user_id
        self.plan = plan

    def summary(self, now: datetime | None = None) -> dict:
        """Usage this month and today, with the plan's allowance."""
        now = now or datetime.now()
        limits = get_plan_limits(self.plan)
        month = self.db.get_ai_usage(self.user_id, since=_start_of_month(now))
        today = self.db.get_ai_usage(self.user_id, since=_start_of_day(now))
        return {
            "month": month,
            "today": today,
            "monthly_limit": limits.max_ai_requests_per_month,
            "daily_limit": limits.max_ai_requests_per_day,
        }

    def check(self, now: datetime | None = None) -> None:
        """Raise QuotaExceededError when the monthly or daily allowance is used up."""
        usage = self.summary(now)
        if not can_request_ai(
            self.plan, usage["month"]["requests"], usage["today"]["requests"]
        ):
            logger.info(
                f"AI allowance used up for {self.user_id}: "
                f"{usage['month']['requests']} this month, {usage['today']['requests']} today"
            )
            raise QuotaExceededError("AI request allowance for the current plan is used up")

    def record(
        self,
        tokens_used: int,
        cost: float,
        link_id: str | None = None,
        now: datetime | None = None,
    ) -> None:
        self.db.record_ai_usage(self.user_id, tokens_used, cost, link_id=link_id, at=now)

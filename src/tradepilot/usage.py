"""Daily usage gate backed by subscription plans.

Each organization has a plan with a daily analysis limit. Counters are
keyed by the UTC calendar date, so a new allowance starts at UTC midnight.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Callable, Dict, Optional, Tuple

from dateutil.relativedelta import relativedelta

from .database import DEFAULT_PLAN, TradePilotDatabase
from .errors import UnknownPlanError
from .logging_config import get_logger
from .models import UsageCheck, UsageStats

logger = get_logger("usage")

UNLIMITED = -1


@dataclass(frozen=True)
class PlanConfig:
    """Display and limit settings for one subscription plan."""

    name: str
    price: int
    analysis_limit: int
    features: Tuple[str, ...]

    @property
    def is_unlimited(self) -> bool:
        return self.analysis_limit == UNLIMITED


PLAN_CONFIG: Dict[str, PlanConfig] = {
    "FREE": PlanConfig(
        name="Free",
        price=0,
        analysis_limit=3,
        features=(
            "3 market analyses per day",
            "Basic AI valuation",
            "Deal pipeline access",
            "Email support",
        ),
    ),
    "BASIC": PlanConfig(
        name="Basic",
        price=5,
        analysis_limit=10,
        features=(
            "10 market analyses per day",
            "Advanced AI valuation",
            "Deal pipeline access",
            "Real-time web scraping",
            "Priority email support",
        ),
    ),
    "PREMIUM": PlanConfig(
        name="Premium",
        price=10,
        analysis_limit=100,
        features=(
            "100 market analyses per day",
            "Advanced AI valuation",
            "Deal pipeline access",
            "Real-time web scraping",
            "Market insights & trends",
            "Priority support",
        ),
    ),
    "BUSINESS": PlanConfig(
        name="Business Dealer",
        price=30,
        analysis_limit=UNLIMITED,
        features=(
            "Unlimited market analyses",
            "Advanced AI valuation",
            "Deal pipeline access",
            "Real-time web scraping",
            "Market insights & trends",
            "Dedicated account manager",
            "24/7 phone support",
            "Custom integrations",
        ),
    ),
}


def get_plan_config(plan: str) -> PlanConfig:
    try:
        return PLAN_CONFIG[plan]
    except KeyError:
        raise UnknownPlanError(f"Unknown plan: {plan}") from None


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def usage_message(check: UsageCheck) -> str:
    """Human readable summary of the remaining allowance."""
    if check.is_unlimited:
        return "Unlimited analyses available"
    if check.remaining > 0:
        return f"{check.remaining} analyses remaining today"
    return "Daily limit reached. Upgrade to get more analyses."


def upgrade_message(check: UsageCheck) -> str:
    return f"You've used all {check.limit} analyses for today. Upgrade your plan for more analyses."


class UsageGate:
    """Per-organization daily analysis allowance."""

    def __init__(self, database: TradePilotDatabase, clock: Callable[[], datetime] = _utc_now) -> None:
        self.database = database
        self.clock = clock

    def today(self) -> date:
        """Current UTC calendar date."""
        moment = self.clock()
        if moment.tzinfo is not None:
            moment = moment.astimezone(timezone.utc)
        return moment.date()

    def get_organization_plan(self, organization_id: str) -> str:
        organization = self.database.get_organization(organization_id)
        plan = organization.get("plan") if organization else None
        if plan not in PLAN_CONFIG:
            if plan:
                logger.warning(f"Organization {organization_id} has unknown plan {plan!r}; treating as {DEFAULT_PLAN}")
            return DEFAULT_PLAN
        return plan

    def get_today_usage(self, organization_id: str) -> int:
        return self.database.get_usage_count(organization_id, self.today())

    def _check(self, plan: str, current_usage: int) -> UsageCheck:
        limit = PLAN_CONFIG[plan].analysis_limit
        if limit == UNLIMITED:
            return UsageCheck(allowed=True, current_usage=current_usage, limit=UNLIMITED, plan=plan, remaining=UNLIMITED)
        return UsageCheck(
            allowed=current_usage < limit,
            current_usage=current_usage,
            limit=limit,
            plan=plan,
            remaining=max(0, limit - current_usage),
        )

    def can_perform_analysis(self, organization_id: str) -> UsageCheck:
        """Read-only check of today's allowance."""
        plan = self.get_organization_plan(organization_id)
        return self._check(plan, self.get_today_usage(organization_id))

    def increment_usage(self, organization_id: str) -> int:
        count = self.database.increment_usage(organization_id, self.today())
        logger.debug(f"Usage for {organization_id} is now {count}")
        return count

    def try_consume(self, organization_id: str, usage_date: Optional[date] = None) -> UsageCheck:
        """Atomically claim one analysis from today's allowance.

        ``allowed`` reports whether the claim succeeded; ``current_usage`` is
        the count after the claim (unchanged when rejected).
        """
        plan = self.get_organization_plan(organization_id)
        limit = PLAN_CONFIG[plan].analysis_limit
        claimed, count = self.database.try_increment_usage(organization_id, usage_date or self.today(), limit)
        check = self._check(plan, count)
        check.allowed = claimed
        if not claimed:
            logger.info(f"Organization {organization_id} reached its daily limit of {limit}")
        return check

    def release(self, organization_id: str, usage_date: date) -> int:
        """Give back an analysis claimed by :meth:`try_consume` for work that did not complete."""
        count = self.database.decrement_usage(organization_id, usage_date)
        logger.info(f"Released one analysis for {organization_id} on {usage_date.isoformat()}")
        return count

    def get_usage_stats(self, organization_id: str) -> UsageStats:
        """Totals for today, the last 7 days and the last month."""
        plan = self.get_organization_plan(organization_id)
        today = self.today()
        today_usage = self.database.get_usage_count(organization_id, today)
        week_usage = self.database.sum_usage_since(organization_id, today - timedelta(days=7))
        month_usage = self.database.sum_usage_since(organization_id, today - relativedelta(months=1))
        daily_limit = PLAN_CONFIG[plan].analysis_limit
        remaining = UNLIMITED if daily_limit == UNLIMITED else max(0, daily_limit - today_usage)
        return UsageStats(
            today=today_usage,
            this_week=week_usage,
            this_month=month_usage,
            plan=plan,
            daily_limit=daily_limit,
            remaining=remaining,
        )

    def update_organization_plan(self, organization_id: str, plan: str) -> PlanConfig:
        """Move an organization to another plan.

        Raises:
            UnknownPlanError: ``plan`` is not one of the configured plans
        """
        config = get_plan_config(plan)
        self.database.set_plan(organization_id, plan)
        logger.info(f"Organization {organization_id} moved to plan {plan}")
        return config

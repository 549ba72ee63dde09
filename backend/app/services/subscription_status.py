"""
Subscription status derivation.

WHAT: Pure functions that classify a subscriber's billing state and compute
the next renewal instant.

WHY: Status is never stored. Every read path (listings, cancellation
checks, stats) calls derive_subscription_status so the rules live in one
place and cannot drift between endpoints.

HOW: Rules are evaluated in a fixed order, first match wins:
1. plan is free                        -> FREE
2. no renewal date                     -> CANCELED
3. renewal date at or before now       -> EXPIRED
4. no provider subscription            -> CANCELED
5. otherwise                           -> ACTIVE

EXPIRED outranks CANCELED so a lapsed, cancelled subscription reports that
it lapsed; CANCELED outranks ACTIVE because without a provider subscription
nothing will renew it.
"""

import calendar
import enum
from datetime import datetime
from typing import Optional, Union

from app.models.base import utcnow
from app.models.user import PlanTier


class SubscriptionStatus(str, enum.Enum):
    """Derived billing status of a subscriber."""

    FREE = "free"
    ACTIVE = "active"
    CANCELED = "canceled"
    EXPIRED = "expired"


def derive_subscription_status(
    plan: Union[PlanTier, str],
    renewal_date: Optional[datetime],
    provider_subscription_id: Optional[str],
    now: Optional[datetime] = None,
) -> SubscriptionStatus:
    """
    Classify a subscription from its stored fields.

    Total and side-effect free: any combination of inputs yields exactly one
    status.

    Args:
        plan: Current plan tier
        renewal_date: Next billing instant (naive UTC), if any
        provider_subscription_id: Paystack subscription code, if linked
        now: Reference time (defaults to current UTC time)

    Returns:
        The derived SubscriptionStatus
    """
    if PlanTier(plan) == PlanTier.FREE:
        return SubscriptionStatus.FREE

    if renewal_date is None:
        return SubscriptionStatus.CANCELED

    if now is None:
        now = utcnow()

    if renewal_date <= now:
        return SubscriptionStatus.EXPIRED

    if not provider_subscription_id:
        return SubscriptionStatus.CANCELED

    return SubscriptionStatus.ACTIVE


def status_for(user, now: Optional[datetime] = None) -> SubscriptionStatus:
    """Derive the status of a User (or any object with the billing fields)."""
    return derive_subscription_status(
        user.plan,
        user.renewal_date,
        user.paystack_subscription_id,
        now=now,
    )


def _add_months(start: datetime, months: int) -> datetime:
    """Shift by whole calendar months, clamping the day to the month's end."""
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return start.replace(year=year, month=month, day=day)


def add_billing_period(start: datetime, plan: Union[PlanTier, str]) -> datetime:
    """
    Compute the renewal instant one billing period after start.

    Calendar-aware: Jan 31 + 1 month is the last day of February, and
    Feb 29 + 1 year is Feb 28.

    Args:
        start: Period start
        plan: MONTHLY or YEARLY

    Returns:
        The next renewal datetime (time of day preserved)

    Raises:
        ValueError: If plan is FREE (free plans do not renew)
    """
    tier = PlanTier(plan)
    if tier == PlanTier.MONTHLY:
        return _add_months(start, 1)
    if tier == PlanTier.YEARLY:
        return _add_months(start, 12)
    raise ValueError("Free plan has no billing period")

"""
Subscription schemas for API request/response validation.

WHAT: Pydantic schemas for subscriber listings, statistics, cancellation,
reactivation and upgrades.

WHY: Schemas provide:
1. Type-safe request/response handling
2. Automatic validation with clear error messages
3. OpenAPI documentation generation
4. A single place where the derived subscription_status is attached to
   every subscriber we return

HOW: Uses Pydantic v2 with Field validators. Responses are built with
SubscriberResponse.from_user(), which runs the status deriver.
"""

import math
from datetime import datetime, timezone
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, ConfigDict, field_validator

from app.models.user import PlanTier
from app.services.subscription_status import SubscriptionStatus, status_for


def _to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    # Stored datetimes are naive UTC
    if value is not None and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _require_paid(value: PlanTier) -> PlanTier:
    if value == PlanTier.FREE:
        raise ValueError("plan must be monthly or yearly")
    return value


# ============================================================================
# Subscriber Schemas
# ============================================================================


class SubscriberResponse(BaseModel):
    """
    Subscriber with billing fields and derived status.

    WHY: Status is never stored; it is computed here from plan,
    renewal_date and paystack_subscription_id at response time.
    """

    model_config = ConfigDict(from_attributes=True)

    id: int = Field(..., description="User ID")
    email: str = Field(..., description="Email address")
    first_name: str = Field(..., description="First name")
    last_name: str = Field(..., description="Last name")
    username: Optional[str] = Field(None, description="Username")
    role: str = Field(..., description="User role")
    plan: PlanTier = Field(..., description="Current plan tier")
    renewal_date: Optional[datetime] = Field(None, description="Next renewal (UTC)")
    paystack_subscription_id: Optional[str] = Field(
        None, description="Linked Paystack subscription code"
    )
    subscription_status: SubscriptionStatus = Field(..., description="Derived status")
    days_until_renewal: Optional[int] = Field(
        None, description="Whole days until renewal_date (negative once passed)"
    )
    is_active: bool = Field(..., description="Whether the account is active")
    created_at: datetime = Field(..., description="Account creation timestamp")

    @classmethod
    def from_user(cls, user, now: datetime) -> "SubscriberResponse":
        days = None
        if user.renewal_date is not None:
            days = math.floor((user.renewal_date - now).total_seconds() / 86400)
        return cls(
            id=user.id,
            email=user.email,
            first_name=user.first_name,
            last_name=user.last_name or "",
            username=user.username,
            role=user.role.value,
            plan=user.plan,
            renewal_date=user.renewal_date,
            paystack_subscription_id=user.paystack_subscription_id,
            subscription_status=status_for(user, now=now),
            days_until_renewal=days,
            is_active=user.is_active,
            created_at=user.created_at,
        )


class SubscriberListResponse(BaseModel):
    """
    Paginated subscriber list response.

    WHY: Provides pagination metadata alongside items for the admin tables.
    """

    items: List[SubscriberResponse] = Field(..., description="Subscribers on this page")
    total: int = Field(..., description="Total subscribers matching filters")
    page: int = Field(..., description="Current page (1-based)")
    limit: int = Field(..., description="Page size")
    total_pages: int = Field(..., description="Number of pages")

    @classmethod
    def build(
        cls, items: List[SubscriberResponse], total: int, page: int, limit: int
    ) -> "SubscriberListResponse":
        return cls(
            items=items,
            total=total,
            page=page,
            limit=limit,
            total_pages=math.ceil(total / limit) if limit else 0,
        )


# ============================================================================
# Statistics Schemas
# ============================================================================


class StatusSummary(BaseModel):
    """Count of regular users per derived status."""

    active: int = 0
    canceled: int = 0
    expired: int = 0
    free: int = 0


class PlanBreakdown(BaseModel):
    """Per-tier counts of paid users."""

    plan: PlanTier
    total: int = 0
    active: int = 0
    canceled: int = 0
    expired: int = 0


class SubscriptionStatsResponse(BaseModel):
    """
    Subscription statistics for the admin dashboard.

    WHY: total_subscribers counts paid plans regardless of status;
    active_subscribers counts only those whose status derives as active.
    """

    total_users: int = Field(..., description="Active, non-deleted regular users")
    total_subscribers: int = Field(..., description="Users on a paid plan")
    active_subscribers: int = Field(..., description="Paid users with status active")
    summary: StatusSummary
    by_plan: List[PlanBreakdown]
    generated_at: datetime


# ============================================================================
# Subscription Change Schemas
# ============================================================================


class CancelSubscriptionRequest(BaseModel):
    """
    Cancel subscription request.

    WHY: Cancellation always takes effect at period end; the reason is
    recorded in logs only.
    """

    reason: Optional[str] = Field(
        default=None,
        max_length=500,
        description="Reason for cancellation (for analytics)",
    )


class CancelSubscriptionResponse(BaseModel):
    """Response after cancelling a subscription."""

    message: str
    cancellation_type: Literal["end_of_period"] = "end_of_period"
    access_until: Optional[datetime] = Field(
        None, description="Paid access continues until this instant"
    )
    subscriber: SubscriberResponse


class ReactivateSubscriptionRequest(BaseModel):
    """
    Staff override of a subscriber's billing fields.

    WHY: Used to restore access after a provider-side fix (e.g. a missed
    webhook). Values are written as given.
    """

    plan: PlanTier = Field(..., description="monthly or yearly")
    renewal_date: datetime = Field(..., description="New renewal date")
    paystack_subscription_id: Optional[str] = Field(
        default=None,
        max_length=100,
        description="Paystack subscription code to link, if any",
    )

    check_paid_plan = field_validator("plan")(_require_paid)

    @field_validator("renewal_date")
    @classmethod
    def normalize_renewal_date(cls, value: datetime) -> datetime:
        return _to_naive_utc(value)

    class Config:
        json_schema_extra = {
            "example": {
                "plan": "monthly",
                "renewal_date": "2025-03-01T00:00:00Z",
                "paystack_subscription_id": "SUB_vsyqdmlzble3uii",
            }
        }


class UpgradeSubscriptionRequest(BaseModel):
    """Upgrade from the free plan to a paid tier."""

    plan: PlanTier = Field(..., description="monthly or yearly")

    check_paid_plan = field_validator("plan")(_require_paid)


class SweepResponse(BaseModel):
    """Result of an on-demand expiry sweep."""

    downgraded: int = Field(..., description="Subscribers moved to the free plan")
    grace_days: int
    ran_at: datetime

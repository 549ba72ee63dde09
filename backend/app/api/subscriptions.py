"""
Subscription API endpoints for managing player subscriptions.

WHAT: REST API endpoints for subscription management including:
1. GET /subscriptions/all - Paid subscribers (staff)
2. GET /subscriptions/active - Subscribers with a future renewal (staff)
3. GET /subscriptions/stats - Status and plan counts (staff)
4. GET /subscriptions/status/{status} - Users by derived status (staff)
5. GET /subscriptions/expiring - Renewals due soon (staff)
6. POST /subscriptions/{user_id}/cancel - Cancel at period end (self or staff)
7. POST /subscriptions/{user_id}/reactivate - Override billing fields (staff)
8. POST /subscriptions/upgrade - Upgrade from free (self)
9. GET /subscriptions/me - Own subscription (self)
10. POST /subscriptions/sweep - Run the expiry sweep now (staff)

WHY: Enables:
- Self-service cancellation and upgrades
- Staff oversight of subscriber health
- Manual fixes when a webhook was missed

SECURITY (OWASP):
- A01: Users may only cancel their own subscription unless staff
- A07: Authenticated endpoints only
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import settings
from app.core.deps import get_current_user, require_staff
from app.db.session import get_db, get_session_factory
from app.models.base import utcnow
from app.models.user import User, PlanTier
from app.schemas.subscription import (
    CancelSubscriptionRequest,
    CancelSubscriptionResponse,
    ReactivateSubscriptionRequest,
    SubscriberListResponse,
    SubscriberResponse,
    SubscriptionStatsResponse,
    SweepResponse,
    UpgradeSubscriptionRequest,
)
from app.services.scheduler import run_expiry_sweep_now
from app.services.subscription_service import SubscriptionService
from app.services.subscription_status import SubscriptionStatus

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/subscriptions", tags=["Subscriptions"])

SORT_FIELDS_PATTERN = "^(created_at|renewal_date|email|first_name|last_name)$"


def _paid_plan_filter(plan: Optional[PlanTier]) -> Optional[PlanTier]:
    # Free users never appear in subscriber listings
    return None if plan == PlanTier.FREE else plan


# ============================================================================
# Staff Listings
# ============================================================================


@router.get(
    "/all",
    response_model=SubscriberListResponse,
    summary="List subscribers",
    description="Paid, active, non-deleted regular users. Staff only.",
)
async def list_all_subscribers(
    plan: Optional[PlanTier] = Query(None, description="monthly or yearly"),
    search: Optional[str] = Query(None, max_length=100, description="Name, email or username"),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    sort_by: str = Query("created_at", pattern=SORT_FIELDS_PATTERN),
    sort_order: str = Query("desc", pattern="^(asc|desc)$"),
    current_user: User = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    """
    List subscribers with search, plan filter and sorting.

    Returns:
        Paginated subscribers with derived status
    """
    service = SubscriptionService(db)
    return await service.list_subscribers(
        plan=_paid_plan_filter(plan),
        search=search,
        page=page,
        limit=limit,
        sort_by=sort_by,
        sort_order=sort_order,
    )


@router.get(
    "/active",
    response_model=SubscriberListResponse,
    summary="List subscribers with a future renewal date",
)
async def list_active_subscribers(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    current_user: User = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    """Paid users whose renewal date has not passed, soonest first."""
    service = SubscriptionService(db)
    return await service.list_active_subscribers(page=page, limit=limit)


@router.get(
    "/stats",
    response_model=SubscriptionStatsResponse,
    summary="Subscription statistics",
)
async def get_subscription_stats(
    current_user: User = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    """
    Counts per derived status and per paid plan.

    WHY: Dashboard view of subscriber health (churn, lapses).
    """
    service = SubscriptionService(db)
    return await service.get_stats()


@router.get(
    "/status/{status}",
    response_model=SubscriberListResponse,
    summary="List users by subscription status",
)
async def list_by_status(
    status: SubscriptionStatus,
    plan: Optional[PlanTier] = Query(None),
    search: Optional[str] = Query(None, max_length=100),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    current_user: User = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    """
    Regular users whose derived status equals the path value.

    An unknown status value is rejected with 400.
    """
    service = SubscriptionService(db)
    return await service.list_by_status(
        status=status,
        plan=plan,
        search=search,
        page=page,
        limit=limit,
    )


@router.get(
    "/expiring",
    response_model=SubscriberListResponse,
    summary="List subscriptions renewing soon",
)
async def list_expiring_subscribers(
    days: int = Query(settings.SUBSCRIPTION_EXPIRING_DAYS, ge=1, le=365),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    current_user: User = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    """Paid users whose renewal date falls within the next `days` days."""
    service = SubscriptionService(db)
    return await service.list_expiring_subscribers(days=days, page=page, limit=limit)


# ============================================================================
# Self-Service
# ============================================================================


@router.get(
    "/me",
    response_model=SubscriberResponse,
    summary="Get own subscription",
)
async def get_my_subscription(
    current_user: User = Depends(get_current_user),
):
    """Caller's billing fields and derived status."""
    return SubscriberResponse.from_user(current_user, utcnow())


@router.post(
    "/upgrade",
    response_model=SubscriberResponse,
    summary="Upgrade from the free plan",
)
async def upgrade_subscription(
    request: UpgradeSubscriptionRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Subscribe the caller to monthly or yearly.

    WHY: Only free users upgrade here; switching between paid tiers goes
    through Paystack's own flow and arrives as webhooks.
    """
    service = SubscriptionService(db)
    user = await service.upgrade(current_user, request.plan)
    return service.describe(user)


@router.post(
    "/{user_id}/cancel",
    response_model=CancelSubscriptionResponse,
    summary="Cancel a subscription at period end",
)
async def cancel_subscription(
    user_id: int,
    request: Optional[CancelSubscriptionRequest] = None,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Stop auto-renewal.

    WHY: The user already paid for the current period, so plan and
    renewal date are kept; the expiry sweep downgrades them afterwards.
    """
    service = SubscriptionService(db)
    return await service.cancel_subscription(
        user_id,
        actor=current_user,
        reason=request.reason if request else None,
    )


# ============================================================================
# Staff Actions
# ============================================================================


@router.post(
    "/{user_id}/reactivate",
    response_model=SubscriberResponse,
    summary="Reactivate a subscription (staff override)",
)
async def reactivate_subscription(
    user_id: int,
    request: ReactivateSubscriptionRequest,
    current_user: User = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    """Overwrite plan, renewal date and Paystack subscription for a user."""
    service = SubscriptionService(db)
    user = await service.reactivate_subscription(user_id, request, actor=current_user)
    return service.describe(user)


@router.post(
    "/sweep",
    response_model=SweepResponse,
    summary="Run the expiry sweep now",
)
async def run_sweep(
    current_user: User = Depends(require_staff),
    session_factory: async_sessionmaker = Depends(get_session_factory),
):
    """
    Downgrade every subscriber past renewal date plus grace.

    WHY: Same job the scheduler runs daily; useful after an outage.
    """
    ran_at = utcnow()
    downgraded = await run_expiry_sweep_now(session_factory=session_factory)
    logger.info(
        f"Manual expiry sweep by user {current_user.id}: {downgraded} downgraded",
        extra={"user_id": current_user.id, "downgraded": downgraded},
    )
    return SweepResponse(
        downgraded=downgraded,
        grace_days=settings.SUBSCRIPTION_GRACE_DAYS,
        ran_at=ran_at,
    )

"""
Plan catalog API endpoints.

WHAT: REST API endpoints for the pricing catalog:
1. GET /plans/active - Active plans for the pricing page (public)
2. GET /plans/{plan_id} - Plan details (public)
3. GET /plans - All plans with filters (staff)
4. POST /plans - Create plan, on Paystack first for paid tiers (staff)
5. PUT /plans/{plan_id} - Update plan (staff)
6. PATCH /plans/{plan_id}/toggle-status - Activate/deactivate (staff)
7. PATCH /plans/{plan_id}/set-popular - Highlight one plan (staff)
8. DELETE /plans/{plan_id} - Soft delete (staff)
9. POST /plans/{plan_id}/sync-paystack - Push plan to Paystack (staff)
10. GET /plans/stats/overview - Catalog statistics (staff)

SECURITY (OWASP):
- A01: Catalog changes restricted to admins and moderators
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.deps import require_staff
from app.db.session import get_db
from app.models.user import User, PlanTier
from app.schemas.plan import (
    PlanCreate,
    PlanListResponse,
    PlanResponse,
    PlanStatsResponse,
    PlanUpdate,
)
from app.services.plan_service import PlanService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/plans", tags=["Plans"])


# ============================================================================
# Public
# ============================================================================


@router.get(
    "/active",
    response_model=PlanListResponse,
    summary="List active plans",
)
async def list_active_plans(db: AsyncSession = Depends(get_db)):
    """Active plans in display order, for the pricing page."""
    plans = await PlanService(db).list_active_plans()
    return PlanListResponse(items=plans, total=len(plans))


# Declared before /{plan_id} so "stats" is not parsed as an ID
@router.get(
    "/stats/overview",
    response_model=PlanStatsResponse,
    summary="Plan catalog statistics",
)
async def get_plan_stats(
    current_user: User = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    """Plan counts, price spread and subscribers per tier."""
    return await PlanService(db).get_stats()


@router.get(
    "/{plan_id}",
    response_model=PlanResponse,
    summary="Get plan details",
)
async def get_plan(plan_id: int, db: AsyncSession = Depends(get_db)):
    """Single plan by ID."""
    return await PlanService(db).get_plan(plan_id)


# ============================================================================
# Staff
# ============================================================================


@router.get(
    "",
    response_model=PlanListResponse,
    summary="List all plans",
)
async def list_plans(
    is_active: Optional[bool] = Query(None),
    plan_name: Optional[PlanTier] = Query(None),
    current_user: User = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    """All plans including inactive ones."""
    plans = await PlanService(db).list_plans(is_active=is_active, plan_name=plan_name)
    return PlanListResponse(items=plans, total=len(plans))


@router.post(
    "",
    response_model=PlanResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a plan",
)
async def create_plan(
    data: PlanCreate,
    current_user: User = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    """
    Create a catalog entry.

    WHY: Paid plans must exist on Paystack before subscribers can be billed,
    so a Paystack failure aborts creation (502).
    """
    plan = await PlanService(db).create_plan(data)
    logger.info(
        f"Plan {plan.id} created by user {current_user.id}",
        extra={"plan_id": plan.id, "user_id": current_user.id},
    )
    return plan


@router.put(
    "/{plan_id}",
    response_model=PlanResponse,
    summary="Update a plan",
)
async def update_plan(
    plan_id: int,
    data: PlanUpdate,
    current_user: User = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    """Update catalog fields; Paystack is synced best-effort."""
    return await PlanService(db).update_plan(plan_id, data)


@router.patch(
    "/{plan_id}/toggle-status",
    response_model=PlanResponse,
    summary="Toggle plan active status",
)
async def toggle_plan_status(
    plan_id: int,
    current_user: User = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    """Flip is_active."""
    return await PlanService(db).toggle_status(plan_id)


@router.patch(
    "/{plan_id}/set-popular",
    response_model=PlanResponse,
    summary="Mark plan as popular",
)
async def set_plan_popular(
    plan_id: int,
    current_user: User = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    """Highlight this plan and clear the flag on the others."""
    return await PlanService(db).set_popular(plan_id)


@router.delete(
    "/{plan_id}",
    response_model=PlanResponse,
    summary="Delete (deactivate) a plan",
)
async def delete_plan(
    plan_id: int,
    current_user: User = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    """Soft delete: the plan is kept but marked inactive."""
    return await PlanService(db).delete_plan(plan_id)


@router.post(
    "/{plan_id}/sync-paystack",
    response_model=PlanResponse,
    summary="Sync plan with Paystack",
)
async def sync_plan_with_paystack(
    plan_id: int,
    current_user: User = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    """Create or update the Paystack plan behind this catalog entry."""
    return await PlanService(db).sync_with_paystack(plan_id)

"""
Plan Catalog Service.

WHAT: Business logic for the free/monthly/yearly plan catalog.

WHY: Paid catalog entries only make sense if Paystack knows the plan, so:
1. Creating a paid plan calls Paystack first; on failure nothing is stored
2. Updating or deleting syncs Paystack best-effort; the local change
   always happens and provider failures are logged
3. An explicit sync pushes (or creates) the plan on demand

HOW: Coordinates PlanDAO, UserDAO and PaystackClient. Prices are stored in
major units and converted to kobo for Paystack.
"""

import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import (
    ConfigurationError,
    PaystackError,
    PlanNotFoundError,
    ResourceAlreadyExistsError,
    ValidationError,
)
from app.dao.plan import PlanDAO
from app.dao.user import UserDAO
from app.models.plan import Plan, MAX_PLANS
from app.models.user import User, PlanTier
from app.schemas.plan import PlanCreate, PlanUpdate
from app.services.paystack_client import PaystackClient, get_paystack_client


logger = logging.getLogger(__name__)


def to_kobo(price: Decimal) -> int:
    """Convert a major-unit price to the lowest denomination."""
    return int((Decimal(price) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class PlanService:
    """
    Service for plan catalog operations.

    Example:
        service = PlanService(db)
        plan = await service.create_plan(PlanCreate(...))
    """

    def __init__(self, session: AsyncSession, paystack: Optional[PaystackClient] = None):
        """
        Initialize PlanService.

        Args:
            session: Async database session
            paystack: Paystack client (defaults to the shared instance)
        """
        self.session = session
        self.plan_dao = PlanDAO(session)
        self.user_dao = UserDAO(User, session)
        self.paystack = paystack or get_paystack_client()

    # =========================================================================
    # Queries
    # =========================================================================

    async def get_plan(self, plan_id: int) -> Plan:
        """
        Get a plan by ID.

        Raises:
            PlanNotFoundError: If no such plan exists
        """
        plan = await self.plan_dao.get_by_id(plan_id)
        if not plan:
            raise PlanNotFoundError(plan_id=plan_id)
        return plan

    async def list_active_plans(self) -> List[Plan]:
        """Plans shown on the public pricing page."""
        return await self.plan_dao.list_plans(is_active=True)

    async def list_plans(
        self,
        is_active: Optional[bool] = None,
        plan_name: Optional[PlanTier] = None,
    ) -> List[Plan]:
        """All plans, optionally filtered (staff view includes inactive ones)."""
        return await self.plan_dao.list_plans(is_active=is_active, plan_name=plan_name)

    async def get_stats(self) -> Dict[str, Any]:
        """
        Catalog overview.

        Returns:
            Dict with plan counts, price spread and subscribers per tier
        """
        plans = await self.plan_dao.list_plans()
        prices = [Decimal(plan.price) for plan in plans]
        subscribers = await self.user_dao.count_by_plan()

        active = sum(1 for plan in plans if plan.is_active)
        return {
            "total_plans": len(plans),
            "active_plans": active,
            "inactive_plans": len(plans) - active,
            "popular_plans": sum(1 for plan in plans if plan.is_popular),
            "average_price": (sum(prices) / len(prices)).quantize(Decimal("0.01")) if prices else Decimal("0"),
            "min_price": min(prices) if prices else Decimal("0"),
            "max_price": max(prices) if prices else Decimal("0"),
            "subscribers_by_plan": {tier.value: count for tier, count in subscribers.items()},
        }

    # =========================================================================
    # Mutations
    # =========================================================================

    async def create_plan(self, data: PlanCreate) -> Plan:
        """
        Create a catalog entry.

        HOW:
        1. Enforce the three-plan limit and unique tier names
        2. Force the free plan's price to 0
        3. For a paid plan, create it on Paystack and keep the plan code

        Raises:
            ResourceAlreadyExistsError: Limit reached or tier already exists
            PaystackError: If Paystack rejects the plan (nothing is stored)
        """
        if await self.plan_dao.count() >= MAX_PLANS:
            raise ResourceAlreadyExistsError(
                message=f"Maximum number of plans ({MAX_PLANS}) already exists"
            )

        if await self.plan_dao.get_by_name(data.plan_name):
            raise ResourceAlreadyExistsError(
                message="Plan with this name already exists",
                plan_name=data.plan_name.value,
            )

        price = Decimal("0") if data.plan_name == PlanTier.FREE else data.price
        description = data.description or f"{data.plan_name.value} subscription plan"

        paystack_plan_code = None
        if data.plan_name != PlanTier.FREE and price > 0:
            provider_plan = await self.paystack.create_plan(
                name=data.display_name,
                amount=to_kobo(price),
                interval="annually" if data.plan_name == PlanTier.YEARLY else "monthly",
                description=description,
                currency=data.currency,
            )
            paystack_plan_code = provider_plan.plan_code

        plan = await self.plan_dao.create(
            plan_name=data.plan_name,
            display_name=data.display_name,
            description=description,
            price=price,
            currency=data.currency,
            perks=data.perks,
            is_active=data.is_active,
            is_popular=data.is_popular,
            sort_order=data.sort_order,
            paystack_plan_code=paystack_plan_code,
        )

        if plan.is_popular:
            await self.plan_dao.clear_popular(except_id=plan.id)

        logger.info(
            f"Created plan {plan.plan_name.value}",
            extra={"plan_id": plan.id, "paystack_plan_code": paystack_plan_code},
        )
        return plan

    async def update_plan(self, plan_id: int, data: PlanUpdate) -> Plan:
        """
        Update a catalog entry.

        WHY: The local catalog is what the pricing page shows, so it is
        updated even when Paystack cannot be reached.

        Raises:
            PlanNotFoundError: If no such plan exists
        """
        plan = await self.get_plan(plan_id)
        updates = data.model_dump(exclude_unset=True)

        if plan.plan_name == PlanTier.FREE and "price" in updates:
            updates["price"] = Decimal("0")

        if plan.paystack_plan_code and plan.plan_name != PlanTier.FREE:
            provider_fields = {}
            if updates.get("display_name"):
                provider_fields["name"] = updates["display_name"]
            if updates.get("description"):
                provider_fields["description"] = updates["description"]
            if updates.get("price"):
                provider_fields["amount"] = to_kobo(updates["price"])

            if provider_fields:
                await self._best_effort(
                    "update",
                    plan,
                    self.paystack.update_plan(plan.paystack_plan_code, **provider_fields),
                )

        if updates.get("is_popular"):
            await self.plan_dao.clear_popular(except_id=plan.id)

        if not updates:
            return plan
        return await self.plan_dao.update(plan.id, **updates)

    async def toggle_status(self, plan_id: int) -> Plan:
        """Flip a plan's active flag."""
        plan = await self.get_plan(plan_id)
        return await self.plan_dao.update(plan.id, is_active=not plan.is_active)

    async def delete_plan(self, plan_id: int) -> Plan:
        """
        Soft-delete a plan.

        WHY: Existing subscribers still reference the tier, so the row stays
        and is only marked inactive. Paystack has no plan delete; the plan is
        renamed there best-effort.
        """
        plan = await self.get_plan(plan_id)

        if plan.paystack_plan_code and plan.plan_name != PlanTier.FREE:
            await self._best_effort(
                "deactivate", plan, self.paystack.deactivate_plan(plan.paystack_plan_code)
            )

        return await self.plan_dao.update(plan.id, is_active=False)

    async def set_popular(self, plan_id: int) -> Plan:
        """Mark one plan as popular and clear the flag on the others."""
        plan = await self.get_plan(plan_id)
        await self.plan_dao.clear_popular(except_id=plan.id)
        return await self.plan_dao.update(plan.id, is_popular=True)

    async def sync_with_paystack(self, plan_id: int) -> Plan:
        """
        Push a paid plan to Paystack.

        HOW: Updates the linked Paystack plan, or creates one and stores its
        code if the plan was never linked.

        Raises:
            PlanNotFoundError: If no such plan exists
            ValidationError: For the free plan
            PaystackError: If Paystack rejects the request
        """
        plan = await self.get_plan(plan_id)
        if plan.plan_name == PlanTier.FREE:
            raise ValidationError(
                message="Free plans cannot be synced with Paystack",
                plan_id=plan_id,
            )

        fields = {
            "name": plan.display_name,
            "amount": to_kobo(plan.price),
            "interval": plan.billing_interval,
            "description": plan.description,
        }

        if plan.paystack_plan_code:
            await self.paystack.update_plan(plan.paystack_plan_code, **fields)
            logger.info(f"Pushed plan {plan.id} to Paystack", extra={"plan_id": plan.id})
            return plan

        provider_plan = await self.paystack.create_plan(currency=plan.currency, **fields)
        logger.info(
            f"Created Paystack plan for plan {plan.id}",
            extra={"plan_id": plan.id, "paystack_plan_code": provider_plan.plan_code},
        )
        return await self.plan_dao.update(plan.id, paystack_plan_code=provider_plan.plan_code)

    async def _best_effort(self, action: str, plan: Plan, call) -> None:
        try:
            await call
        except (PaystackError, ConfigurationError) as e:
            logger.warning(
                f"Failed to {action} plan on Paystack, continuing with local change: {e.message}",
                extra={"plan_id": plan.id, "paystack_plan_code": plan.paystack_plan_code},
            )

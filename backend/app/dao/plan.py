"""
Plan Data Access Object.

WHAT: Database operations for the plan catalog.
"""

from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.dao.base import BaseDAO
from app.models.plan import Plan
from app.models.user import PlanTier


class PlanDAO(BaseDAO[Plan]):
    """
    Data Access Object for Plan model.
    """

    def __init__(self, session: AsyncSession):
        """
        Initialize PlanDAO.

        WHY: Simplified constructor since model is always Plan.
        """
        super().__init__(Plan, session)

    async def get_by_name(self, plan_name: PlanTier) -> Optional[Plan]:
        """Get the catalog entry for a tier."""
        result = await self.session.execute(select(Plan).where(Plan.plan_name == plan_name))
        return result.scalar_one_or_none()

    async def get_by_paystack_code(self, plan_code: str) -> Optional[Plan]:
        """Get the catalog entry linked to a Paystack plan code."""
        result = await self.session.execute(
            select(Plan).where(Plan.paystack_plan_code == plan_code)
        )
        return result.scalar_one_or_none()

    async def list_plans(
        self,
        is_active: Optional[bool] = None,
        plan_name: Optional[PlanTier] = None,
    ) -> List[Plan]:
        """
        List catalog entries in display order.

        Args:
            is_active: Filter by active flag when given
            plan_name: Filter to one tier when given
        """
        query = select(Plan)
        if is_active is not None:
            query = query.where(Plan.is_active.is_(is_active))
        if plan_name is not None:
            query = query.where(Plan.plan_name == plan_name)

        result = await self.session.execute(query.order_by(Plan.sort_order.asc(), Plan.id))
        return list(result.scalars().all())

    async def clear_popular(self, except_id: Optional[int] = None) -> None:
        """
        Unset is_popular on every plan except one.

        WHY: The pricing page highlights a single "most popular" plan.
        """
        stmt = update(Plan).values(is_popular=False)
        if except_id is not None:
            stmt = stmt.where(Plan.id != except_id)
        await self.session.execute(stmt.execution_options(synchronize_session="fetch"))

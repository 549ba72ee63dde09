"""
User Data Access Object.

WHAT: Database operations for users and their billing fields.

WHY: Every write to the billing fields funnels through this DAO so the
free-plan invariant (no renewal date, no provider subscription) is enforced
on every mutation, not just at creation.

HOW: Mutations are single UPDATE statements with absolute values, keyed
either by user id or by the stored Paystack subscription code. Nothing here
does read-modify-write arithmetic, so concurrent writers (webhooks, sweep,
admin overrides) converge by write order without locks.
"""

from datetime import datetime
from typing import Dict, List, Optional, Tuple

from sqlalchemy import select, update, func, or_, and_
from sqlalchemy.ext.asyncio import AsyncSession

from app.dao.base import BaseDAO
from app.models.user import User, UserRole, PlanTier
from app.core.exceptions import ValidationError


# Columns clients may sort subscriber listings by
SORTABLE_FIELDS = {
    "created_at": User.created_at,
    "renewal_date": User.renewal_date,
    "email": User.email,
    "first_name": User.first_name,
    "last_name": User.last_name,
}


class UserDAO(BaseDAO[User]):
    """
    Data Access Object for User model.
    """

    def __init__(self, model: type[User], session: AsyncSession):
        """Initialize UserDAO with model and session."""
        super().__init__(model, session)

    # =========================================================================
    # Lookups
    # =========================================================================

    async def get_by_email(self, email: str) -> Optional[User]:
        """
        Retrieve user by email address.

        WHY: Paystack identifies the customer by email on subscription
        events. Case-insensitive comparison matches "Player@Club.com" to
        "player@club.com".

        Args:
            email: User's email address

        Returns:
            User instance if found, None otherwise
        """
        result = await self.session.execute(
            select(User).where(func.lower(User.email) == email.strip().lower())
        )
        return result.scalar_one_or_none()

    async def get_by_paystack_subscription_id(self, subscription_code: str) -> Optional[User]:
        """
        Retrieve the user currently linked to a Paystack subscription.

        WHY: Disable and invoice events may not carry the customer, only the
        subscription code (SUB_xxx).
        """
        result = await self.session.execute(
            select(User).where(User.paystack_subscription_id == subscription_code)
        )
        return result.scalar_one_or_none()

    # =========================================================================
    # Billing mutations
    # =========================================================================

    async def set_billing(
        self,
        user_id: int,
        plan: PlanTier,
        renewal_date: Optional[datetime],
        paystack_subscription_id: Optional[str],
    ) -> Optional[User]:
        """
        Overwrite all three billing fields in one statement.

        WHY: Absolute-value sets make webhook replays harmless: applying the
        same values twice leaves the same end state.

        Raises:
            ValidationError: If a free plan is given billing fields
        """
        if plan == PlanTier.FREE and (renewal_date is not None or paystack_subscription_id):
            raise ValidationError(
                message="Free plan cannot carry a renewal date or provider subscription",
                user_id=user_id,
            )

        return await self.update(
            user_id,
            plan=plan,
            renewal_date=renewal_date,
            paystack_subscription_id=paystack_subscription_id,
        )

    async def downgrade_to_free(self, user_id: int) -> Optional[User]:
        """Reset a user to the free plan and clear billing fields."""
        return await self.set_billing(user_id, PlanTier.FREE, None, None)

    async def downgrade_by_subscription_code(self, subscription_code: str) -> Optional[User]:
        """
        Downgrade whoever holds this Paystack subscription code.

        WHY: Matching and writing in one UPDATE means a user who was
        re-linked to a new subscription in between is not touched.

        Returns:
            The downgraded user, or None if no user held the code
        """
        result = await self.session.execute(
            update(User)
            .where(User.paystack_subscription_id == subscription_code)
            .values(plan=PlanTier.FREE, renewal_date=None, paystack_subscription_id=None)
            .returning(User)
        )
        user = result.scalar_one_or_none()
        if user:
            await self.session.refresh(user)
        return user

    async def clear_provider_subscription(self, user_id: int) -> Optional[User]:
        """
        Unlink the Paystack subscription but keep plan and renewal date.

        WHY: Cancellation only stops auto-renewal; the user keeps paid access
        until renewal_date and then the sweep downgrades them.
        """
        return await self.update(user_id, paystack_subscription_id=None)

    async def expire_lapsed(self, cutoff: datetime) -> int:
        """
        Bulk-downgrade paid users whose renewal date is older than cutoff.

        WHY: The selection predicate is the UPDATE's own WHERE clause, so the
        store re-evaluates it at write time; a renewal webhook that pushed
        renewal_date forward after any earlier read is never clobbered.

        Args:
            cutoff: Renewal dates strictly before this instant are lapsed

        Returns:
            Number of users downgraded
        """
        result = await self.session.execute(
            update(User)
            .where(
                and_(
                    User.plan != PlanTier.FREE,
                    User.renewal_date.is_not(None),
                    User.renewal_date < cutoff,
                )
            )
            .values(plan=PlanTier.FREE, renewal_date=None, paystack_subscription_id=None)
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount or 0

    # =========================================================================
    # Subscriber listings
    # =========================================================================

    def _regular_users(self):
        """Visible, non-staff users: the population billing reports cover."""
        return select(User).where(
            User.is_active.is_(True),
            User.is_deleted.is_(False),
            User.role == UserRole.USER,
        )

    @staticmethod
    def _search(query, search: Optional[str]):
        """Case-insensitive match on names, email and username."""
        term = (search or "").strip()
        if not term:
            return query
        pattern = f"%{term}%"
        return query.where(
            or_(
                User.first_name.ilike(pattern),
                User.last_name.ilike(pattern),
                User.email.ilike(pattern),
                User.username.ilike(pattern),
                (User.first_name + " " + User.last_name).ilike(pattern),
            )
        )

    async def _page(self, query, skip: int, limit: int, order_by) -> Tuple[List[User], int]:
        """Run a listing query, returning one page and the total match count."""
        total_result = await self.session.execute(
            select(func.count()).select_from(query.subquery())
        )
        total = total_result.scalar_one()

        result = await self.session.execute(query.order_by(*order_by).offset(skip).limit(limit))
        return list(result.scalars().all()), total

    async def list_subscribers(
        self,
        plan: Optional[PlanTier] = None,
        search: Optional[str] = None,
        skip: int = 0,
        limit: int = 10,
        sort_by: str = "created_at",
        sort_order: str = "desc",
    ) -> Tuple[List[User], int]:
        """
        List regular users on a paid plan.

        Args:
            plan: Restrict to one paid tier
            search: Free-text filter on names/email/username
            skip: Offset for pagination
            limit: Page size
            sort_by: One of SORTABLE_FIELDS
            sort_order: "asc" or "desc"

        Returns:
            (page of users, total matching)
        """
        query = self._regular_users().where(User.plan != PlanTier.FREE)
        if plan is not None:
            query = query.where(User.plan == plan)
        query = self._search(query, search)

        column = SORTABLE_FIELDS.get(sort_by, User.created_at)
        ordering = column.asc() if sort_order == "asc" else column.desc()
        return await self._page(query, skip, limit, (ordering, User.id))

    async def list_active_subscribers(
        self, now: datetime, skip: int = 0, limit: int = 10
    ) -> Tuple[List[User], int]:
        """List paid users whose renewal date is still in the future."""
        query = self._regular_users().where(
            User.plan != PlanTier.FREE,
            User.renewal_date > now,
        )
        return await self._page(query, skip, limit, (User.renewal_date.asc(), User.id))

    async def list_expiring_subscribers(
        self, now: datetime, until: datetime, skip: int = 0, limit: int = 10
    ) -> Tuple[List[User], int]:
        """List paid users whose renewal date falls in (now, until]."""
        query = self._regular_users().where(
            User.plan != PlanTier.FREE,
            User.renewal_date > now,
            User.renewal_date <= until,
        )
        return await self._page(query, skip, limit, (User.renewal_date.asc(), User.id))

    async def list_regular_users(
        self,
        plan: Optional[PlanTier] = None,
        search: Optional[str] = None,
    ) -> List[User]:
        """
        Load every regular user matching the filters.

        WHY: Status is derived, not stored, so status-based filters and
        statistics are computed in memory over this list.
        """
        query = self._regular_users()
        if plan is not None:
            query = query.where(User.plan == plan)
        query = self._search(query, search).order_by(User.created_at.desc(), User.id)

        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def count_by_plan(self) -> Dict[PlanTier, int]:
        """Count regular users on each tier (tiers with no users report 0)."""
        subquery = self._regular_users().subquery()
        result = await self.session.execute(
            select(subquery.c.plan, func.count()).group_by(subquery.c.plan)
        )
        counts = {tier: 0 for tier in PlanTier}
        for plan, total in result.all():
            counts[PlanTier(plan)] = total
        return counts

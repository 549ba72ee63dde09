"""
Subscription Service.

WHAT: Business logic for subscriber listings, statistics, cancellation,
reactivation and upgrades.

WHY: The service layer:
1. Attaches the derived status to every subscriber it returns
2. Enforces who may change whose subscription
3. Orders provider calls before local writes, so a Paystack failure
   leaves the record untouched

HOW: Coordinates UserDAO and PaystackClient. All billing writes are
absolute-value sets through UserDAO.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.exceptions import (
    AuthorizationError,
    ConfigurationError,
    InvalidStateTransitionError,
    ResourceAlreadyExistsError,
    SubscriberNotFoundError,
)
from app.dao.user import UserDAO
from app.models.base import utcnow
from app.models.user import User, PlanTier, PAID_TIERS
from app.schemas.subscription import (
    CancelSubscriptionResponse,
    PlanBreakdown,
    ReactivateSubscriptionRequest,
    StatusSummary,
    SubscriberListResponse,
    SubscriberResponse,
    SubscriptionStatsResponse,
)
from app.services.paystack_client import PaystackClient, get_paystack_client
from app.services.subscription_status import (
    SubscriptionStatus,
    add_billing_period,
    status_for,
)


logger = logging.getLogger(__name__)


class SubscriptionService:
    """
    Service for subscription management.

    Example:
        service = SubscriptionService(db)
        result = await service.cancel_subscription(user_id, actor=current_user)
    """

    def __init__(
        self,
        db: AsyncSession,
        paystack: Optional[PaystackClient] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize subscription service.

        Args:
            db: Database session
            paystack: Paystack client (defaults to the shared instance)
            clock: Returns the current naive-UTC time
        """
        self.db = db
        self.user_dao = UserDAO(User, db)
        self.paystack = paystack or get_paystack_client()
        self._clock = clock or utcnow

    def _page(self, users: List[User], total: int, page: int, limit: int) -> SubscriberListResponse:
        now = self._clock()
        return SubscriberListResponse.build(
            items=[SubscriberResponse.from_user(user, now) for user in users],
            total=total,
            page=page,
            limit=limit,
        )

    # ========================================================================
    # Listings
    # ========================================================================

    async def list_subscribers(
        self,
        plan: Optional[PlanTier] = None,
        search: Optional[str] = None,
        page: int = 1,
        limit: int = 10,
        sort_by: str = "created_at",
        sort_order: str = "desc",
    ) -> SubscriberListResponse:
        """All regular users on a paid plan, whatever their status."""
        users, total = await self.user_dao.list_subscribers(
            plan=plan,
            search=search,
            skip=(page - 1) * limit,
            limit=limit,
            sort_by=sort_by,
            sort_order=sort_order,
        )
        return self._page(users, total, page, limit)

    async def list_active_subscribers(self, page: int = 1, limit: int = 10) -> SubscriberListResponse:
        """Paid users whose renewal date is still ahead."""
        users, total = await self.user_dao.list_active_subscribers(
            now=self._clock(), skip=(page - 1) * limit, limit=limit
        )
        return self._page(users, total, page, limit)

    async def list_expiring_subscribers(
        self,
        days: int = 7,
        page: int = 1,
        limit: int = 10,
    ) -> SubscriberListResponse:
        """Paid users whose renewal date falls within the next `days` days."""
        now = self._clock()
        users, total = await self.user_dao.list_expiring_subscribers(
            now=now,
            until=now + timedelta(days=days),
            skip=(page - 1) * limit,
            limit=limit,
        )
        return self._page(users, total, page, limit)

    async def list_by_status(
        self,
        status: SubscriptionStatus,
        plan: Optional[PlanTier] = None,
        search: Optional[str] = None,
        page: int = 1,
        limit: int = 10,
    ) -> SubscriberListResponse:
        """
        Regular users whose derived status equals `status`.

        WHY: Status is not a column, so filtering happens after the deriver
        runs on each candidate.
        """
        now = self._clock()
        users = [
            user
            for user in await self.user_dao.list_regular_users(plan=plan, search=search)
            if status_for(user, now=now) == status
        ]
        start = (page - 1) * limit
        return self._page(users[start:start + limit], len(users), page, limit)

    async def get_stats(self) -> SubscriptionStatsResponse:
        """
        Status counts across all regular users.

        Returns:
            Totals, per-status summary and per-plan breakdown
        """
        now = self._clock()
        users = await self.user_dao.list_regular_users()

        summary = StatusSummary()
        by_plan = {tier: PlanBreakdown(plan=tier) for tier in PAID_TIERS}

        for user in users:
            status = status_for(user, now=now)
            setattr(summary, status.value, getattr(summary, status.value) + 1)

            breakdown = by_plan.get(PlanTier(user.plan))
            if breakdown is not None:
                breakdown.total += 1
                setattr(breakdown, status.value, getattr(breakdown, status.value) + 1)

        return SubscriptionStatsResponse(
            total_users=len(users),
            total_subscribers=sum(b.total for b in by_plan.values()),
            active_subscribers=summary.active,
            summary=summary,
            by_plan=list(by_plan.values()),
            generated_at=now,
        )

    async def get_subscriber(self, user_id: int) -> User:
        """
        Load a user by ID.

        Raises:
            SubscriberNotFoundError: If the user does not exist or is deleted
        """
        user = await self.user_dao.get_by_id(user_id)
        if not user or user.is_deleted:
            raise SubscriberNotFoundError(user_id=user_id)
        return user

    def describe(self, user: User) -> SubscriberResponse:
        """Subscriber view of a user with the status derived now."""
        return SubscriberResponse.from_user(user, self._clock())

    # ========================================================================
    # Subscription Changes
    # ========================================================================

    async def cancel_subscription(
        self,
        user_id: int,
        actor: User,
        reason: Optional[str] = None,
    ) -> CancelSubscriptionResponse:
        """
        Stop auto-renewal; access continues until renewal_date.

        HOW:
        1. Check the actor is the subscriber or staff
        2. Refuse free and already-expired subscriptions
        3. Disable the Paystack subscription (failure aborts, nothing saved)
        4. Clear only paystack_subscription_id

        Raises:
            SubscriberNotFoundError: Unknown user
            AuthorizationError: Actor is neither the user nor staff
            InvalidStateTransitionError: Free plan or already expired
            PaystackError: Paystack refused the disable
        """
        user = await self.get_subscriber(user_id)

        if actor.id != user.id and not actor.is_staff:
            raise AuthorizationError(
                message="You can only cancel your own subscription",
                user_id=user_id,
            )

        status = status_for(user, now=self._clock())
        if status == SubscriptionStatus.FREE:
            raise InvalidStateTransitionError(
                message="No active subscription to cancel",
                user_id=user_id,
            )
        if status == SubscriptionStatus.EXPIRED:
            raise InvalidStateTransitionError(
                message="Subscription has already expired",
                user_id=user_id,
            )

        if user.paystack_subscription_id:
            await self.paystack.disable_subscription(user.paystack_subscription_id)

        updated = await self.user_dao.clear_provider_subscription(user.id)

        logger.info(
            f"Cancelled subscription for user {user.id}",
            extra={
                "user_id": user.id,
                "actor_id": actor.id,
                "reason": reason,
            },
        )

        return CancelSubscriptionResponse(
            message="Subscription cancelled. Access continues until the end of the current period.",
            access_until=updated.renewal_date,
            subscriber=self.describe(updated),
        )

    async def reactivate_subscription(
        self,
        user_id: int,
        request: ReactivateSubscriptionRequest,
        actor: User,
    ) -> User:
        """
        Staff override of the billing fields.

        Raises:
            SubscriberNotFoundError: Unknown user
            ResourceAlreadyExistsError: Subscription code linked to another user
        """
        user = await self.get_subscriber(user_id)

        code = request.paystack_subscription_id
        if code:
            holder = await self.user_dao.get_by_paystack_subscription_id(code)
            if holder is not None and holder.id != user.id:
                raise ResourceAlreadyExistsError(
                    message="Paystack subscription is already linked to another user",
                    user_id=user_id,
                    holder_id=holder.id,
                )

        updated = await self.user_dao.set_billing(
            user.id,
            plan=request.plan,
            renewal_date=request.renewal_date,
            paystack_subscription_id=request.paystack_subscription_id,
        )

        logger.info(
            f"Reactivated subscription for user {user.id}",
            extra={"user_id": user.id, "actor_id": actor.id, "plan": request.plan.value},
        )
        return updated

    async def upgrade(self, actor: User, plan: PlanTier) -> User:
        """
        Move the caller from the free plan to a paid tier.

        HOW:
        1. Only free users may upgrade this way
        2. With Paystack configured, subscribe the customer first
        3. Set plan, renewal_date = now + period and the subscription code

        Raises:
            AuthorizationError: Caller is already on a paid plan
            ConfigurationError: No Paystack plan code for the tier
            PaystackError: Paystack refused the subscription
        """
        if PlanTier(actor.plan) != PlanTier.FREE:
            raise AuthorizationError(
                message="Plan upgrades are only available from the free plan",
                user_id=actor.id,
            )

        subscription_code = None
        if settings.paystack_enabled:
            plan_code = settings.paystack_plan_code_for(plan.value)
            if not plan_code:
                raise ConfigurationError(
                    message=f"No Paystack plan code configured for {plan.value}"
                )
            subscription = await self.paystack.create_subscription(actor.email, plan_code)
            subscription_code = subscription.subscription_code or None

        updated = await self.user_dao.set_billing(
            actor.id,
            plan=plan,
            renewal_date=add_billing_period(self._clock(), plan),
            paystack_subscription_id=subscription_code,
        )

        logger.info(
            f"Upgraded user {actor.id} to {plan.value}",
            extra={"user_id": actor.id, "subscription_code": subscription_code},
        )
        return updated

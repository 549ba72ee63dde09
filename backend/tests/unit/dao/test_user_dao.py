"""
Unit tests for UserDAO billing operations.

WHAT: Tests for the billing mutations and subscriber listings.

WHY: All billing writes funnel through UserDAO. Verifies that:
1. The free-plan invariant is enforced on every write
2. Downgrade by subscription code only touches the current holder
3. expire_lapsed re-checks its predicate at write time
4. Listings exclude staff, deleted and inactive users

HOW: Uses pytest-asyncio with the in-memory SQLite database.
"""

import pytest
from datetime import datetime, timedelta

from sqlalchemy.exc import IntegrityError

from app.core.exceptions import ValidationError
from app.dao.user import UserDAO
from app.models.user import User, UserRole, PlanTier
from tests.factories import UserFactory


NOW = datetime(2025, 3, 10, 12, 0, 0)


@pytest.fixture
def dao(db_session):
    return UserDAO(User, db_session)


class TestLookups:
    """Tests for user lookups."""

    @pytest.mark.asyncio
    async def test_get_by_email_is_case_insensitive(self, db_session, dao):
        user = await UserFactory.create(db_session, email="player@example.com")

        assert (await dao.get_by_email("  PLAYER@example.com ")).id == user.id
        assert await dao.get_by_email("other@example.com") is None

    @pytest.mark.asyncio
    async def test_get_by_paystack_subscription_id(self, db_session, dao):
        user = await UserFactory.create(
            db_session,
            plan=PlanTier.MONTHLY,
            renewal_date=NOW,
            paystack_subscription_id="SUB_1",
        )

        assert (await dao.get_by_paystack_subscription_id("SUB_1")).id == user.id
        assert await dao.get_by_paystack_subscription_id("SUB_2") is None


class TestBillingMutations:
    """Tests for the billing write seam."""

    @pytest.mark.asyncio
    async def test_set_billing_overwrites_all_fields(self, db_session, dao):
        user = await UserFactory.create(db_session)

        updated = await dao.set_billing(user.id, PlanTier.YEARLY, NOW, "SUB_y")

        assert (updated.plan, updated.renewal_date, updated.paystack_subscription_id) == (
            PlanTier.YEARLY,
            NOW,
            "SUB_y",
        )

    @pytest.mark.asyncio
    @pytest.mark.parametrize("renewal,sub", [(NOW, None), (None, "SUB_x"), (NOW, "SUB_x")])
    async def test_free_plan_rejects_billing_fields(self, db_session, dao, renewal, sub):
        user = await UserFactory.create(db_session)

        with pytest.raises(ValidationError):
            await dao.set_billing(user.id, PlanTier.FREE, renewal, sub)

    @pytest.mark.asyncio
    async def test_database_rejects_free_plan_with_renewal(self, db_session):
        """The check constraint backs up the DAO rule."""
        db_session.add(User(email="bad@example.com", plan=PlanTier.FREE, renewal_date=NOW))

        with pytest.raises(IntegrityError):
            await db_session.flush()

    @pytest.mark.asyncio
    async def test_downgrade_to_free(self, db_session, dao):
        user = await UserFactory.create(
            db_session, plan=PlanTier.MONTHLY, renewal_date=NOW, paystack_subscription_id="SUB_1"
        )

        updated = await dao.downgrade_to_free(user.id)

        assert updated.plan == PlanTier.FREE
        assert updated.renewal_date is None
        assert updated.paystack_subscription_id is None

    @pytest.mark.asyncio
    async def test_downgrade_by_subscription_code(self, db_session, dao):
        holder = await UserFactory.create(
            db_session, plan=PlanTier.MONTHLY, renewal_date=NOW, paystack_subscription_id="SUB_1"
        )
        bystander = await UserFactory.create(
            db_session, plan=PlanTier.MONTHLY, renewal_date=NOW, paystack_subscription_id="SUB_2"
        )

        downgraded = await dao.downgrade_by_subscription_code("SUB_1")
        await db_session.refresh(bystander)

        assert downgraded.id == holder.id
        assert downgraded.plan == PlanTier.FREE
        assert bystander.plan == PlanTier.MONTHLY

    @pytest.mark.asyncio
    async def test_downgrade_by_unknown_code_returns_none(self, dao):
        assert await dao.downgrade_by_subscription_code("SUB_missing") is None

    @pytest.mark.asyncio
    async def test_clear_provider_subscription_keeps_plan(self, db_session, dao):
        user = await UserFactory.create(
            db_session, plan=PlanTier.YEARLY, renewal_date=NOW, paystack_subscription_id="SUB_1"
        )

        updated = await dao.clear_provider_subscription(user.id)

        assert updated.plan == PlanTier.YEARLY
        assert updated.renewal_date == NOW
        assert updated.paystack_subscription_id is None

    @pytest.mark.asyncio
    async def test_expire_lapsed_uses_strict_cutoff(self, db_session, dao):
        cutoff = NOW - timedelta(days=2)
        lapsed = await UserFactory.create(
            db_session, plan=PlanTier.MONTHLY, renewal_date=cutoff - timedelta(seconds=1)
        )
        boundary = await UserFactory.create(db_session, plan=PlanTier.MONTHLY, renewal_date=cutoff)

        assert await dao.expire_lapsed(cutoff) == 1

        await db_session.refresh(lapsed)
        await db_session.refresh(boundary)
        assert lapsed.plan == PlanTier.FREE
        assert boundary.plan == PlanTier.MONTHLY

    @pytest.mark.asyncio
    async def test_expire_lapsed_sees_renewal_written_after_read(self, db_session, dao):
        """A renewal applied between a read and the sweep is not clobbered."""
        user = await UserFactory.create(
            db_session, plan=PlanTier.MONTHLY, renewal_date=NOW - timedelta(days=5),
            paystack_subscription_id="SUB_1",
        )
        # Renewal webhook lands first
        await dao.set_billing(user.id, PlanTier.MONTHLY, NOW + timedelta(days=30), "SUB_1")

        assert await dao.expire_lapsed(NOW - timedelta(days=2)) == 0
        await db_session.refresh(user)
        assert user.plan == PlanTier.MONTHLY


class TestListings:
    """Tests for subscriber listings."""

    @pytest.mark.asyncio
    async def test_list_subscribers_filters_population(self, db_session, dao):
        paid = await UserFactory.create(
            db_session, email="paid@example.com", plan=PlanTier.MONTHLY,
            renewal_date=NOW, paystack_subscription_id="SUB_1",
        )
        await UserFactory.create(db_session, email="free@example.com")
        await UserFactory.create(
            db_session, email="staff@example.com", role=UserRole.ADMIN,
            plan=PlanTier.MONTHLY, renewal_date=NOW,
        )
        await UserFactory.create(
            db_session, email="deleted@example.com", plan=PlanTier.MONTHLY,
            renewal_date=NOW, is_deleted=True,
        )
        await UserFactory.create(
            db_session, email="inactive@example.com", plan=PlanTier.MONTHLY,
            renewal_date=NOW, is_active=False,
        )

        users, total = await dao.list_subscribers()

        assert total == 1
        assert [u.id for u in users] == [paid.id]

    @pytest.mark.asyncio
    async def test_list_subscribers_plan_filter_and_search(self, db_session, dao):
        await UserFactory.create(
            db_session, email="ada@example.com", first_name="Ada", last_name="Obi",
            plan=PlanTier.MONTHLY, renewal_date=NOW,
        )
        yearly = await UserFactory.create(
            db_session, email="tunde@example.com", first_name="Tunde", last_name="Bello",
            plan=PlanTier.YEARLY, renewal_date=NOW,
        )

        users, total = await dao.list_subscribers(plan=PlanTier.YEARLY)
        assert [u.id for u in users] == [yearly.id]

        users, total = await dao.list_subscribers(search="tunde bello")
        assert total == 1
        assert users[0].id == yearly.id

    @pytest.mark.asyncio
    async def test_list_subscribers_pagination(self, db_session, dao):
        for i in range(5):
            await UserFactory.create(
                db_session, email=f"p{i}@example.com", plan=PlanTier.MONTHLY, renewal_date=NOW
            )

        users, total = await dao.list_subscribers(skip=2, limit=2, sort_by="email", sort_order="asc")

        assert total == 5
        assert [u.email for u in users] == ["p2@example.com", "p3@example.com"]

    @pytest.mark.asyncio
    async def test_count_by_plan(self, db_session, dao):
        await UserFactory.create(db_session)
        await UserFactory.create(db_session)
        await UserFactory.create(db_session, plan=PlanTier.YEARLY, renewal_date=NOW)

        counts = await dao.count_by_plan()

        assert counts == {PlanTier.FREE: 2, PlanTier.MONTHLY: 0, PlanTier.YEARLY: 1}

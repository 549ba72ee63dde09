"""
Plan catalog model.

WHAT: Display and pricing data for the free, monthly and yearly plans.

WHY: The pricing page and admin console need editable plan copy (name,
perks, price) while billing itself runs on Paystack plans. Each paid
catalog entry is linked to its Paystack plan through paystack_plan_code.

CONSTRAINTS:
- plan_name is one of free/monthly/yearly and unique, so at most 3 rows
- the free plan has price 0 and no Paystack plan code
"""

from sqlalchemy import Column, String, Boolean, Integer, Numeric, Text, JSON, Enum

from app.models.base import Base, TimestampMixin, PrimaryKeyMixin
from app.models.user import PlanTier


MAX_PLANS = len(PlanTier)


class Plan(Base, PrimaryKeyMixin, TimestampMixin):
    """
    Catalog entry for one plan tier.
    """

    __tablename__ = "plans"

    plan_name = Column(Enum(PlanTier, name="plantier"), unique=True, nullable=False)
    display_name = Column(String(100), nullable=False)
    description = Column(Text, nullable=False, default="")

    # Pricing
    # WHY: Stored in major units (e.g. naira); Paystack wants the
    # lowest denomination, converted in PlanService.
    price = Column(Numeric(12, 2), nullable=False, default=0)
    currency = Column(String(3), nullable=False, default="NGN")

    # Marketing copy
    perks = Column(JSON, nullable=False, default=list)

    # Flags
    is_active = Column(Boolean, nullable=False, default=True)
    is_popular = Column(Boolean, nullable=False, default=False)
    sort_order = Column(Integer, nullable=False, default=0)

    # Paystack link (PLN_xxx); null for the free plan
    paystack_plan_code = Column(String(100), nullable=True, unique=True)

    @property
    def billing_interval(self) -> str:
        """Paystack interval name for this tier."""
        return "annually" if self.plan_name == PlanTier.YEARLY else "monthly"

    def __repr__(self) -> str:
        return f"<Plan(id={self.id}, plan_name={self.plan_name}, price={self.price})>"

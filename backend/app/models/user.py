"""
User model.

WHAT: Player/staff accounts together with their billing fields.

WHY: The billing fields (plan, renewal_date, paystack_subscription_id) live on
the user record itself: a user is never deleted as a billing entity, only
downgraded to FREE in place. The subscription status shown to clients is
NOT stored here; it is derived on every read by
app.services.subscription_status so it can never go stale.

INVARIANTS:
- plan == FREE  =>  renewal_date IS NULL and paystack_subscription_id IS NULL
- renewal_date IS NOT NULL  =>  plan != FREE
Both are enforced at the DAO write seam (UserDAO.set_billing).
"""

import enum
from sqlalchemy import Column, String, Enum, Boolean, DateTime, CheckConstraint

from app.models.base import Base, TimestampMixin, PrimaryKeyMixin


class UserRole(str, enum.Enum):
    """
    User role enumeration.

    WHY: Enum ensures only valid roles can be assigned. ADMIN and
    MODERATOR are "staff" and may manage other users' subscriptions.
    """

    USER = "user"
    ADMIN = "admin"
    MODERATOR = "moderator"


STAFF_ROLES = (UserRole.ADMIN, UserRole.MODERATOR)


class PlanTier(str, enum.Enum):
    """
    Billing tier a user is on.

    WHY: Only three tiers exist; the paid ones map to a Paystack plan code
    each (see Settings.paystack_plan_tiers).
    """

    FREE = "free"
    MONTHLY = "monthly"
    YEARLY = "yearly"


PAID_TIERS = (PlanTier.MONTHLY, PlanTier.YEARLY)


class User(Base, PrimaryKeyMixin, TimestampMixin):
    """
    User model representing players and staff.
    """

    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint(
            "plan <> 'FREE' OR (renewal_date IS NULL AND paystack_subscription_id IS NULL)",
            name="ck_users_free_plan_has_no_billing",
        ),
    )

    # Identification
    email = Column(String(255), unique=True, index=True, nullable=False)
    first_name = Column(String(100), nullable=False, default="")
    last_name = Column(String(100), nullable=False, default="")
    username = Column(String(100), unique=True, nullable=True)

    # Authorization
    role = Column(Enum(UserRole, name="userrole"), nullable=False, default=UserRole.USER)

    # Billing
    plan = Column(Enum(PlanTier, name="plantier"), nullable=False, default=PlanTier.FREE, index=True)
    # WHY: Next billing instant (naive UTC). Absent on the free plan.
    renewal_date = Column(DateTime, nullable=True, index=True)
    # WHY: Present only while a Paystack recurring subscription is believed
    # active; cleared on cancel so the status derives to "canceled".
    paystack_subscription_id = Column(String(100), nullable=True, unique=True, index=True)

    # Lifecycle flags (independent of billing)
    is_active = Column(Boolean, default=True, nullable=False)
    is_deleted = Column(Boolean, default=False, nullable=False)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email}, plan={self.plan})>"

"""
Database models package.

WHY: Centralizing model imports ensures Alembic can discover all models
for migration generation and makes it easier to import models elsewhere.
"""

from app.models.base import Base, TimestampMixin, PrimaryKeyMixin
from app.models.user import User, UserRole, PlanTier, STAFF_ROLES, PAID_TIERS
from app.models.plan import Plan, MAX_PLANS

__all__ = [
    "Base",
    "TimestampMixin",
    "PrimaryKeyMixin",
    "User",
    "UserRole",
    "PlanTier",
    "STAFF_ROLES",
    "PAID_TIERS",
    "Plan",
    "MAX_PLANS",
]

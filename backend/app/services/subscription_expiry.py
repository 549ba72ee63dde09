"""
Subscription Expiry Background Service.

WHAT: Periodically downgrades paid subscribers whose renewal date has
passed by more than the grace window.

WHY: Cancelled subscriptions keep paid access until renewal_date and
Paystack sends nothing when that day arrives. Renewal webhooks can also be
late or lost. The sweep is the backstop that eventually returns lapsed
accounts to free:
1. Renewal date older than now - grace -> plan=free, billing fields cleared
2. Renewal date within the grace window -> left alone (a late renewal
   webhook may still arrive)

HOW: One UPDATE whose WHERE clause is the selection predicate, so the
database re-checks each row at write time. A renewal webhook that moved
renewal_date forward is never overwritten by a stale read. Errors are
logged and rolled back; the job never raises into the scheduler.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from app.core.config import settings
from app.dao.user import UserDAO
from app.db.session import AsyncSessionLocal
from app.models.base import utcnow
from app.models.user import User


logger = logging.getLogger(__name__)


class SubscriptionExpiryService:
    """
    Background service for the expiry sweep.

    Example:
        service = SubscriptionExpiryService()
        downgraded = await service.sweep()
    """

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker] = None,
        clock: Optional[Callable[[], datetime]] = None,
        grace_days: Optional[int] = None,
    ):
        """
        Initialize expiry service.

        Args:
            session_factory: Optional factory for creating database sessions.
                           Defaults to the application's AsyncSessionLocal.
            clock: Returns the current naive-UTC time
            grace_days: Days past renewal before downgrade (defaults to settings)
        """
        self._session_factory = session_factory or AsyncSessionLocal
        self._clock = clock or utcnow
        self.grace_days = settings.SUBSCRIPTION_GRACE_DAYS if grace_days is None else grace_days

    def cutoff(self) -> datetime:
        """Renewal dates strictly before this instant are lapsed."""
        return self._clock() - timedelta(days=self.grace_days)

    async def sweep(self) -> int:
        """
        Main job function: downgrade every lapsed subscriber.

        Returns:
            Number of subscribers downgraded (0 on error)
        """
        cutoff = self.cutoff()
        logger.info(
            f"Starting subscription expiry sweep (cutoff {cutoff.isoformat()})",
            extra={"grace_days": self.grace_days},
        )

        async with self._session_factory() as session:
            try:
                downgraded = await UserDAO(User, session).expire_lapsed(cutoff)
                await session.commit()
            except Exception as e:
                await session.rollback()
                logger.exception(f"Error in subscription expiry sweep: {e}")
                return 0

        logger.info(
            f"Subscription expiry sweep downgraded {downgraded} subscriber(s)",
            extra={"downgraded": downgraded},
        )
        return downgraded


# Singleton instance
_expiry_service: Optional[SubscriptionExpiryService] = None


def get_expiry_service() -> SubscriptionExpiryService:
    """Get or create the expiry service instance."""
    global _expiry_service
    if _expiry_service is None:
        _expiry_service = SubscriptionExpiryService()
    return _expiry_service

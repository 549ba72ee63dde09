"""
Paystack webhook processing.

WHAT: Verifies and applies Paystack billing events to subscriber records.

WHY: Webhooks are the source of truth for payments:
- charge.success / subscription.create / subscription.renew: grant a
  billing period on the paid tier
- subscription.disable / subscription.not_renew / subscription.cancel:
  drop the subscriber to free
- invoice.payment_failed: drop the subscriber to free immediately

Paystack redelivers an event until it sees a 2xx and may deliver events out
of order, so every mutation here sets absolute values (never increments).
Replaying an event, or applying a stale one, converges on a consistent row
instead of compounding.

HOW:
1. The endpoint checks the HMAC-SHA512 signature over the raw body
2. It answers 200 and schedules process_webhook_payload()
3. The payload is parsed into a typed event and dispatched through the
   handler table on PaystackWebhookService
4. Failures after acknowledgement are logged, never raised
"""

import hashlib
import hmac
import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, Optional

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import settings
from app.dao.plan import PlanDAO
from app.dao.user import UserDAO
from app.db.session import AsyncSessionLocal
from app.models.base import utcnow
from app.models.user import User, PlanTier
from app.schemas.webhook import (
    ChargeSuccessEvent,
    InvoiceFailedEvent,
    PaystackEvent,
    SubscriptionCreatedEvent,
    SubscriptionDisabledEvent,
    UnknownEvent,
    parse_paystack_event,
)
from app.services.subscription_status import add_billing_period


logger = logging.getLogger(__name__)


SIGNATURE_HEADER = "x-paystack-signature"


def compute_signature(raw_body: bytes, secret: str) -> str:
    """Hex HMAC-SHA512 of the raw request body keyed by the secret."""
    return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha512).hexdigest()


def verify_signature(raw_body: bytes, signature: Optional[str], secret: str) -> bool:
    """
    Check a webhook signature.

    WHY: The digest must be computed over the exact bytes received; parsing
    and re-serializing the JSON would change whitespace and key order.
    compare_digest keeps the comparison constant-time. Both sides are
    compared as bytes, exactly as received: any non-hex character, case
    change or whitespace fails instead of raising.

    Args:
        raw_body: Request body exactly as received
        signature: Value of the x-paystack-signature header
        secret: Paystack secret key

    Returns:
        True only if the signature matches
    """
    if not signature:
        return False
    expected = compute_signature(raw_body, secret)
    return hmac.compare_digest(expected.encode("ascii"), signature.encode("utf-8", "replace"))


@dataclass
class WebhookOutcome:
    """What processing an event did, for logs and tests."""

    event_type: str
    action: str  # "activated", "downgraded", "skipped" or "ignored"
    user_id: Optional[int] = None
    detail: Optional[str] = None


class PaystackWebhookService:
    """
    Applies verified Paystack events to subscriber records.

    Example:
        service = PaystackWebhookService(db)
        outcome = await service.handle(parse_paystack_event(payload))
        await db.commit()
    """

    def __init__(
        self,
        db: AsyncSession,
        clock: Optional[Callable[[], datetime]] = None,
        plan_tiers: Optional[Dict[str, str]] = None,
    ):
        """
        Initialize the processor.

        Args:
            db: Database session (caller commits)
            clock: Returns the current naive-UTC time; tests pin it
            plan_tiers: Paystack plan code -> tier map (defaults to settings)
        """
        self.db = db
        self.user_dao = UserDAO(User, db)
        self.plan_dao = PlanDAO(db)
        self._clock = clock or utcnow
        self._plan_tiers = settings.paystack_plan_tiers if plan_tiers is None else plan_tiers
        self._handlers = {
            ChargeSuccessEvent: self._handle_charge_success,
            SubscriptionCreatedEvent: self._handle_subscription_created,
            SubscriptionDisabledEvent: self._handle_subscription_disabled,
            InvoiceFailedEvent: self._handle_invoice_failed,
            UnknownEvent: self._handle_unknown,
        }

    async def handle(self, event: PaystackEvent) -> WebhookOutcome:
        """
        Dispatch an event to its handler.

        Returns:
            WebhookOutcome describing the change (or why there was none)
        """
        handler = self._handlers[type(event)]
        outcome = await handler(event)
        logger.info(
            f"Paystack event {outcome.event_type}: {outcome.action}",
            extra={
                "event_type": outcome.event_type,
                "action": outcome.action,
                "user_id": outcome.user_id,
            },
        )
        return outcome

    # =========================================================================
    # Plan resolution
    # =========================================================================

    async def _resolve_tier(self, plan_code: Optional[str]) -> Optional[PlanTier]:
        """
        Map a Paystack plan code to a paid tier.

        Configured codes win; otherwise the plan catalog is consulted. An
        unrecognised code resolves to None rather than a guessed tier.
        """
        if not plan_code:
            return None

        tier = self._plan_tiers.get(plan_code)
        if tier:
            return PlanTier(tier)

        plan = await self.plan_dao.get_by_paystack_code(plan_code)
        if plan and plan.plan_name != PlanTier.FREE:
            return PlanTier(plan.plan_name)
        return None

    async def _activate(
        self,
        event_type: str,
        email: str,
        plan_code: Optional[str],
        subscription_code: str,
    ) -> WebhookOutcome:
        tier = await self._resolve_tier(plan_code)
        if tier is None:
            logger.warning(
                f"Ignoring {event_type} for unknown plan code {plan_code}",
                extra={"event_type": event_type, "plan_code": plan_code},
            )
            return WebhookOutcome(event_type, "skipped", detail="unknown plan code")

        user = await self.user_dao.get_by_email(email)
        if not user:
            logger.warning(
                f"Ignoring {event_type}: no user for customer email",
                extra={"event_type": event_type, "subscription_code": subscription_code},
            )
            return WebhookOutcome(event_type, "skipped", detail="unknown customer")

        renewal_date = add_billing_period(self._clock(), tier)
        await self.user_dao.set_billing(
            user.id,
            plan=tier,
            renewal_date=renewal_date,
            paystack_subscription_id=subscription_code,
        )
        return WebhookOutcome(event_type, "activated", user_id=user.id)

    async def _downgrade(self, event_type: str, subscription_code: str) -> WebhookOutcome:
        user = await self.user_dao.downgrade_by_subscription_code(subscription_code)
        if not user:
            # Already downgraded, or relinked to a newer subscription
            return WebhookOutcome(
                event_type, "skipped", detail="no user holds this subscription"
            )
        return WebhookOutcome(event_type, "downgraded", user_id=user.id)

    # =========================================================================
    # Handlers
    # =========================================================================

    async def _handle_charge_success(self, event: ChargeSuccessEvent) -> WebhookOutcome:
        data = event.data
        if not data.subscription_code or data.plan is None:
            return WebhookOutcome(event.event, "skipped", detail="not a subscription charge")
        return await self._activate(
            event.event, data.customer.email, data.plan.plan_code, data.subscription_code
        )

    async def _handle_subscription_created(
        self, event: SubscriptionCreatedEvent
    ) -> WebhookOutcome:
        data = event.data
        return await self._activate(
            event.event, data.customer.email, data.plan.plan_code, data.subscription_code
        )

    async def _handle_subscription_disabled(
        self, event: SubscriptionDisabledEvent
    ) -> WebhookOutcome:
        return await self._downgrade(event.event, event.data.subscription_code)

    async def _handle_invoice_failed(self, event: InvoiceFailedEvent) -> WebhookOutcome:
        return await self._downgrade(event.event, event.data.subscription.subscription_code)

    async def _handle_unknown(self, event: UnknownEvent) -> WebhookOutcome:
        return WebhookOutcome(event.event, "ignored")


async def process_webhook_payload(
    raw_body: bytes,
    session_factory: Optional[async_sessionmaker] = None,
    clock: Optional[Callable[[], datetime]] = None,
    request_id: Optional[str] = None,
) -> Optional[WebhookOutcome]:
    """
    Parse and apply a verified webhook body in its own session.

    WHAT: Background half of the webhook endpoint.

    WHY: The sender has already been acknowledged, so nothing can be
    reported back; malformed payloads and processing errors are logged and
    the transaction rolled back.

    Args:
        raw_body: Signature-verified request body
        session_factory: Session factory (defaults to AsyncSessionLocal)
        clock: Optional clock passed to the service
        request_id: ID of the delivering request, for log correlation

    Returns:
        The outcome, or None if the payload was dropped or processing failed
    """
    try:
        payload = json.loads(raw_body)
        event = parse_paystack_event(payload)
    except (ValueError, TypeError, AttributeError, PydanticValidationError) as e:
        logger.warning(
            f"Dropping malformed Paystack webhook payload: {type(e).__name__}",
            extra={"request_id": request_id},
        )
        return None

    factory = session_factory or AsyncSessionLocal
    async with factory() as session:
        try:
            outcome = await PaystackWebhookService(session, clock=clock).handle(event)
            await session.commit()
            return outcome
        except Exception as e:
            await session.rollback()
            logger.exception(
                f"Error processing Paystack webhook {event.event}: {e}",
                extra={"event_type": event.event, "request_id": request_id},
            )
            return None

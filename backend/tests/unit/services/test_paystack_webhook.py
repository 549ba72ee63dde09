"""
Unit tests for Paystack webhook processing.

WHAT: Tests for signature verification, event parsing, the event handlers
and process_webhook_payload().

WHY: Webhooks are the only way payments reach subscriber records.
Verifies that:
1. Any change to body or signature fails verification
2. Events parse into their typed variants; unknown ones are ignored
3. Activation grants one billing period from processing time
4. Replays converge on the same state
5. Disable and payment-failed events downgrade only the current holder
6. Malformed payloads and processing errors never raise

HOW: Uses pytest-asyncio with the in-memory SQLite database and a pinned
clock.
"""

import json
import pytest
from datetime import datetime, timedelta
from unittest.mock import patch

from pydantic import ValidationError as PydanticValidationError

from app.models.user import PlanTier
from app.schemas.webhook import (
    ChargeSuccessEvent,
    InvoiceFailedEvent,
    SubscriptionCreatedEvent,
    SubscriptionDisabledEvent,
    UnknownEvent,
    parse_paystack_event,
)
from app.services.paystack_webhook import (
    PaystackWebhookService,
    compute_signature,
    process_webhook_payload,
    verify_signature,
)
from app.services.subscription_status import SubscriptionStatus, status_for
from tests.factories import PlanFactory, UserFactory


SECRET = "sk_test_webhook_secret"
NOW = datetime(2025, 3, 10, 12, 0, 0)
PLAN_TIERS = {"PLN_monthly": "monthly", "PLN_yearly": "yearly"}


def clock():
    return NOW


def subscription_event(event="subscription.create", email="player@example.com",
                       plan_code="PLN_monthly", subscription_code="SUB_abc"):
    return {
        "event": event,
        "data": {
            "subscription_code": subscription_code,
            "status": "active",
            "email_token": "tok_abc",
            "customer": {"email": email, "customer_code": "CUS_1"},
            "plan": {"plan_code": plan_code, "name": "Monthly", "interval": "monthly"},
        },
    }


def charge_event(email="player@example.com", plan_code="PLN_monthly", subscription_code="SUB_abc"):
    data = {
        "reference": "ref_123",
        "amount": 250000,
        "customer": {"email": email},
        "plan": {"plan_code": plan_code} if plan_code else {},
    }
    if subscription_code:
        data["subscription_code"] = subscription_code
    return {"event": "charge.success", "data": data}


def disable_event(subscription_code="SUB_abc", event="subscription.disable"):
    return {"event": event, "data": {"subscription_code": subscription_code, "status": "complete"}}


def invoice_failed_event(subscription_code="SUB_abc"):
    return {
        "event": "invoice.payment_failed",
        "data": {"invoice_code": "INV_1", "subscription": {"subscription_code": subscription_code}},
    }


class TestSignature:
    """Tests for HMAC-SHA512 verification."""

    def test_valid_signature_verifies(self):
        body = b'{"event":"charge.success","data":{}}'
        assert verify_signature(body, compute_signature(body, SECRET), SECRET)

    def test_upper_cased_signature_fails(self):
        """The header is compared exactly as sent."""
        body = b'{"event":"x"}'
        assert not verify_signature(body, compute_signature(body, SECRET).upper(), SECRET)

    def test_padded_signature_fails(self):
        body = b'{"event":"x"}'
        assert not verify_signature(body, f" {compute_signature(body, SECRET)} ", SECRET)

    @pytest.mark.parametrize("signature", ["é" * 128, "€" * 128, "ÿ"])
    def test_non_ascii_signature_fails(self, signature):
        """
        Test non-ASCII header values.

        WHY: Starlette decodes headers as latin-1, so any client can send
        these; they must be rejected, not raise.
        """
        assert not verify_signature(b"{}", signature, SECRET)

    def test_flipped_body_byte_fails(self):
        body = b'{"event":"charge.success","data":{}}'
        signature = compute_signature(body, SECRET)
        tampered = body.replace(b"success", b"suckess")
        assert not verify_signature(tampered, signature, SECRET)

    def test_flipped_signature_char_fails(self):
        body = b'{"event":"charge.success"}'
        signature = compute_signature(body, SECRET)
        flipped = ("0" if signature[0] != "0" else "1") + signature[1:]
        assert not verify_signature(body, flipped, SECRET)

    def test_whitespace_change_fails(self):
        """The digest covers raw bytes, not the parsed JSON."""
        body = b'{"event": "charge.success"}'
        signature = compute_signature(body, SECRET)
        assert not verify_signature(b'{"event":"charge.success"}', signature, SECRET)

    def test_wrong_secret_fails(self):
        body = b"{}"
        assert not verify_signature(body, compute_signature(body, "other"), SECRET)

    @pytest.mark.parametrize("signature", [None, ""])
    def test_missing_signature_fails(self, signature):
        assert not verify_signature(b"{}", signature, SECRET)


class TestParsePaystackEvent:
    """Tests for the tagged union of events."""

    def test_subscription_create(self):
        event = parse_paystack_event(subscription_event())
        assert isinstance(event, SubscriptionCreatedEvent)
        assert event.data.customer.email == "player@example.com"
        assert event.data.plan.plan_code == "PLN_monthly"

    def test_subscription_renew_shares_variant(self):
        event = parse_paystack_event(subscription_event(event="subscription.renew"))
        assert isinstance(event, SubscriptionCreatedEvent)

    def test_charge_success_with_empty_plan(self):
        event = parse_paystack_event(charge_event(plan_code=None, subscription_code=None))
        assert isinstance(event, ChargeSuccessEvent)
        assert event.data.plan is None
        assert event.data.subscription_code is None

    @pytest.mark.parametrize("name", ["subscription.disable", "subscription.not_renew"])
    def test_disable_variants(self, name):
        event = parse_paystack_event(disable_event(event=name))
        assert isinstance(event, SubscriptionDisabledEvent)

    def test_invoice_failed(self):
        event = parse_paystack_event(invoice_failed_event())
        assert isinstance(event, InvoiceFailedEvent)
        assert event.data.subscription.subscription_code == "SUB_abc"

    def test_unknown_event_type(self):
        event = parse_paystack_event({"event": "transfer.success", "data": {"amount": 1}})
        assert isinstance(event, UnknownEvent)
        assert event.event == "transfer.success"

    def test_known_event_missing_fields_fails_validation(self):
        with pytest.raises(PydanticValidationError):
            parse_paystack_event({"event": "subscription.create", "data": {"status": "active"}})

    def test_missing_event_name_fails_validation(self):
        with pytest.raises(PydanticValidationError):
            parse_paystack_event({"data": {}})


class TestPaystackWebhookService:
    """Tests for the event handlers."""

    @pytest.fixture
    def service(self, db_session):
        return PaystackWebhookService(db_session, clock=clock, plan_tiers=PLAN_TIERS)

    @pytest.mark.asyncio
    async def test_subscription_create_activates_free_user(self, db_session, service):
        """Free user + subscription.create for monthly -> active until T + 1 month."""
        user = await UserFactory.create(db_session, email="player@example.com")

        outcome = await service.handle(parse_paystack_event(subscription_event()))
        await db_session.refresh(user)

        assert outcome.action == "activated"
        assert outcome.user_id == user.id
        assert user.plan == PlanTier.MONTHLY
        assert user.renewal_date == datetime(2025, 4, 10, 12, 0, 0)
        assert user.paystack_subscription_id == "SUB_abc"
        assert status_for(user, now=NOW) == SubscriptionStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_yearly_plan_code_grants_a_year(self, db_session, service):
        user = await UserFactory.create(db_session, email="player@example.com")

        await service.handle(parse_paystack_event(subscription_event(plan_code="PLN_yearly")))
        await db_session.refresh(user)

        assert user.plan == PlanTier.YEARLY
        assert user.renewal_date == datetime(2026, 3, 10, 12, 0, 0)

    @pytest.mark.asyncio
    async def test_email_match_is_case_insensitive(self, db_session, service):
        user = await UserFactory.create(db_session, email="player@example.com")

        outcome = await service.handle(
            parse_paystack_event(subscription_event(email="Player@Example.COM"))
        )

        assert outcome.user_id == user.id

    @pytest.mark.asyncio
    async def test_replayed_event_converges(self, db_session, service):
        """Applying the same event twice leaves the same end state."""
        user = await UserFactory.create(db_session, email="player@example.com")
        event = parse_paystack_event(subscription_event())

        await service.handle(event)
        await db_session.refresh(user)
        first = (user.plan, user.renewal_date, user.paystack_subscription_id)

        await service.handle(event)
        await db_session.refresh(user)

        assert (user.plan, user.renewal_date, user.paystack_subscription_id) == first

    @pytest.mark.asyncio
    async def test_renewal_moves_renewal_date_to_processing_time_plus_period(self, db_session):
        user = await UserFactory.create(
            db_session,
            email="player@example.com",
            plan=PlanTier.MONTHLY,
            renewal_date=NOW - timedelta(days=1),
            paystack_subscription_id="SUB_abc",
        )
        service = PaystackWebhookService(db_session, clock=clock, plan_tiers=PLAN_TIERS)

        await service.handle(parse_paystack_event(subscription_event(event="subscription.renew")))
        await db_session.refresh(user)

        assert user.renewal_date == datetime(2025, 4, 10, 12, 0, 0)

    @pytest.mark.asyncio
    async def test_charge_success_with_subscription_activates(self, db_session, service):
        user = await UserFactory.create(db_session, email="player@example.com")

        outcome = await service.handle(parse_paystack_event(charge_event()))
        await db_session.refresh(user)

        assert outcome.action == "activated"
        assert user.plan == PlanTier.MONTHLY
        assert user.paystack_subscription_id == "SUB_abc"

    @pytest.mark.asyncio
    async def test_one_off_charge_is_skipped(self, db_session, service):
        user = await UserFactory.create(db_session, email="player@example.com")

        outcome = await service.handle(
            parse_paystack_event(charge_event(plan_code=None, subscription_code=None))
        )
        await db_session.refresh(user)

        assert outcome.action == "skipped"
        assert user.plan == PlanTier.FREE

    @pytest.mark.asyncio
    async def test_unknown_plan_code_is_skipped(self, db_session, service):
        """An unrecognised plan code never grants a guessed tier."""
        user = await UserFactory.create(db_session, email="player@example.com")

        outcome = await service.handle(
            parse_paystack_event(subscription_event(plan_code="PLN_mystery"))
        )
        await db_session.refresh(user)

        assert outcome.action == "skipped"
        assert outcome.detail == "unknown plan code"
        assert user.plan == PlanTier.FREE
        assert user.renewal_date is None

    @pytest.mark.asyncio
    async def test_plan_code_resolved_from_catalog(self, db_session):
        """Codes not in configuration fall back to the plan catalog."""
        await PlanFactory.create(
            db_session, plan_name=PlanTier.YEARLY, paystack_plan_code="PLN_catalog_yearly"
        )
        user = await UserFactory.create(db_session, email="player@example.com")
        service = PaystackWebhookService(db_session, clock=clock, plan_tiers={})

        await service.handle(
            parse_paystack_event(subscription_event(plan_code="PLN_catalog_yearly"))
        )
        await db_session.refresh(user)

        assert user.plan == PlanTier.YEARLY

    @pytest.mark.asyncio
    async def test_unknown_customer_is_skipped(self, db_session, service):
        outcome = await service.handle(
            parse_paystack_event(subscription_event(email="nobody@example.com"))
        )

        assert outcome.action == "skipped"
        assert outcome.user_id is None

    @pytest.mark.asyncio
    async def test_disable_downgrades_holder(self, db_session, service):
        user = await UserFactory.create(
            db_session,
            plan=PlanTier.MONTHLY,
            renewal_date=NOW + timedelta(days=10),
            paystack_subscription_id="SUB_abc",
        )

        outcome = await service.handle(parse_paystack_event(disable_event()))
        await db_session.refresh(user)

        assert outcome.action == "downgraded"
        assert user.plan == PlanTier.FREE
        assert user.renewal_date is None
        assert user.paystack_subscription_id is None

    @pytest.mark.asyncio
    async def test_disable_for_unknown_subscription_is_noop(self, db_session, service):
        """A stale disable for a replaced subscription leaves the user alone."""
        user = await UserFactory.create(
            db_session,
            plan=PlanTier.MONTHLY,
            renewal_date=NOW + timedelta(days=10),
            paystack_subscription_id="SUB_new",
        )

        outcome = await service.handle(parse_paystack_event(disable_event("SUB_old")))
        await db_session.refresh(user)

        assert outcome.action == "skipped"
        assert user.plan == PlanTier.MONTHLY
        assert user.paystack_subscription_id == "SUB_new"

    @pytest.mark.asyncio
    async def test_invoice_failed_downgrades_immediately(self, db_session, service):
        user = await UserFactory.create(
            db_session,
            plan=PlanTier.YEARLY,
            renewal_date=NOW + timedelta(days=200),
            paystack_subscription_id="SUB_abc",
        )

        outcome = await service.handle(parse_paystack_event(invoice_failed_event()))
        await db_session.refresh(user)

        assert outcome.action == "downgraded"
        assert user.plan == PlanTier.FREE
        assert status_for(user, now=NOW) == SubscriptionStatus.FREE

    @pytest.mark.asyncio
    async def test_unknown_event_is_ignored(self, db_session, service):
        outcome = await service.handle(parse_paystack_event({"event": "transfer.success"}))
        assert outcome.action == "ignored"


class TestProcessWebhookPayload:
    """Tests for the background entry point."""

    @pytest.mark.asyncio
    async def test_applies_and_commits(self, db_session, session_factory):
        user = await UserFactory.create(db_session, email="player@example.com")
        raw = json.dumps(subscription_event()).encode()

        outcome = await process_webhook_payload(raw, session_factory=session_factory, clock=clock)

        await db_session.refresh(user)
        assert outcome.action == "activated"
        assert user.plan == PlanTier.MONTHLY
        assert user.renewal_date == datetime(2025, 4, 10, 12, 0, 0)

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "raw",
        [b"not json", b"[1, 2, 3]", b'{"event": "subscription.create", "data": {}}'],
    )
    async def test_malformed_payload_is_dropped(self, session_factory, raw):
        assert await process_webhook_payload(raw, session_factory=session_factory) is None

    @pytest.mark.asyncio
    async def test_processing_error_is_logged_not_raised(self, session_factory):
        raw = json.dumps(disable_event()).encode()

        with patch(
            "app.services.paystack_webhook.UserDAO.downgrade_by_subscription_code",
            side_effect=RuntimeError("database gone"),
        ):
            outcome = await process_webhook_payload(raw, session_factory=session_factory)

        assert outcome is None

"""
Integration tests for the Paystack webhook endpoint.

WHY: The endpoint is public; its signature check is the only thing between
the internet and subscriber billing state. These tests ensure:
1. Unsigned or mis-signed deliveries get 401 and change nothing
2. A missing secret is a 500, reported before the signature check
3. Signed deliveries get 200 at once and are processed in the background
4. Business no-ops (unknown customer, unknown event) still get 200
"""

import json
import pytest
from datetime import datetime
from unittest.mock import patch

from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import webhooks as webhooks_module
from app.core.config import settings
from app.models.base import utcnow
from app.models.user import PlanTier
from app.services.paystack_webhook import SIGNATURE_HEADER, compute_signature
from tests.factories import UserFactory


WEBHOOK_URL = "/api/webhooks/paystack"


def signed(payload: dict, secret: str = None):
    """Serialize a payload and sign the exact bytes."""
    body = json.dumps(payload).encode()
    signature = compute_signature(body, secret or settings.PAYSTACK_SECRET_KEY)
    return body, {SIGNATURE_HEADER: signature, "Content-Type": "application/json"}


def subscription_create(email="player@example.com", plan_code="PLN_monthly", code="SUB_live"):
    return {
        "event": "subscription.create",
        "data": {
            "subscription_code": code,
            "status": "active",
            "customer": {"email": email},
            "plan": {"plan_code": plan_code},
        },
    }


class TestWebhookAuthentication:
    """Signature and configuration checks."""

    @pytest.mark.asyncio
    async def test_missing_signature_rejected(self, client: AsyncClient):
        response = await client.post(WEBHOOK_URL, content=b'{"event":"charge.success"}')

        assert response.status_code == 401
        assert response.json()["error"] == "WebhookSignatureError"

    @pytest.mark.asyncio
    async def test_tampered_body_rejected(self, client: AsyncClient, db_session: AsyncSession):
        """
        Test a body changed after signing.

        WHY: Flipping any byte must invalidate the signature.
        """
        user = await UserFactory.create(db_session, email="player@example.com")
        body, headers = signed(subscription_create())
        tampered = body.replace(b"PLN_monthly", b"PLN_yearly_")

        with patch.object(webhooks_module, "process_webhook_payload") as mock_process:
            response = await client.post(WEBHOOK_URL, content=tampered, headers=headers)

        assert response.status_code == 401
        mock_process.assert_not_called()
        await db_session.refresh(user)
        assert user.plan == PlanTier.FREE

    @pytest.mark.asyncio
    async def test_non_ascii_signature_rejected(self, client: AsyncClient):
        """A latin-1 header value is a bad signature, not a server error."""
        body, _ = signed(subscription_create())

        with patch.object(webhooks_module, "process_webhook_payload") as mock_process:
            response = await client.post(
                WEBHOOK_URL,
                content=body,
                headers={SIGNATURE_HEADER.encode(): b"\xe9" * 128},
            )

        assert response.status_code == 401
        mock_process.assert_not_called()

    @pytest.mark.asyncio
    async def test_upper_cased_signature_rejected(self, client: AsyncClient):
        body, headers = signed(subscription_create())
        headers[SIGNATURE_HEADER] = headers[SIGNATURE_HEADER].upper()

        response = await client.post(WEBHOOK_URL, content=body, headers=headers)

        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_wrong_secret_rejected(self, client: AsyncClient):
        body, headers = signed(subscription_create(), secret="sk_test_someone_else")

        response = await client.post(WEBHOOK_URL, content=body, headers=headers)

        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_missing_secret_is_server_error(self, client: AsyncClient, monkeypatch):
        body, headers = signed(subscription_create())
        monkeypatch.setattr(webhooks_module.settings, "PAYSTACK_SECRET_KEY", None)

        response = await client.post(WEBHOOK_URL, content=body, headers=headers)

        assert response.status_code == 500
        assert response.json()["error"] == "ConfigurationError"

    @pytest.mark.asyncio
    async def test_response_carries_request_id(self, client: AsyncClient):
        body, headers = signed({"event": "transfer.success", "data": {}})
        headers["X-Request-ID"] = "delivery-42"

        with patch.object(webhooks_module, "process_webhook_payload"):
            response = await client.post(WEBHOOK_URL, content=body, headers=headers)

        assert response.headers["X-Request-ID"] == "delivery-42"


class TestWebhookAcknowledgement:
    """Signed deliveries are acknowledged and handed to the background task."""

    @pytest.mark.asyncio
    async def test_signed_delivery_scheduled(self, client: AsyncClient, session_factory):
        body, headers = signed(subscription_create())
        headers["X-Request-ID"] = "delivery-1"

        with patch.object(webhooks_module, "process_webhook_payload") as mock_process:
            response = await client.post(WEBHOOK_URL, content=body, headers=headers)

        assert response.status_code == 200
        assert response.json() == {"received": True, "message": "Webhook received"}
        mock_process.assert_called_once_with(
            body, session_factory=session_factory, request_id="delivery-1"
        )

    @pytest.mark.asyncio
    async def test_subscription_create_activates_user(
        self, client: AsyncClient, db_session: AsyncSession
    ):
        """End to end: the background task runs before the client call returns."""
        user = await UserFactory.create(db_session, email="player@example.com")
        body, headers = signed(subscription_create())

        response = await client.post(WEBHOOK_URL, content=body, headers=headers)

        assert response.status_code == 200
        await db_session.refresh(user)
        assert user.plan == PlanTier.MONTHLY
        assert user.paystack_subscription_id == "SUB_live"
        assert user.renewal_date > utcnow()

    @pytest.mark.asyncio
    async def test_disable_downgrades_user(self, client: AsyncClient, db_session: AsyncSession):
        user = await UserFactory.create(
            db_session,
            plan=PlanTier.YEARLY,
            renewal_date=datetime(2099, 1, 1),
            paystack_subscription_id="SUB_live",
        )
        body, headers = signed({"event": "subscription.disable", "data": {"subscription_code": "SUB_live"}})

        response = await client.post(WEBHOOK_URL, content=body, headers=headers)

        assert response.status_code == 200
        await db_session.refresh(user)
        assert user.plan == PlanTier.FREE
        assert user.renewal_date is None

    @pytest.mark.asyncio
    async def test_unknown_customer_still_acknowledged(self, client: AsyncClient):
        body, headers = signed(subscription_create(email="stranger@example.com"))

        response = await client.post(WEBHOOK_URL, content=body, headers=headers)

        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_malformed_json_still_acknowledged(self, client: AsyncClient):
        """A signed but unparseable body is dropped after acknowledgement."""
        body = b"{not json"
        headers = {SIGNATURE_HEADER: compute_signature(body, settings.PAYSTACK_SECRET_KEY)}

        response = await client.post(WEBHOOK_URL, content=body, headers=headers)

        assert response.status_code == 200

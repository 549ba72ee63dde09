"""
Paystack webhook endpoint.

WHAT: POST /webhooks/paystack receives Paystack billing events.

WHY: Paystack needs a fast 2xx or it retries. The endpoint only
authenticates the delivery and hands the body to a background task, so a
slow database never causes duplicate deliveries.

SECURITY (OWASP):
- A02: HMAC-SHA512 signature over the raw body, constant-time compare
- A07: No user auth; the signature is the credential
- A09: Rejected deliveries are logged with the request ID, never the body
"""

import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Header, Request
from sqlalchemy.ext.asyncio import async_sessionmaker

from app.core.config import settings
from app.core.exceptions import ConfigurationError, WebhookSignatureError
from app.db.session import get_session_factory
from app.middleware.request_context import get_request_id
from app.schemas.webhook import WebhookResponse
from app.services.paystack_webhook import (
    SIGNATURE_HEADER,
    process_webhook_payload,
    verify_signature,
)

logger = logging.getLogger(__name__)

# Separate router for webhooks (no auth required)
webhooks_router = APIRouter(prefix="/webhooks", tags=["Webhooks"])


@webhooks_router.post(
    "/paystack",
    response_model=WebhookResponse,
    summary="Paystack webhook",
    description="Receives Paystack subscription and payment events.",
)
async def paystack_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    session_factory: async_sessionmaker = Depends(get_session_factory),
    x_paystack_signature: Optional[str] = Header(None, alias=SIGNATURE_HEADER),
):
    """
    Handle a Paystack webhook delivery.

    HOW:
    1. 500 if no secret is configured (checked before the signature)
    2. 401 if the signature header is missing or wrong
    3. Otherwise 200 at once; the event is applied in the background

    Returns:
        Acknowledgment of webhook receipt
    """
    if not settings.PAYSTACK_SECRET_KEY:
        logger.error("Paystack webhook received but PAYSTACK_SECRET_KEY is not set")
        raise ConfigurationError(message="Webhook secret is not configured")

    # Signature covers the exact bytes sent; never re-serialize
    raw_body = await request.body()
    request_id = get_request_id()

    if not verify_signature(raw_body, x_paystack_signature, settings.PAYSTACK_SECRET_KEY):
        logger.warning(
            "Paystack webhook rejected: invalid signature",
            extra={
                "request_id": request_id,
                "signature_present": bool(x_paystack_signature),
            },
        )
        raise WebhookSignatureError()

    background_tasks.add_task(
        process_webhook_payload,
        raw_body,
        session_factory=session_factory,
        request_id=request_id,
    )

    logger.info("Paystack webhook accepted", extra={"request_id": request_id})
    return WebhookResponse()

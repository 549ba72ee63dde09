"""
Paystack API client.

WHAT: Async HTTP client for the Paystack subscription and plan APIs.

WHY: Provides a clean interface for:
1. Creating subscriptions (resolving "duplicate subscription" errors)
2. Disabling subscriptions (treating "not found" as already done)
3. Looking up a customer's subscriptions
4. Managing the Paystack side of the plan catalog

HOW: Uses httpx with Bearer secret-key auth and a per-call timeout. Every
non-success response or transport error is wrapped in PaystackError, which
carries the provider's HTTP status and error code. No call is retried;
callers decide whether a failure blocks their local write.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from app.core.config import settings
from app.core.exceptions import ConfigurationError, PaystackError


logger = logging.getLogger(__name__)


# ============================================================================
# Constants
# ============================================================================

# Subscription statuses that still bill (or will bill once more)
LIVE_SUBSCRIPTION_STATUSES = {"active", "non-renewing"}

# Error code Paystack returns when the customer already has this plan
DUPLICATE_SUBSCRIPTION_CODE = "duplicate_subscription"


# ============================================================================
# Result Types
# ============================================================================


@dataclass
class PaystackSubscription:
    """Subscription as returned by Paystack (the fields we use)."""

    subscription_code: str
    status: str
    plan_code: Optional[str] = None
    email_token: Optional[str] = None
    customer_email: Optional[str] = None
    next_payment_date: Optional[str] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "PaystackSubscription":
        plan = data.get("plan") or {}
        customer = data.get("customer") or {}
        return cls(
            subscription_code=data.get("subscription_code", ""),
            status=data.get("status", ""),
            plan_code=plan.get("plan_code") if isinstance(plan, dict) else None,
            email_token=data.get("email_token"),
            customer_email=customer.get("email") if isinstance(customer, dict) else None,
            next_payment_date=data.get("next_payment_date"),
        )


@dataclass
class PaystackPlan:
    """Plan as returned by Paystack."""

    plan_code: str
    name: str
    amount: int
    interval: str
    raw: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "PaystackPlan":
        return cls(
            plan_code=data.get("plan_code", ""),
            name=data.get("name", ""),
            amount=int(data.get("amount") or 0),
            interval=data.get("interval", ""),
            raw=data,
        )


# ============================================================================
# Paystack API Client
# ============================================================================


class PaystackClient:
    """
    Async HTTP client for the Paystack API.

    Example:
        client = PaystackClient()
        sub = await client.create_subscription("player@club.com", "PLN_monthly")
        await client.disable_subscription(sub.subscription_code)
    """

    def __init__(
        self,
        secret_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize Paystack client.

        Args:
            secret_key: Paystack secret key (defaults to settings)
            base_url: API base URL (defaults to settings)
            timeout: Request timeout in seconds
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        self._secret_key = secret_key or settings.PAYSTACK_SECRET_KEY
        self._base_url = (base_url or settings.PAYSTACK_BASE_URL).rstrip("/")
        self._timeout = timeout or settings.PAYSTACK_TIMEOUT_SECONDS
        self._transport = transport

    def _get_headers(self) -> Dict[str, str]:
        if not self._secret_key:
            raise ConfigurationError(message="Paystack secret key is not configured")
        return {
            "Authorization": f"Bearer {self._secret_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    async def _request(
        self,
        method: str,
        endpoint: str,
        data: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """
        Make an authenticated request and return the envelope's data field.

        WHY: Paystack wraps every response as {status, message, data}; a 2xx
        with status=false is still a failure.

        Raises:
            PaystackError: On transport errors, HTTP >= 400, or status=false
        """
        headers = self._get_headers()

        try:
            async with httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._timeout,
                transport=self._transport,
            ) as client:
                response = await client.request(
                    method=method,
                    url=endpoint,
                    headers=headers,
                    json=data,
                    params=params,
                )
        except httpx.TimeoutException:
            raise PaystackError(
                message="Paystack request timed out",
                endpoint=endpoint,
                timeout=self._timeout,
            )
        except httpx.RequestError as e:
            raise PaystackError(
                message=f"Paystack connection error: {str(e)}",
                endpoint=endpoint,
            )

        body = self._parse_body(response)

        if response.status_code >= 400 or not body.get("status", False):
            raise PaystackError(
                message=f"Paystack API error: {body.get('message') or f'HTTP {response.status_code}'}",
                endpoint=endpoint,
                method=method,
                provider_status=response.status_code,
                provider_code=body.get("code"),
            )

        return body.get("data")

    @staticmethod
    def _parse_body(response: httpx.Response) -> Dict[str, Any]:
        try:
            body = response.json()
        except ValueError:
            return {"status": False, "message": response.text or None}
        return body if isinstance(body, dict) else {"status": False}

    # =========================================================================
    # Subscriptions
    # =========================================================================

    async def get_subscription(self, code_or_token: str) -> PaystackSubscription:
        """Fetch a subscription by code (SUB_xxx) or id."""
        data = await self._request("GET", f"/subscription/{code_or_token}")
        return PaystackSubscription.from_api(data or {})

    async def list_customer_subscriptions(self, customer: str) -> List[PaystackSubscription]:
        """
        List subscriptions belonging to a customer.

        Args:
            customer: Customer email, code or id
        """
        data = await self._request("GET", "/subscription", params={"customer": customer})
        return [PaystackSubscription.from_api(item) for item in data or []]

    async def disable_subscription(
        self,
        subscription_code: str,
        email_token: Optional[str] = None,
    ) -> bool:
        """
        Disable a subscription so it stops billing.

        WHY: The goal is "no further billing"; a subscription Paystack no
        longer knows about already satisfies that, so 404 counts as success.

        Args:
            subscription_code: Subscription code (SUB_xxx)
            email_token: Token from the subscription; fetched when omitted

        Returns:
            True once the subscription is disabled or already gone

        Raises:
            PaystackError: On any other provider failure
        """
        try:
            if email_token is None:
                subscription = await self.get_subscription(subscription_code)
                email_token = subscription.email_token

            await self._request(
                "POST",
                "/subscription/disable",
                data={"code": subscription_code, "token": email_token},
            )
        except PaystackError as e:
            if e.provider_status == 404:
                logger.warning(
                    f"Subscription {subscription_code} not found on Paystack, treating as disabled"
                )
                return True
            raise

        logger.info(f"Disabled Paystack subscription {subscription_code}")
        return True

    async def create_customer(self, email: str) -> Dict[str, Any]:
        """Create (or return the existing) Paystack customer for an email."""
        return await self._request("POST", "/customer", data={"email": email})

    async def create_subscription(self, customer_email: str, plan_code: str) -> PaystackSubscription:
        """
        Subscribe a customer to a plan.

        HOW:
        1. Disable any live subscription the customer has on the same plan
        2. Ensure the customer exists
        3. Create the subscription
        4. On "duplicate_subscription", reuse the live one on this plan

        Raises:
            PaystackError: If creation fails and no reusable subscription exists
        """
        for existing in await self.list_customer_subscriptions(customer_email):
            if existing.plan_code == plan_code and existing.status in LIVE_SUBSCRIPTION_STATUSES:
                logger.info(
                    f"Replacing existing Paystack subscription {existing.subscription_code}",
                    extra={"plan_code": plan_code},
                )
                await self.disable_subscription(existing.subscription_code, existing.email_token)

        await self.create_customer(customer_email)

        try:
            data = await self._request(
                "POST",
                "/subscription",
                data={"customer": customer_email, "plan": plan_code},
            )
        except PaystackError as e:
            if e.provider_code != DUPLICATE_SUBSCRIPTION_CODE:
                raise
            reused = await self._find_live_subscription(customer_email, plan_code)
            if reused is None:
                raise
            logger.info(f"Reusing duplicate Paystack subscription {reused.subscription_code}")
            return reused

        subscription = PaystackSubscription.from_api(data or {})
        if subscription.plan_code is None:
            subscription.plan_code = plan_code
        return subscription

    async def _find_live_subscription(
        self, customer_email: str, plan_code: str
    ) -> Optional[PaystackSubscription]:
        for subscription in await self.list_customer_subscriptions(customer_email):
            if subscription.plan_code == plan_code and subscription.status == "active":
                return subscription
        return None

    # =========================================================================
    # Plans
    # =========================================================================

    async def create_plan(
        self,
        name: str,
        amount: int,
        interval: str,
        description: Optional[str] = None,
        currency: str = "NGN",
    ) -> PaystackPlan:
        """
        Create a plan.

        Args:
            name: Plan name shown on invoices
            amount: Price in the lowest currency unit (kobo)
            interval: monthly or annually
            description: Optional description
            currency: ISO currency code
        """
        data = await self._request(
            "POST",
            "/plan",
            data={
                "name": name,
                "amount": amount,
                "interval": interval,
                "currency": currency,
                "description": description or f"{name} subscription plan",
                "send_invoices": True,
                "send_sms": False,
            },
        )
        return PaystackPlan.from_api(data or {})

    async def update_plan(self, plan_code: str, **fields: Any) -> None:
        """Update a plan's name, amount, interval or description."""
        await self._request("PUT", f"/plan/{plan_code}", data=fields)

    async def get_plan(self, plan_code: str) -> PaystackPlan:
        """Fetch a plan by code."""
        data = await self._request("GET", f"/plan/{plan_code}")
        return PaystackPlan.from_api(data or {})

    async def deactivate_plan(self, plan_code: str) -> None:
        """
        Retire a plan.

        WHY: Paystack has no plan delete; renaming marks it as retired for
        anyone looking at the dashboard.
        """
        stamp = int(time.time() * 1000)
        await self.update_plan(plan_code, name=f"INACTIVE_{stamp}_{plan_code}")


# Singleton instance
_paystack_client: Optional[PaystackClient] = None


def get_paystack_client() -> PaystackClient:
    """Get or create Paystack client instance."""
    global _paystack_client
    if _paystack_client is None:
        _paystack_client = PaystackClient()
    return _paystack_client

"""
Paystack webhook schemas.

WHAT: Typed variants of the Paystack events we act on.

WHY: Paystack payloads differ per event type. Modelling them as a tagged
union keyed by "event" means each handler receives only the fields its
event guarantees, and a payload missing one of those fields fails
validation instead of surfacing as a KeyError halfway through a handler.

HOW: parse_paystack_event() validates known event names against the
discriminated union; any other name becomes an UnknownEvent, which the
processor logs and ignores.
"""

from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator


# ============================================================================
# Payload fragments
# ============================================================================


class _PaystackModel(BaseModel):
    # Paystack adds fields freely; keep only what we read
    model_config = ConfigDict(extra="ignore")


class PaystackCustomerRef(_PaystackModel):
    email: str
    customer_code: Optional[str] = None


class PaystackPlanRef(_PaystackModel):
    plan_code: Optional[str] = None
    name: Optional[str] = None
    interval: Optional[str] = None


class PaystackSubscriptionRef(_PaystackModel):
    subscription_code: str


class ChargeData(_PaystackModel):
    """data block of charge.success."""

    reference: Optional[str] = None
    customer: PaystackCustomerRef
    plan: Optional[PaystackPlanRef] = None
    # Only present when the charge belongs to a subscription
    subscription_code: Optional[str] = None

    @field_validator("plan", mode="before")
    @classmethod
    def empty_plan_is_none(cls, value: Any) -> Any:
        # One-off charges send "plan": {} or a bare string
        if not isinstance(value, dict) or not value:
            return None
        return value


class SubscriptionData(_PaystackModel):
    """data block of subscription.create / subscription.renew."""

    subscription_code: str
    status: Optional[str] = None
    email_token: Optional[str] = None
    customer: PaystackCustomerRef
    plan: PaystackPlanRef


class InvoiceData(_PaystackModel):
    """data block of invoice.payment_failed."""

    invoice_code: Optional[str] = None
    subscription: PaystackSubscriptionRef


# ============================================================================
# Events
# ============================================================================


class ChargeSuccessEvent(_PaystackModel):
    event: Literal["charge.success"]
    data: ChargeData


class SubscriptionCreatedEvent(_PaystackModel):
    event: Literal["subscription.create", "subscription.renew"]
    data: SubscriptionData


class SubscriptionDisabledEvent(_PaystackModel):
    event: Literal["subscription.disable", "subscription.not_renew", "subscription.cancel"]
    data: PaystackSubscriptionRef


class InvoiceFailedEvent(_PaystackModel):
    event: Literal["invoice.payment_failed", "invoice.failed"]
    data: InvoiceData


class UnknownEvent(_PaystackModel):
    """Any event type we do not handle."""

    event: str
    data: Dict[str, Any] = Field(default_factory=dict)


KnownPaystackEvent = Annotated[
    Union[
        ChargeSuccessEvent,
        SubscriptionCreatedEvent,
        SubscriptionDisabledEvent,
        InvoiceFailedEvent,
    ],
    Field(discriminator="event"),
]

PaystackEvent = Union[
    ChargeSuccessEvent,
    SubscriptionCreatedEvent,
    SubscriptionDisabledEvent,
    InvoiceFailedEvent,
    UnknownEvent,
]

_known_event_adapter = TypeAdapter(KnownPaystackEvent)

HANDLED_EVENT_TYPES = frozenset(
    name
    for model in (
        ChargeSuccessEvent,
        SubscriptionCreatedEvent,
        SubscriptionDisabledEvent,
        InvoiceFailedEvent,
    )
    for name in model.model_fields["event"].annotation.__args__
)


def parse_paystack_event(payload: Dict[str, Any]) -> PaystackEvent:
    """
    Turn a decoded webhook body into a typed event.

    Args:
        payload: Decoded JSON body

    Returns:
        A known event variant, or UnknownEvent for unhandled types

    Raises:
        pydantic.ValidationError: If a handled event lacks required fields,
            or the body has no event name at all
    """
    if payload.get("event") in HANDLED_EVENT_TYPES:
        return _known_event_adapter.validate_python(payload)
    return UnknownEvent.model_validate(payload)


# ============================================================================
# Responses
# ============================================================================


class WebhookResponse(BaseModel):
    """
    Response for webhook delivery.

    WHY: Sent as soon as the signature checks out; processing continues
    in the background.
    """

    received: bool = True
    message: str = "Webhook received"

"""Pydantic models for Creem webhook deliveries.

The envelope's ``object`` changes shape with ``eventType``, so handled events
are modelled as a discriminated union on that tag. Creem adds fields over
time; unknown fields are kept rather than rejected.
"""

from datetime import datetime
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from creem_sync.core.exceptions import MalformedPayloadError

EVENT_CHECKOUT_COMPLETED = "checkout.completed"
EVENT_SUBSCRIPTION_ACTIVE = "subscription.active"
EVENT_SUBSCRIPTION_PAID = "subscription.paid"
EVENT_SUBSCRIPTION_CANCELED = "subscription.canceled"
EVENT_SUBSCRIPTION_EXPIRED = "subscription.expired"
EVENT_SUBSCRIPTION_TRIALING = "subscription.trialing"

SubscriptionEventType = Literal[
    "subscription.active",
    "subscription.paid",
    "subscription.canceled",
    "subscription.expired",
    "subscription.trialing",
]


class CreemModel(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True, frozen=True)


class CreemCustomer(CreemModel):
    id: str
    email: str | None = None
    name: str | None = None
    country: str | None = None


class CreemProduct(CreemModel):
    id: str
    name: str | None = None


class CreemOrder(CreemModel):
    id: str
    metadata: dict[str, Any] | None = None


class CreemSubscription(CreemModel):
    """Subscription as embedded in a checkout; customer/product may be bare ids."""

    id: str
    status: str
    customer: CreemCustomer | str | None = None
    product: CreemProduct | str | None = None
    current_period_start_date: datetime | None = None
    current_period_end_date: datetime | None = None
    canceled_at: datetime | None = None
    metadata: dict[str, Any] | None = None

    @property
    def product_id(self) -> str | None:
        if isinstance(self.product, CreemProduct):
            return self.product.id
        return self.product


class SubscriptionObject(CreemSubscription):
    """Top-level object of subscription.* events, which always embed the customer."""

    customer: CreemCustomer


class CheckoutObject(CreemModel):
    id: str
    status: str | None = None
    customer: CreemCustomer
    order: CreemOrder | None = None
    metadata: dict[str, Any] | None = None
    subscription: CreemSubscription | str | None = None


class CreemEventEnvelope(CreemModel):
    """Untyped view of any delivery, used to read the tag before routing."""

    id: str
    event_type: str = Field(alias="eventType")
    created_at: int | float | None = None
    object: dict[str, Any]


class CheckoutCompletedEvent(CreemModel):
    id: str
    event_type: Literal["checkout.completed"] = Field(alias="eventType")
    created_at: int | float | None = None
    object: CheckoutObject


class SubscriptionEvent(CreemModel):
    id: str
    event_type: SubscriptionEventType = Field(alias="eventType")
    created_at: int | float | None = None
    object: SubscriptionObject


CreemEvent = Annotated[CheckoutCompletedEvent | SubscriptionEvent, Field(discriminator="event_type")]

_event_adapter: TypeAdapter[CheckoutCompletedEvent | SubscriptionEvent] = TypeAdapter(CreemEvent)

HANDLED_EVENT_TYPES = frozenset(
    {
        EVENT_CHECKOUT_COMPLETED,
        EVENT_SUBSCRIPTION_ACTIVE,
        EVENT_SUBSCRIPTION_PAID,
        EVENT_SUBSCRIPTION_CANCELED,
        EVENT_SUBSCRIPTION_EXPIRED,
        EVENT_SUBSCRIPTION_TRIALING,
    }
)


def parse_event(raw_body: bytes) -> CheckoutCompletedEvent | SubscriptionEvent | CreemEventEnvelope:
    """Decode a raw delivery body.

    Returns a typed event for handled event types and the bare envelope for
    anything else. Raises MalformedPayloadError if the envelope itself, or the
    object of a handled event type, does not validate.
    """
    try:
        envelope = CreemEventEnvelope.model_validate_json(raw_body)
    except ValidationError as e:
        raise MalformedPayloadError(f"Invalid event envelope: {e.error_count()} validation error(s)") from e

    if envelope.event_type not in HANDLED_EVENT_TYPES:
        return envelope

    try:
        return _event_adapter.validate_json(raw_body)
    except ValidationError as e:
        raise MalformedPayloadError(
            f"Invalid {envelope.event_type} payload: {e.error_count()} validation error(s)"
        ) from e

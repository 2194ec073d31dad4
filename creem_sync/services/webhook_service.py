"""WebhookService: verifies, decodes and applies Creem webhook deliveries.

Each delivery is handled synchronously in a single transaction:

    verify signature -> parse envelope -> claim event id -> run handler -> commit

so the sender only sees a 2xx once the effects are durable, and a failure
anywhere rolls back both the effects and the idempotency claim, leaving the
event eligible for redelivery.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from creem_sync.core.exceptions import (
    CreemSyncError,
    DataStoreError,
    MalformedPayloadError,
    MissingMetadataError,
    SignatureInvalidError,
)
from creem_sync.db.models.webhook_event import CreemWebhookEvent
from creem_sync.schemas.creem import (
    EVENT_CHECKOUT_COMPLETED,
    EVENT_SUBSCRIPTION_ACTIVE,
    EVENT_SUBSCRIPTION_CANCELED,
    EVENT_SUBSCRIPTION_EXPIRED,
    EVENT_SUBSCRIPTION_PAID,
    EVENT_SUBSCRIPTION_TRIALING,
    CheckoutCompletedEvent,
    CheckoutObject,
    CreemEventEnvelope,
    CreemSubscription,
    SubscriptionEvent,
    parse_event,
)
from creem_sync.services.billing_sync import add_credits, upsert_customer, upsert_subscription
from creem_sync.webhooks.signature import verify_signature

logger = structlog.get_logger(__name__)

PRODUCT_TYPE_CREDITS = "credits"
# Upper bound of the 32-bit credits/amount columns
MAX_CREDIT_AMOUNT = 2_147_483_647


@dataclass(frozen=True)
class DispatchResult:
    event_id: str
    event_type: str
    handled: bool
    duplicate: bool = False


# ── Metadata helpers ────────────────────────────────────────────────


def _metadata_value(key: str, *sources: dict[str, Any] | None) -> Any:
    """First non-empty value for key across metadata dicts, in order."""
    for source in sources:
        if source and source.get(key) not in (None, ""):
            return source[key]
    return None


def resolve_checkout_user_id(checkout: CheckoutObject) -> str:
    """Order metadata wins over checkout metadata; neither present is an error."""
    order_metadata = checkout.order.metadata if checkout.order else None
    user_id = _metadata_value("user_id", order_metadata, checkout.metadata)
    if user_id is None:
        raise MissingMetadataError("checkout")
    return str(user_id)


def _credit_amount(value: Any) -> int:
    # JSON true/false would otherwise coerce to 1/0
    if isinstance(value, bool):
        raise MalformedPayloadError(f"Invalid credits amount in checkout metadata: {value!r}")
    try:
        amount = int(value)
    except (TypeError, ValueError, OverflowError) as e:
        raise MalformedPayloadError(f"Invalid credits amount in checkout metadata: {value!r}") from e
    if isinstance(value, float) and not value.is_integer():
        raise MalformedPayloadError(f"Credits amount must be a whole number: {value!r}")
    if amount > MAX_CREDIT_AMOUNT:
        raise MalformedPayloadError(f"Credits amount out of range: {value!r}")
    return amount


# ── Handlers ────────────────────────────────────────────────────────


async def handle_checkout_completed(session: AsyncSession, event: CheckoutCompletedEvent) -> None:
    """Attribute the checkout to a user, then grant credits or sync the subscription."""
    checkout = event.object
    user_id = resolve_checkout_user_id(checkout)

    customer_id = await upsert_customer(session, checkout.customer, user_id)

    order_metadata = checkout.order.metadata if checkout.order else None
    product_type = _metadata_value("product_type", checkout.metadata, order_metadata)

    if product_type == PRODUCT_TYPE_CREDITS:
        raw_amount = _metadata_value("credits", checkout.metadata, order_metadata)
        amount = _credit_amount(raw_amount) if raw_amount is not None else 0
        if amount <= 0:
            logger.warning("checkout_credits_amount_missing", event_id=event.id, checkout_id=checkout.id)
            return
        order_id = checkout.order.id if checkout.order else None
        await add_credits(session, customer_id, amount, order_id, f"Purchased {amount} credits")
    elif isinstance(checkout.subscription, CreemSubscription):
        await upsert_subscription(session, checkout.subscription, customer_id)
    elif isinstance(checkout.subscription, str):
        logger.info(
            "checkout_subscription_not_expanded",
            event_id=event.id,
            checkout_id=checkout.id,
            creem_subscription_id=checkout.subscription,
        )


async def handle_subscription_event(session: AsyncSession, event: SubscriptionEvent) -> None:
    """Shared handler for every subscription.* event; the status carries the difference."""
    subscription = event.object
    user_id = _metadata_value("user_id", subscription.metadata)
    if user_id is None:
        raise MissingMetadataError("subscription")

    customer_id = await upsert_customer(session, subscription.customer, str(user_id))
    await upsert_subscription(session, subscription, customer_id)


Handler = Callable[[AsyncSession, Any], Awaitable[None]]

HANDLERS: dict[str, Handler] = {
    EVENT_CHECKOUT_COMPLETED: handle_checkout_completed,
    EVENT_SUBSCRIPTION_ACTIVE: handle_subscription_event,
    EVENT_SUBSCRIPTION_PAID: handle_subscription_event,
    EVENT_SUBSCRIPTION_CANCELED: handle_subscription_event,
    EVENT_SUBSCRIPTION_EXPIRED: handle_subscription_event,
    EVENT_SUBSCRIPTION_TRIALING: handle_subscription_event,
}


def _event_context(event: CheckoutCompletedEvent | SubscriptionEvent) -> dict[str, Any]:
    """External ids worth logging for manual replay."""
    obj = event.object
    context: dict[str, Any] = {"creem_customer_id": obj.customer.id}
    if isinstance(event, SubscriptionEvent):
        context["creem_subscription_id"] = obj.id
    else:
        context["checkout_id"] = obj.id
        if obj.order:
            context["creem_order_id"] = obj.order.id
    return context


# ── Service ─────────────────────────────────────────────────────────


class WebhookService:
    """Entry point for Creem deliveries.

    The webhook secret is injected once at startup rather than read from the
    environment per request.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], webhook_secret: str):
        self._session_factory = session_factory
        self._webhook_secret = webhook_secret

    def verify(self, raw_body: bytes, signature: str | None) -> None:
        if not signature or not verify_signature(raw_body, signature, self._webhook_secret):
            logger.warning("creem_signature_invalid", body_length=len(raw_body), has_signature=bool(signature))
            raise SignatureInvalidError("Invalid Creem webhook signature")

    async def process(self, raw_body: bytes, signature: str | None) -> DispatchResult:
        """Verify then dispatch. Nothing is parsed before the signature checks out."""
        self.verify(raw_body, signature)
        return await self.dispatch(raw_body)

    async def dispatch(self, raw_body: bytes) -> DispatchResult:
        """Parse a verified body and apply it.

        Raises MalformedPayloadError before any handler runs if the body does
        not decode. Handler errors propagate after the transaction is rolled
        back; nothing is retried here.
        """
        try:
            event = parse_event(raw_body)
        except MalformedPayloadError as e:
            logger.warning("creem_event_malformed", error=str(e), body_length=len(raw_body))
            raise

        log = logger.bind(event_id=event.id, event_type=event.event_type)

        if isinstance(event, CreemEventEnvelope):
            log.info("creem_event_unhandled")
            return DispatchResult(event_id=event.id, event_type=event.event_type, handled=False)

        log = log.bind(**_event_context(event))
        handler = HANDLERS[event.event_type]

        async with self._session_factory() as session:
            try:
                if await session.get(CreemWebhookEvent, event.id) is not None:
                    log.info("creem_duplicate_event_ignored")
                    return DispatchResult(
                        event_id=event.id, event_type=event.event_type, handled=False, duplicate=True
                    )

                session.add(CreemWebhookEvent(event_id=event.id, event_type=event.event_type))
                await handler(session, event)
                await session.commit()
            except CreemSyncError as e:
                await session.rollback()
                log.error("creem_event_failed", error=str(e), error_type=type(e).__name__)
                raise
            except SQLAlchemyError as e:
                await session.rollback()
                log.error("creem_event_commit_failed", error=str(e), error_type=type(e).__name__)
                raise DataStoreError(f"Failed to apply event {event.id}") from e

        log.info("creem_event_processed")
        return DispatchResult(event_id=event.id, event_type=event.event_type, handled=True)

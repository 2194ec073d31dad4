"""Billing state synchronization: customers, subscriptions, and the credit ledger.

Every function here runs inside the caller's transaction. They flush so that
generated ids are available, but never commit; the webhook service commits
once per event so a ledger entry and the balance it changes land together or
not at all.
"""

from datetime import UTC, datetime

import structlog
from sqlalchemy import case, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from creem_sync.core.exceptions import (
    CustomerNotFoundError,
    DataStoreError,
    InsufficientCreditsError,
)
from creem_sync.db.models.credit_ledger import LEDGER_ADD, LEDGER_SUBTRACT, CreditLedgerEntry
from creem_sync.db.models.customer import Customer
from creem_sync.db.models.subscription import Subscription
from creem_sync.schemas.creem import CreemCustomer, CreemSubscription

logger = structlog.get_logger(__name__)

DEFAULT_PURCHASE_DESCRIPTION = "Credits purchase"


# ── Customers ───────────────────────────────────────────────────────


async def upsert_customer(session: AsyncSession, customer: CreemCustomer, user_id: str) -> int:
    """Create or update the local row for a Creem customer and return its id.

    A missing row is the expected first-sighting path, not an error. The
    owning user_id is only set on insert.
    """
    try:
        result = await session.execute(select(Customer).where(Customer.creem_customer_id == customer.id))
        existing = result.scalar_one_or_none()

        if existing is not None:
            existing.email = customer.email
            existing.name = customer.name
            existing.country = customer.country
            existing.updated_at = datetime.now(UTC)
            await session.flush()
            logger.info("customer_updated", customer_id=existing.id, creem_customer_id=customer.id)
            return existing.id

        new_customer = Customer(
            user_id=user_id,
            creem_customer_id=customer.id,
            email=customer.email,
            name=customer.name,
            country=customer.country,
            credits=0,
        )
        session.add(new_customer)
        await session.flush()
    except SQLAlchemyError as e:
        logger.error("customer_upsert_failed", creem_customer_id=customer.id, user_id=user_id, error=str(e))
        raise DataStoreError(f"Failed to upsert customer {customer.id}") from e

    logger.info("customer_created", customer_id=new_customer.id, creem_customer_id=customer.id, user_id=user_id)
    return new_customer.id


# ── Subscriptions ───────────────────────────────────────────────────


async def upsert_subscription(session: AsyncSession, subscription: CreemSubscription, customer_id: int) -> int:
    """Create or update the local row for a Creem subscription and return its id."""
    values = {
        "customer_id": customer_id,
        "creem_product_id": subscription.product_id,
        "status": subscription.status,
        "current_period_start": subscription.current_period_start_date,
        "current_period_end": subscription.current_period_end_date,
        "canceled_at": subscription.canceled_at,
        "metadata_": subscription.metadata,
    }

    try:
        result = await session.execute(
            select(Subscription).where(Subscription.creem_subscription_id == subscription.id)
        )
        existing = result.scalar_one_or_none()

        if existing is not None:
            for key, value in values.items():
                setattr(existing, key, value)
            existing.updated_at = datetime.now(UTC)
            await session.flush()
            logger.info(
                "subscription_updated",
                subscription_id=existing.id,
                creem_subscription_id=subscription.id,
                status=subscription.status,
            )
            return existing.id

        new_subscription = Subscription(creem_subscription_id=subscription.id, **values)
        session.add(new_subscription)
        await session.flush()
    except SQLAlchemyError as e:
        logger.error(
            "subscription_upsert_failed",
            creem_subscription_id=subscription.id,
            customer_id=customer_id,
            error=str(e),
        )
        raise DataStoreError(f"Failed to upsert subscription {subscription.id}") from e

    logger.info(
        "subscription_created",
        subscription_id=new_subscription.id,
        creem_subscription_id=subscription.id,
        status=subscription.status,
    )
    return new_subscription.id


# ── Credits ─────────────────────────────────────────────────────────


async def _lock_customer(session: AsyncSession, customer_id: int) -> Customer:
    """Load a customer row with a row lock so balance updates serialize per customer."""
    result = await session.execute(
        select(Customer)
        .where(Customer.id == customer_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    customer = result.scalar_one_or_none()
    if customer is None:
        raise CustomerNotFoundError(customer_id)
    return customer


async def add_credits(
    session: AsyncSession,
    customer_id: int,
    amount: int,
    order_id: str | None = None,
    description: str | None = None,
) -> int:
    """Credit a customer and append an ``add`` ledger entry. Returns the new balance.

    A Creem order credits a customer at most once: if an ``add`` entry for
    order_id already exists the call changes nothing.
    """
    if amount <= 0:
        raise ValueError(f"Credit amount must be positive, got {amount}")

    try:
        customer = await _lock_customer(session, customer_id)

        if order_id is not None:
            result = await session.execute(
                select(CreditLedgerEntry.id).where(
                    CreditLedgerEntry.customer_id == customer_id,
                    CreditLedgerEntry.creem_order_id == order_id,
                    CreditLedgerEntry.type == LEDGER_ADD,
                )
            )
            if result.first() is not None:
                logger.info("credits_already_applied", customer_id=customer_id, creem_order_id=order_id)
                return customer.credits

        previous = customer.credits or 0
        new_balance = previous + amount
        customer.credits = new_balance
        customer.updated_at = datetime.now(UTC)
        session.add(
            CreditLedgerEntry(
                customer_id=customer_id,
                amount=amount,
                type=LEDGER_ADD,
                description=description or DEFAULT_PURCHASE_DESCRIPTION,
                creem_order_id=order_id,
            )
        )
        await session.flush()
    except SQLAlchemyError as e:
        logger.error("credits_add_failed", customer_id=customer_id, creem_order_id=order_id, error=str(e))
        raise DataStoreError(f"Failed to add credits for customer {customer_id}") from e

    logger.info("credits_added", customer_id=customer_id, amount=amount, previous=previous, balance=new_balance)
    return new_balance


async def use_credits(session: AsyncSession, customer_id: int, amount: int, description: str) -> int:
    """Debit a customer and append a ``subtract`` ledger entry. Returns the new balance.

    Raises InsufficientCreditsError, leaving balance and ledger untouched, if
    the balance is smaller than amount.
    """
    if amount <= 0:
        raise ValueError(f"Credit amount must be positive, got {amount}")

    try:
        customer = await _lock_customer(session, customer_id)

        balance = customer.credits or 0
        if balance < amount:
            logger.warning("credits_insufficient", customer_id=customer_id, balance=balance, requested=amount)
            raise InsufficientCreditsError(customer_id, balance, amount)

        new_balance = balance - amount
        customer.credits = new_balance
        customer.updated_at = datetime.now(UTC)
        session.add(
            CreditLedgerEntry(
                customer_id=customer_id,
                amount=amount,
                type=LEDGER_SUBTRACT,
                description=description,
            )
        )
        await session.flush()
    except SQLAlchemyError as e:
        logger.error("credits_use_failed", customer_id=customer_id, error=str(e))
        raise DataStoreError(f"Failed to use credits for customer {customer_id}") from e

    logger.info("credits_used", customer_id=customer_id, amount=amount, balance=new_balance)
    return new_balance


# ── Reads ───────────────────────────────────────────────────────────


async def get_customer_credits(session: AsyncSession, customer_id: int) -> int:
    result = await session.execute(select(Customer.credits).where(Customer.id == customer_id))
    credits = result.scalar_one_or_none()
    if credits is None:
        raise CustomerNotFoundError(customer_id)
    return credits


async def get_credits_history(session: AsyncSession, customer_id: int) -> list[CreditLedgerEntry]:
    """Ledger entries for a customer, newest first."""
    result = await session.execute(
        select(CreditLedgerEntry)
        .where(CreditLedgerEntry.customer_id == customer_id)
        .order_by(CreditLedgerEntry.created_at.desc(), CreditLedgerEntry.id.desc())
    )
    return list(result.scalars().all())


async def get_ledger_balance(session: AsyncSession, customer_id: int) -> int:
    """Signed sum of a customer's ledger; must equal customers.credits."""
    signed = case(
        (CreditLedgerEntry.type == LEDGER_ADD, CreditLedgerEntry.amount),
        else_=-CreditLedgerEntry.amount,
    )
    result = await session.execute(
        select(func.coalesce(func.sum(signed), 0)).where(CreditLedgerEntry.customer_id == customer_id)
    )
    return int(result.scalar_one())


async def get_user_subscription(session: AsyncSession, user_id: str) -> Subscription | None:
    """Return the user's active subscription, if any."""
    result = await session.execute(
        select(Subscription)
        .join(Customer, Subscription.customer_id == Customer.id)
        .where(Customer.user_id == user_id, Subscription.status == "active")
        .order_by(Subscription.updated_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()

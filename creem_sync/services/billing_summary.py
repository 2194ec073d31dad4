"""BillingSummaryService: aggregates a user's billing state for the dashboard.

A user can own several Creem customers (one per checkout identity), so the
summary folds them together: balances are summed, ledgers merged, and one
subscription is chosen by status priority.
"""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from creem_sync.db.models.credit_ledger import CreditLedgerEntry
from creem_sync.db.models.customer import Customer
from creem_sync.db.models.subscription import Subscription
from creem_sync.schemas.billing import BillingSummary, CreditLedgerItem, SubscriptionSummary

# Lower rank wins; anything not listed ranks last
STATUS_PRIORITY = {"active": 0, "trialing": 1}


def pick_subscription(subscriptions: list[Subscription]) -> Subscription | None:
    """Prefer active, then trialing, then anything; newest update breaks ties."""
    if not subscriptions:
        return None
    newest_first = sorted(subscriptions, key=lambda s: (s.updated_at, s.id), reverse=True)
    return min(newest_first, key=lambda s: STATUS_PRIORITY.get(s.status, len(STATUS_PRIORITY)))


class BillingSummaryService:
    async def get_summary(self, session: AsyncSession, user_id: str) -> BillingSummary:
        result = await session.execute(select(Customer).where(Customer.user_id == user_id))
        customers = result.scalars().all()

        if not customers:
            return BillingSummary(user_id=user_id)

        customer_ids = [c.id for c in customers]

        result = await session.execute(select(Subscription).where(Subscription.customer_id.in_(customer_ids)))
        subscription = pick_subscription(list(result.scalars().all()))

        result = await session.execute(
            select(CreditLedgerEntry)
            .where(CreditLedgerEntry.customer_id.in_(customer_ids))
            .order_by(CreditLedgerEntry.created_at.desc(), CreditLedgerEntry.id.desc())
        )
        history = result.scalars().all()

        return BillingSummary(
            user_id=user_id,
            total_credits=sum(c.credits or 0 for c in customers),
            subscription=SubscriptionSummary.model_validate(subscription) if subscription else None,
            credits_history=[CreditLedgerItem.model_validate(entry) for entry in history],
        )

"""Re-export all models so Base.metadata sees them."""

from creem_sync.db.models.credit_ledger import CreditLedgerEntry
from creem_sync.db.models.customer import Customer
from creem_sync.db.models.subscription import Subscription
from creem_sync.db.models.webhook_event import CreemWebhookEvent

__all__ = [
    "CreditLedgerEntry",
    "CreemWebhookEvent",
    "Customer",
    "Subscription",
]

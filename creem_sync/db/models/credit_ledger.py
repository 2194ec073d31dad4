"""CreditLedgerEntry model: append-only history of credit balance changes."""

from datetime import UTC, datetime

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship

from creem_sync.db.base import Base

LEDGER_ADD = "add"
LEDGER_SUBTRACT = "subtract"


class CreditLedgerEntry(Base):
    """One credit mutation. Rows are never updated or deleted.

    ``amount`` is the positive magnitude; ``type`` carries the sign. A given
    Creem order can credit a customer at most once.
    """

    __tablename__ = "credits_history"
    __table_args__ = (
        UniqueConstraint("customer_id", "creem_order_id", "type", name="uq_credits_history_customer_order_type"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    customer_id = Column(Integer, ForeignKey("customers.id"), nullable=False, index=True)
    amount = Column(Integer, nullable=False)
    type = Column(String(20), nullable=False)  # add | subtract
    description = Column(String(500), nullable=True)
    creem_order_id = Column(String(255), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC), index=True)

    customer = relationship("Customer", back_populates="credits_history")

    @property
    def signed_amount(self) -> int:
        return self.amount if self.type == LEDGER_ADD else -self.amount

"""Customer model: links an application user to a Creem customer."""

from datetime import UTC, datetime

from sqlalchemy import CheckConstraint, Column, DateTime, Integer, String
from sqlalchemy.orm import relationship

from creem_sync.db.base import Base


class Customer(Base):
    __tablename__ = "customers"
    __table_args__ = (CheckConstraint("credits >= 0", name="ck_customers_credits_non_negative"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(255), nullable=False, index=True)
    creem_customer_id = Column(String(255), unique=True, nullable=False, index=True)

    email = Column(String(255), nullable=True)
    name = Column(String(255), nullable=True)
    country = Column(String(10), nullable=True)

    # Running total; always equals the signed sum of credits_history rows
    credits = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC))
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

    subscriptions = relationship("Subscription", back_populates="customer")
    credits_history = relationship("CreditLedgerEntry", back_populates="customer")

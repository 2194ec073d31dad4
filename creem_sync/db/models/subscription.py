"""Subscription model: one Creem subscription owned by a customer."""

from datetime import UTC, datetime

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship

from creem_sync.db.base import Base


class Subscription(Base):
    __tablename__ = "subscriptions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    customer_id = Column(Integer, ForeignKey("customers.id"), nullable=False, index=True)
    creem_subscription_id = Column(String(255), unique=True, nullable=False, index=True)
    creem_product_id = Column(String(255), nullable=True)

    status = Column(String(50), nullable=False)  # active, trialing, paid, canceled, expired
    current_period_start = Column(DateTime(timezone=True), nullable=True)
    current_period_end = Column(DateTime(timezone=True), nullable=True)
    canceled_at = Column(DateTime(timezone=True), nullable=True)

    # "metadata" is reserved on declarative classes
    metadata_ = Column("metadata", JSON().with_variant(JSONB(), "postgresql"), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC))
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

    customer = relationship("Customer", back_populates="subscriptions")

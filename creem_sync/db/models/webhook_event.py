"""CreemWebhookEvent model for idempotency tracking."""

from datetime import UTC, datetime

from sqlalchemy import Column, DateTime, String

from creem_sync.db.base import Base


class CreemWebhookEvent(Base):
    """Tracks applied Creem event ids so redeliveries are not applied twice.

    The row is written in the same transaction as the event's effects, so an
    event whose processing failed is never marked as handled.
    """

    __tablename__ = "creem_webhook_events"

    event_id = Column(String(255), primary_key=True)
    event_type = Column(String(100), nullable=False)
    processed_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
    )

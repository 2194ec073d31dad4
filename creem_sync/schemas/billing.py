"""Pydantic schemas for the billing summary read by the dashboard."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class SubscriptionSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    creem_subscription_id: str
    creem_product_id: str | None = None
    status: str
    current_period_start: datetime | None = None
    current_period_end: datetime | None = None
    canceled_at: datetime | None = None


class CreditLedgerItem(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    amount: int = Field(..., description="Positive magnitude of the change")
    type: str = Field(..., description="add or subtract")
    description: str | None = None
    creem_order_id: str | None = None
    created_at: datetime


class BillingSummary(BaseModel):
    """Everything the dashboard shows for one user.

    List fields default to empty arrays (never null).
    """

    user_id: str
    total_credits: int = 0
    subscription: SubscriptionSummary | None = None
    credits_history: list[CreditLedgerItem] = Field(default_factory=list)

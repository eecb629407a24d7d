"""
RefundRequest Database Model

Refund workflow rows: pending -> approved -> processed, or rejected.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from sqlalchemy import Column, Index, Text, text
from sqlmodel import Field

from app.domain.billing import RefundStatus
from app.infrastructure.db.models.base import BaseModel, money_field


_PENDING_CLAUSE = text("status = 'pending'")


class RefundRequestModel(BaseModel, table=True):
    """
    Refund request table.

    At most one pending request per subscription and per purchase.
    """

    __tablename__ = "refund_requests"
    __table_args__ = (
        Index(
            "uq_refund_requests_pending_subscription",
            "subscription_id",
            unique=True,
            postgresql_where=_PENDING_CLAUSE,
            sqlite_where=_PENDING_CLAUSE,
        ),
        Index(
            "uq_refund_requests_pending_purchase",
            "purchase_id",
            unique=True,
            postgresql_where=_PENDING_CLAUSE,
            sqlite_where=_PENDING_CLAUSE,
        ),
    )

    user_id: str = Field(foreign_key="users.id", index=True, max_length=255)
    payment_history_id: Optional[UUID] = Field(
        default=None, foreign_key="payment_history.id", index=True
    )
    subscription_id: Optional[UUID] = Field(default=None, foreign_key="subscriptions.id")
    purchase_id: Optional[UUID] = Field(default=None, foreign_key="purchases.id")

    amount: Decimal = money_field()
    currency: str = Field(default="INR", max_length=3)
    reason: str = Field(sa_column=Column(Text, nullable=False))
    status: str = Field(default=RefundStatus.PENDING.value, max_length=20, index=True)

    gateway_refund_id: Optional[str] = Field(default=None, max_length=255, index=True)
    processed_by: Optional[str] = Field(default=None, max_length=255)
    processed_at: Optional[datetime] = Field(default=None)
    admin_notes: Optional[str] = Field(default=None, sa_column=Column(Text))

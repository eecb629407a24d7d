"""
Subscription Database Model

SQLModel table for subscription data persistence.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from sqlalchemy import Index, text
from sqlmodel import Field

from app.domain.billing import SubscriptionStatus
from app.infrastructure.db.models.base import BaseModel, money_field


_GRANT_ACCESS_CLAUSE = text("status IN ('active', 'pending_downgrade')")


class SubscriptionModel(BaseModel, table=True):
    """
    Subscription table for storing user subscription data.

    A user has at most one row in a grant-access status; the partial
    unique index backs the supersede-then-activate transition.
    """

    __tablename__ = "subscriptions"
    __table_args__ = (
        Index(
            "uq_subscriptions_user_grant_access",
            "user_id",
            unique=True,
            postgresql_where=_GRANT_ACCESS_CLAUSE,
            sqlite_where=_GRANT_ACCESS_CLAUSE,
        ),
    )

    user_id: str = Field(foreign_key="users.id", index=True, max_length=255)
    plan_id: UUID = Field(foreign_key="pricing_plans.id", index=True)
    status: str = Field(default=SubscriptionStatus.ACTIVE.value, max_length=30, index=True)

    amount: Decimal = money_field()
    currency: str = Field(default="INR", max_length=3)

    # Billing period dates
    current_period_start: datetime = Field(nullable=False)
    current_period_end: datetime = Field(nullable=False, index=True)

    # Scheduled changes
    pending_plan_id: Optional[UUID] = Field(default=None, foreign_key="pricing_plans.id")
    cancel_at_period_end: bool = Field(default=False)
    cancelled_at: Optional[datetime] = Field(default=None)

    # Gateway IDs
    gateway_order_id: Optional[str] = Field(default=None, max_length=255, index=True)
    gateway_payment_id: Optional[str] = Field(default=None, max_length=255, index=True)
    gateway_subscription_id: Optional[str] = Field(default=None, max_length=255, index=True)

"""
PaymentHistory Database Model

Append-only audit entry for every money-movement attempt.
Only status, gateway ids, reference and metadata are ever updated.
"""

from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

from sqlalchemy import Column, JSON
from sqlmodel import Field

from app.domain.billing import PaymentStatus
from app.infrastructure.db.models.base import BaseModel, money_field


class PaymentHistoryModel(BaseModel, table=True):
    """
    Payment history table.

    ``payment_metadata`` maps to the ``metadata`` column. JSON columns are not
    mutation-tracked, so callers always assign a new dict.
    """

    __tablename__ = "payment_history"

    user_id: str = Field(foreign_key="users.id", index=True, max_length=255)
    type: str = Field(max_length=30)
    amount: Decimal = money_field()
    currency: str = Field(default="INR", max_length=3)
    status: str = Field(default=PaymentStatus.PENDING.value, max_length=20, index=True)

    gateway_order_id: Optional[str] = Field(default=None, max_length=255, index=True)
    gateway_payment_id: Optional[str] = Field(default=None, max_length=255, index=True)
    gateway_signature: Optional[str] = Field(default=None, max_length=255)

    payment_metadata: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column("metadata", JSON, nullable=False),
    )

    # What this payment concerns (subscription / purchase / merch_order)
    ref_type: Optional[str] = Field(default=None, max_length=30)
    ref_id: Optional[UUID] = Field(default=None, index=True)

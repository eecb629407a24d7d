"""
Merchandise Order Models

Orders and their line items. Paying an order decrements item stock once.
"""

from decimal import Decimal
from typing import Optional
from uuid import UUID

from sqlmodel import Field

from app.domain.billing import MerchOrderStatus
from app.infrastructure.db.models.base import BaseModel, money_field


class MerchOrderModel(BaseModel, table=True):
    """Merchandise order with shipping details."""

    __tablename__ = "merch_orders"

    user_id: str = Field(foreign_key="users.id", index=True, max_length=255)
    status: str = Field(default=MerchOrderStatus.PENDING.value, max_length=20, index=True)
    total_amount: Decimal = money_field()
    currency: str = Field(default="INR", max_length=3)

    # Shipping
    shipping_name: str = Field(max_length=200)
    shipping_phone: str = Field(max_length=20)
    shipping_address: str = Field(max_length=500)
    shipping_city: str = Field(max_length=100)
    shipping_state: str = Field(max_length=100)
    shipping_postal_code: str = Field(max_length=12)

    gateway_order_id: Optional[str] = Field(default=None, max_length=255, index=True)
    gateway_payment_id: Optional[str] = Field(default=None, max_length=255)


class MerchOrderItemModel(BaseModel, table=True):
    """Line item of a merchandise order."""

    __tablename__ = "merch_order_items"

    order_id: UUID = Field(foreign_key="merch_orders.id", index=True)
    merch_item_id: UUID = Field(foreign_key="merch_items.id")
    quantity: int = Field(default=1, ge=1)
    price_at_purchase: Decimal = money_field()

"""
SQLModel ORM Models for Podcast Billing

Exports all database models for Alembic autogenerate and application use.
Import models here to register them with SQLModel.metadata.
"""

from app.infrastructure.db.models.base import (
    BaseModel,
    TimestampMixin,
    UUIDMixin,
)
from app.infrastructure.db.models.catalog import (
    UserModel,
    PricingPlanModel,
    PodcastModel,
    PlaylistModel,
    MerchItemModel,
)
from app.infrastructure.db.models.subscription import SubscriptionModel
from app.infrastructure.db.models.purchase import PurchaseModel
from app.infrastructure.db.models.payment_history import PaymentHistoryModel
from app.infrastructure.db.models.refund_request import RefundRequestModel
from app.infrastructure.db.models.merch_order import (
    MerchOrderModel,
    MerchOrderItemModel,
)
from app.infrastructure.db.models.webhook_event import WebhookEventModel


__all__ = [
    # Base
    "BaseModel",
    "TimestampMixin",
    "UUIDMixin",
    # Catalog
    "UserModel",
    "PricingPlanModel",
    "PodcastModel",
    "PlaylistModel",
    "MerchItemModel",
    # Ledger
    "SubscriptionModel",
    "PurchaseModel",
    "PaymentHistoryModel",
    "RefundRequestModel",
    "MerchOrderModel",
    "MerchOrderItemModel",
    "WebhookEventModel",
]

"""
Repository Layer for Podcast Billing

Exports all repository classes. Repositories are created per transaction
by app.infrastructure.db.ledger.Ledger.
"""

from app.infrastructure.db.repositories.base_repository import BaseRepository
from app.infrastructure.db.repositories.catalog_repository import (
    UserRepository,
    PricingPlanRepository,
    PodcastRepository,
    PlaylistRepository,
    MerchItemRepository,
)
from app.infrastructure.db.repositories.subscription_repository import (
    SubscriptionRepository,
)
from app.infrastructure.db.repositories.purchase_repository import PurchaseRepository
from app.infrastructure.db.repositories.payment_history_repository import (
    PaymentHistoryRepository,
)
from app.infrastructure.db.repositories.refund_request_repository import (
    RefundRequestRepository,
)
from app.infrastructure.db.repositories.merch_order_repository import MerchOrderRepository
from app.infrastructure.db.repositories.webhook_event_repository import (
    WebhookEventRepository,
)


__all__ = [
    # Base
    "BaseRepository",
    # Catalog
    "UserRepository",
    "PricingPlanRepository",
    "PodcastRepository",
    "PlaylistRepository",
    "MerchItemRepository",
    # Ledger
    "SubscriptionRepository",
    "PurchaseRepository",
    "PaymentHistoryRepository",
    "RefundRequestRepository",
    "MerchOrderRepository",
    "WebhookEventRepository",
]

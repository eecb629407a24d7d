# API Routes Module
from app.api.routes import (
    orders,
    payments,
    webhooks,
    refunds,
    admin,
    subscriptions,
)

__all__ = [
    "orders",
    "payments",
    "webhooks",
    "refunds",
    "admin",
    "subscriptions",
]

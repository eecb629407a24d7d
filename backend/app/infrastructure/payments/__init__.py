"""
Payments Infrastructure Module

Payment gateway client and signature verification.
"""

from app.infrastructure.payments.gateway_client import (
    GatewayClient,
    GatewayOrder,
    GatewayRefund,
    compute_signature,
    verify_payment_signature,
    verify_webhook_signature,
)

__all__ = [
    "GatewayClient",
    "GatewayOrder",
    "GatewayRefund",
    "compute_signature",
    "verify_payment_signature",
    "verify_webhook_signature",
]

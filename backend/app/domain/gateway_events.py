"""
Gateway Event Taxonomy

Closed set of webhook event types the gateway can deliver.
Types outside the set parse as UNKNOWN and are only logged.
"""

import json
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


class GatewayEventType(str, Enum):
    """Webhook event types sent by the gateway."""
    PAYMENT_AUTHORIZED = "payment.authorized"
    PAYMENT_CAPTURED = "payment.captured"
    PAYMENT_FAILED = "payment.failed"
    ORDER_PAID = "order.paid"

    REFUND_CREATED = "refund.created"
    REFUND_PROCESSED = "refund.processed"
    REFUND_FAILED = "refund.failed"
    REFUND_SPEED_CHANGED = "refund.speed_changed"

    SUBSCRIPTION_AUTHENTICATED = "subscription.authenticated"
    SUBSCRIPTION_ACTIVATED = "subscription.activated"
    SUBSCRIPTION_CHARGED = "subscription.charged"
    SUBSCRIPTION_PENDING = "subscription.pending"
    SUBSCRIPTION_HALTED = "subscription.halted"
    SUBSCRIPTION_CANCELLED = "subscription.cancelled"
    SUBSCRIPTION_COMPLETED = "subscription.completed"
    SUBSCRIPTION_UPDATED = "subscription.updated"

    INVOICE_PAID = "invoice.paid"
    INVOICE_PARTIALLY_PAID = "invoice.partially_paid"
    INVOICE_EXPIRED = "invoice.expired"

    PAYMENT_LINK_PAID = "payment_link.paid"
    PAYMENT_LINK_PARTIALLY_PAID = "payment_link.partially_paid"
    PAYMENT_LINK_EXPIRED = "payment_link.expired"
    PAYMENT_LINK_CANCELLED = "payment_link.cancelled"

    TRANSFER_PROCESSED = "transfer.processed"
    TRANSFER_FAILED = "transfer.failed"
    SETTLEMENT_PROCESSED = "settlement.processed"

    PAYMENT_DISPUTE_CREATED = "payment.dispute.created"
    PAYMENT_DISPUTE_WON = "payment.dispute.won"
    PAYMENT_DISPUTE_LOST = "payment.dispute.lost"

    UNKNOWN = "unknown"


# Logged for audit, never acted on.
OBSERVED_ONLY_EVENTS = frozenset({
    GatewayEventType.SUBSCRIPTION_AUTHENTICATED,
    GatewayEventType.INVOICE_PARTIALLY_PAID,
    GatewayEventType.PAYMENT_LINK_PAID,
    GatewayEventType.PAYMENT_LINK_PARTIALLY_PAID,
    GatewayEventType.PAYMENT_LINK_EXPIRED,
    GatewayEventType.PAYMENT_LINK_CANCELLED,
    GatewayEventType.TRANSFER_PROCESSED,
    GatewayEventType.TRANSFER_FAILED,
    GatewayEventType.SETTLEMENT_PROCESSED,
    GatewayEventType.PAYMENT_DISPUTE_CREATED,
    GatewayEventType.PAYMENT_DISPUTE_WON,
    GatewayEventType.PAYMENT_DISPUTE_LOST,
})


class GatewayEvent(BaseModel):
    """A parsed, signature-verified webhook delivery."""
    type: GatewayEventType
    raw_type: str
    event_id: Optional[str] = None
    created_at: Optional[int] = None
    payload: dict[str, Any] = Field(default_factory=dict)

    def entity(self, name: str) -> dict[str, Any]:
        """Return ``payload[name].entity`` or an empty dict."""
        wrapper = self.payload.get(name) or {}
        if not isinstance(wrapper, dict):
            return {}
        return wrapper.get("entity") or {}


def parse_gateway_event(body: bytes, event_id: Optional[str] = None) -> GatewayEvent:
    """
    Parse a raw webhook body.

    Raises:
        ValueError: body is not a JSON object
    """
    data = json.loads(body)
    if not isinstance(data, dict):
        raise ValueError("Webhook body must be a JSON object")

    raw_type = str(data.get("event") or "")
    try:
        event_type = GatewayEventType(raw_type)
    except ValueError:
        event_type = GatewayEventType.UNKNOWN

    payload = data.get("payload")
    return GatewayEvent(
        type=event_type,
        raw_type=raw_type,
        event_id=event_id or data.get("id"),
        created_at=data.get("created_at"),
        payload=payload if isinstance(payload, dict) else {},
    )

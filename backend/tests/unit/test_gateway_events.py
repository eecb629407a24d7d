"""
Unit tests for the webhook event taxonomy.
"""

import json
from unittest.mock import MagicMock

import pytest

from app.domain.gateway_events import (
    GatewayEventType,
    OBSERVED_ONLY_EVENTS,
    parse_gateway_event,
)
from app.infrastructure.services.webhook_reconciliation_service import (
    WebhookReconciliationService,
)


class TestParseGatewayEvent:
    """Tests for parsing raw webhook bodies."""

    def test_known_event(self):
        body = json.dumps({
            "event": "payment.captured",
            "created_at": 1767225600,
            "payload": {"payment": {"entity": {"id": "pay_1", "order_id": "order_1"}}},
        }).encode()

        event = parse_gateway_event(body, "evt_1")

        assert event.type == GatewayEventType.PAYMENT_CAPTURED
        assert event.event_id == "evt_1"
        assert event.entity("payment")["order_id"] == "order_1"
        assert event.entity("refund") == {}

    def test_unknown_event_type_is_kept_as_unknown(self):
        event = parse_gateway_event(b'{"event": "account.suspended", "payload": {}}')

        assert event.type == GatewayEventType.UNKNOWN
        assert event.raw_type == "account.suspended"

    def test_missing_event_field(self):
        assert parse_gateway_event(b'{"payload": {}}').type == GatewayEventType.UNKNOWN

    def test_event_id_falls_back_to_body(self):
        assert parse_gateway_event(b'{"id": "evt_body", "event": "order.paid"}').event_id == "evt_body"

    def test_non_object_body_rejected(self):
        with pytest.raises(ValueError):
            parse_gateway_event(b'["payment.captured"]')

    def test_invalid_json_rejected(self):
        with pytest.raises(ValueError):
            parse_gateway_event(b"not json")


def test_every_event_type_is_handled_or_observed():
    """No known event type may fall through to the unhandled branch."""
    service = WebhookReconciliationService(MagicMock(), MagicMock())
    handled = service.handled_event_types

    for event_type in GatewayEventType:
        if event_type == GatewayEventType.UNKNOWN:
            continue
        assert (event_type in handled) != (event_type in OBSERVED_ONLY_EVENTS), event_type


def test_disputes_are_observed_only():
    assert GatewayEventType.PAYMENT_DISPUTE_CREATED in OBSERVED_ONLY_EVENTS
    assert GatewayEventType.PAYMENT_DISPUTE_LOST in OBSERVED_ONLY_EVENTS

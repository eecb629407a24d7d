"""
Unit tests for gateway signature verification.
"""

import hashlib
import hmac

from app.infrastructure.payments.gateway_client import (
    compute_signature,
    verify_payment_signature,
    verify_webhook_signature,
)


SECRET = "key_secret_for_tests"


def test_compute_signature_is_hex_hmac_sha256():
    expected = hmac.new(SECRET.encode(), b"order_1|pay_1", hashlib.sha256).hexdigest()
    assert compute_signature(SECRET, "order_1|pay_1") == expected


class TestPaymentSignature:
    """Checkout signatures: HMAC over "order_id|payment_id"."""

    def test_valid(self):
        signature = compute_signature(SECRET, "order_1|pay_1")
        assert verify_payment_signature(SECRET, "order_1", "pay_1", signature) is True

    def test_altered_signature(self):
        signature = compute_signature(SECRET, "order_1|pay_1")
        tampered = signature[:-1] + ("0" if signature[-1] != "0" else "1")
        assert verify_payment_signature(SECRET, "order_1", "pay_1", tampered) is False

    def test_swapped_ids(self):
        signature = compute_signature(SECRET, "order_1|pay_1")
        assert verify_payment_signature(SECRET, "pay_1", "order_1", signature) is False

    def test_other_secret(self):
        signature = compute_signature("another_secret", "order_1|pay_1")
        assert verify_payment_signature(SECRET, "order_1", "pay_1", signature) is False

    def test_empty_secret_never_verifies(self):
        signature = compute_signature("", "order_1|pay_1")
        assert verify_payment_signature("", "order_1", "pay_1", signature) is False

    def test_missing_signature(self):
        assert verify_payment_signature(SECRET, "order_1", "pay_1", None) is False


class TestWebhookSignature:
    """Webhook signatures: HMAC over the raw body."""

    def test_valid(self):
        body = b'{"event":"payment.captured"}'
        assert verify_webhook_signature(SECRET, body, compute_signature(SECRET, body)) is True

    def test_body_changed_after_signing(self):
        body = b'{"event":"payment.captured"}'
        signature = compute_signature(SECRET, body)
        assert verify_webhook_signature(SECRET, body + b" ", signature) is False

    def test_missing_header(self):
        assert verify_webhook_signature(SECRET, b"{}", "") is False

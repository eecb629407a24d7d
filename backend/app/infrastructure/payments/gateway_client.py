"""
Payment Gateway Client

Async client for a Razorpay-compatible REST gateway.
Handles order creation, refunds and HMAC signature verification.

Amounts always cross this boundary as integer minor units (paise).
Every transport failure, timeout or non-2xx answer becomes
GatewayUnavailableError so callers can retry.
"""

import hashlib
import hmac
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Union

import httpx

from app.config.settings import Settings
from app.infrastructure.exceptions import (
    ConfigurationError,
    GatewayUnavailableError,
)


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GatewayOrder:
    """An order created at the gateway."""
    id: str
    amount: int
    currency: str
    receipt: Optional[str] = None
    status: Optional[str] = None


@dataclass(frozen=True)
class GatewayRefund:
    """A refund accepted by the gateway."""
    id: str
    payment_id: str
    amount: int
    status: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)


# =============================================================================
# Signatures
# =============================================================================

def compute_signature(secret: str, message: Union[str, bytes]) -> str:
    """Hex HMAC-SHA256 of ``message`` under ``secret``."""
    if isinstance(message, str):
        message = message.encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def verify_payment_signature(
    secret: str,
    order_id: str,
    payment_id: str,
    signature: Optional[str],
) -> bool:
    """
    Check a checkout signature: HMAC-SHA256(secret, "order_id|payment_id").

    Constant-time comparison; an empty secret or signature never verifies.
    """
    if not secret or not signature:
        return False
    expected = compute_signature(secret, f"{order_id}|{payment_id}")
    return hmac.compare_digest(expected, signature)


def verify_webhook_signature(secret: str, body: bytes, signature: Optional[str]) -> bool:
    """Check a webhook signature: HMAC-SHA256(webhook_secret, raw body)."""
    if not secret or not signature:
        return False
    expected = compute_signature(secret, body)
    return hmac.compare_digest(expected, signature)


# =============================================================================
# Client
# =============================================================================

class GatewayClient:
    """
    Payment gateway API client.

    Stateless apart from the pooled HTTP connection. A custom ``transport``
    can be injected (tests use httpx.MockTransport).
    """

    def __init__(
        self,
        key_id: str,
        key_secret: str,
        webhook_secret: str,
        base_url: str = "https://api.razorpay.com/v1",
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._key_id = key_id
        self._key_secret = key_secret
        self._webhook_secret = webhook_secret
        self._client = httpx.AsyncClient(
            base_url=base_url,
            auth=(key_id, key_secret),
            timeout=timeout,
            transport=transport,
            headers={"Content-Type": "application/json"},
        )

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "GatewayClient":
        """Build a client from application settings."""
        return cls(
            key_id=settings.gateway_key_id,
            key_secret=settings.gateway_key_secret,
            webhook_secret=settings.gateway_webhook_secret,
            base_url=settings.gateway_base_url,
            timeout=settings.gateway_timeout_seconds,
            transport=transport,
        )

    @property
    def key_id(self) -> str:
        """Public key id handed to the checkout widget."""
        return self._key_id

    # =========================================================================
    # Orders
    # =========================================================================

    async def create_order(
        self,
        amount: int,
        currency: str,
        receipt: str,
        notes: Optional[Dict[str, Any]] = None,
    ) -> GatewayOrder:
        """
        Create a payable order.

        Args:
            amount: Amount in minor units
            currency: ISO currency code
            receipt: Merchant reference (max 40 chars)
            notes: Key/value tags echoed back in webhooks

        Returns:
            GatewayOrder
        """
        data = await self._request(
            "POST",
            "/orders",
            {
                "amount": int(amount),
                "currency": currency,
                "receipt": receipt[:40],
                "notes": {k: str(v) for k, v in (notes or {}).items()},
            },
            operation="create_order",
        )
        order = GatewayOrder(
            id=data["id"],
            amount=int(data.get("amount", amount)),
            currency=data.get("currency", currency),
            receipt=data.get("receipt"),
            status=data.get("status"),
        )
        logger.info(f"Created gateway order {order.id} for {order.amount} {order.currency}")
        return order

    # =========================================================================
    # Refunds
    # =========================================================================

    async def refund(
        self,
        payment_id: str,
        amount: int,
        notes: Optional[Dict[str, Any]] = None,
    ) -> GatewayRefund:
        """
        Refund a captured payment.

        Args:
            payment_id: Gateway payment id
            amount: Amount in minor units
            notes: Key/value tags

        Returns:
            GatewayRefund
        """
        data = await self._request(
            "POST",
            f"/payments/{payment_id}/refund",
            {
                "amount": int(amount),
                "notes": {k: str(v) for k, v in (notes or {}).items()},
            },
            operation="refund",
        )
        refund = GatewayRefund(
            id=data["id"],
            payment_id=data.get("payment_id", payment_id),
            amount=int(data.get("amount", amount)),
            status=data.get("status"),
            raw=data,
        )
        logger.info(f"Gateway refund {refund.id} created for payment {payment_id}")
        return refund

    # =========================================================================
    # Signature Verification
    # =========================================================================

    def verify_payment_signature(
        self,
        order_id: str,
        payment_id: str,
        signature: Optional[str],
    ) -> bool:
        """Verify a checkout signature with the key secret."""
        return verify_payment_signature(self._key_secret, order_id, payment_id, signature)

    def verify_webhook_signature(self, body: bytes, signature: Optional[str]) -> bool:
        """Verify a webhook body with the webhook secret."""
        if not self._webhook_secret:
            logger.error("Webhook secret not configured; rejecting webhook")
            return False
        return verify_webhook_signature(self._webhook_secret, body, signature)

    # =========================================================================
    # Transport
    # =========================================================================

    async def _request(
        self,
        method: str,
        path: str,
        payload: Dict[str, Any],
        operation: str,
    ) -> Dict[str, Any]:
        if not self._key_id or not self._key_secret:
            raise ConfigurationError(
                "Payment gateway credentials not configured",
                missing_keys=["GATEWAY_KEY_ID", "GATEWAY_KEY_SECRET"],
            )

        try:
            response = await self._client.request(method, path, json=payload)
        except httpx.TimeoutException as e:
            logger.error(f"Gateway {operation} timed out: {e}")
            raise GatewayUnavailableError(
                f"Payment gateway timed out during {operation}",
                operation=operation,
                original_error=e,
            ) from e
        except httpx.HTTPError as e:
            logger.error(f"Gateway {operation} transport error: {e}")
            raise GatewayUnavailableError(
                f"Payment gateway unreachable during {operation}",
                operation=operation,
                original_error=e,
            ) from e

        if response.status_code >= 400:
            description = self._error_description(response)
            logger.error(
                f"Gateway {operation} failed with {response.status_code}: {description}"
            )
            raise GatewayUnavailableError(
                f"Payment gateway rejected {operation}: {description}",
                operation=operation,
                status_code=response.status_code,
            )

        try:
            return response.json()
        except ValueError as e:
            raise GatewayUnavailableError(
                f"Payment gateway returned an unreadable {operation} response",
                operation=operation,
                status_code=response.status_code,
                original_error=e,
            ) from e

    @staticmethod
    def _error_description(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text[:200] or response.reason_phrase
        error = body.get("error") if isinstance(body, dict) else None
        if isinstance(error, dict) and error.get("description"):
            return str(error["description"])
        return response.reason_phrase

    async def close(self) -> None:
        """Close the pooled HTTP connection."""
        await self._client.aclose()

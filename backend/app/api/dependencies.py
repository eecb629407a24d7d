"""
API Dependencies

FastAPI dependency injection for authentication and billing services.

Security: bearer tokens are HS256 JWTs issued by the identity provider and
verified with AUTH_JWT_SECRET. Never decode without verification.
"""

import logging
from typing import Annotated, Optional

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from app.config.settings import Settings, get_settings
from app.infrastructure.services.order_service import OrderService
from app.infrastructure.services.payment_verification_service import PaymentVerificationService
from app.infrastructure.services.refund_service import RefundService
from app.infrastructure.services.subscription_lifecycle_service import SubscriptionLifecycleService
from app.infrastructure.services.webhook_reconciliation_service import WebhookReconciliationService


logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)


def _decode_token(token: str, settings: Settings) -> dict:
    """Verify a JWT with the shared secret."""
    return jwt.decode(
        token,
        settings.auth_jwt_secret,
        algorithms=[settings.auth_jwt_algorithm],
        audience=settings.auth_jwt_audience,
        issuer=settings.auth_jwt_issuer,
        options={"require": ["exp", "sub"]},
    )


async def get_current_user_id(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> str:
    """
    Extract and verify user ID from a bearer JWT.

    Returns:
        Authenticated user ID (``sub`` claim).

    Raises:
        HTTPException 401: token missing, expired, or invalid.
        HTTPException 503: token verification not configured.
    """
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing authorization token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    settings = get_settings()
    if not settings.auth_jwt_secret:
        logger.error("AUTH_JWT_SECRET not set; cannot verify tokens")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Authentication not configured",
        )

    try:
        payload = _decode_token(credentials.credentials, settings)
    except jwt.ExpiredSignatureError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has expired",
        )
    except jwt.InvalidTokenError as e:
        logger.warning("JWT verification failed: %s", e)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or unverifiable token",
        )

    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token: missing user ID",
        )

    return user_id


CurrentUserDep = Annotated[str, Depends(get_current_user_id)]


# =============================================================================
# Re-export DB dependencies for a single import source
# Routers should import from api.dependencies, not db.dependencies directly.
# =============================================================================
from app.infrastructure.db.dependencies import (  # noqa: E402, F401
    ClockDep,
    GatewayClientDep,
    LedgerStoreDep,
)


async def get_admin_user_id(user_id: CurrentUserDep, store: LedgerStoreDep) -> str:
    """
    Require the caller to hold the admin role.

    Raises:
        HTTPException 403: authenticated but not an admin.
    """
    async with store.transaction() as ledger:
        is_admin = await ledger.users.is_admin(user_id)

    if not is_admin:
        logger.warning(f"Non-admin user {user_id} attempted an admin action")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return user_id


AdminUserDep = Annotated[str, Depends(get_admin_user_id)]


# =============================================================================
# Service Providers
# =============================================================================

def get_order_service(
    store: LedgerStoreDep,
    gateway: GatewayClientDep,
    clock: ClockDep,
) -> OrderService:
    """Dependency provider for the order orchestrator."""
    return OrderService(store, gateway, get_settings(), now_provider=clock)


def get_payment_verification_service(
    store: LedgerStoreDep,
    gateway: GatewayClientDep,
    clock: ClockDep,
) -> PaymentVerificationService:
    """Dependency provider for the payment verifier."""
    return PaymentVerificationService(store, gateway, now_provider=clock)


def get_webhook_service(
    store: LedgerStoreDep,
    gateway: GatewayClientDep,
    clock: ClockDep,
) -> WebhookReconciliationService:
    """Dependency provider for the webhook reconciler."""
    return WebhookReconciliationService(store, gateway, now_provider=clock)


def get_refund_service(
    store: LedgerStoreDep,
    gateway: GatewayClientDep,
    clock: ClockDep,
) -> RefundService:
    """Dependency provider for the refund workflow."""
    return RefundService(store, gateway, get_settings(), now_provider=clock)


def get_subscription_service(
    store: LedgerStoreDep,
    clock: ClockDep,
) -> SubscriptionLifecycleService:
    """Dependency provider for subscription lifecycle changes."""
    return SubscriptionLifecycleService(store, get_settings(), now_provider=clock)


OrderServiceDep = Annotated[OrderService, Depends(get_order_service)]
PaymentVerificationServiceDep = Annotated[
    PaymentVerificationService,
    Depends(get_payment_verification_service)
]
WebhookServiceDep = Annotated[WebhookReconciliationService, Depends(get_webhook_service)]
RefundServiceDep = Annotated[RefundService, Depends(get_refund_service)]
SubscriptionServiceDep = Annotated[
    SubscriptionLifecycleService,
    Depends(get_subscription_service)
]

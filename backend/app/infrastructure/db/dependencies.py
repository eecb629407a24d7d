"""
Dependency Injection Providers for Podcast Billing

Provides FastAPI dependencies for the ledger store, the gateway client and
the clock. All three are built in the application lifespan and stored on
``app.state``; nothing here opens connections at import time.
"""

from datetime import datetime
from typing import Annotated, Callable

from fastapi import Depends, HTTPException, Request, status

from app.domain.proration import utcnow
from app.infrastructure.db.ledger import LedgerStore
from app.infrastructure.payments.gateway_client import GatewayClient


def get_ledger_store(request: Request) -> LedgerStore:
    """
    Dependency provider for the LedgerStore.

    Usage:
        @router.post("/orders")
        async def create_order(store: LedgerStoreDep):
            async with store.transaction() as ledger:
                ...
    """
    store = getattr(request.app.state, "ledger_store", None)
    if store is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Database not configured",
        )
    return store


def get_gateway_client(request: Request) -> GatewayClient:
    """
    Dependency provider for the GatewayClient.
    """
    gateway = getattr(request.app.state, "gateway", None)
    if gateway is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Payment gateway not configured",
        )
    return gateway


def get_clock(request: Request) -> Callable[[], datetime]:
    """Clock used by services; tests replace it on app.state."""
    return getattr(request.app.state, "clock", utcnow)


# Type aliases for dependencies
LedgerStoreDep = Annotated[LedgerStore, Depends(get_ledger_store)]
GatewayClientDep = Annotated[GatewayClient, Depends(get_gateway_client)]
ClockDep = Annotated[Callable[[], datetime], Depends(get_clock)]

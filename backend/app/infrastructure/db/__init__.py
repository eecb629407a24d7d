"""
Database Infrastructure Package for Podcast Billing

Exports database utilities, the ledger store and dependency providers.
"""

from app.infrastructure.db.database import DatabaseManager, normalize_database_url
from app.infrastructure.db.ledger import Ledger, LedgerStore

from app.infrastructure.db.dependencies import (
    get_ledger_store,
    get_gateway_client,
    get_clock,
    LedgerStoreDep,
    GatewayClientDep,
    ClockDep,
)


__all__ = [
    # Database management
    "DatabaseManager",
    "normalize_database_url",
    "Ledger",
    "LedgerStore",
    # Dependencies
    "get_ledger_store",
    "get_gateway_client",
    "get_clock",
    "LedgerStoreDep",
    "GatewayClientDep",
    "ClockDep",
]

"""
Ledger Store

Transactional unit of work over the billing tables.

    async with store.transaction() as ledger:
        payment = await ledger.payments.get_by_gateway_order_id(order_id)
        ...

Everything done through one ``ledger`` commits together or not at all.
Unique-index violations surface as InvalidStateError.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.infrastructure.db.repositories import (
    MerchItemRepository,
    MerchOrderRepository,
    PaymentHistoryRepository,
    PlaylistRepository,
    PodcastRepository,
    PricingPlanRepository,
    PurchaseRepository,
    RefundRequestRepository,
    SubscriptionRepository,
    UserRepository,
    WebhookEventRepository,
)
from app.infrastructure.exceptions import InvalidStateError


logger = logging.getLogger(__name__)


class Ledger:
    """Repositories bound to one session and one transaction."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.users = UserRepository(session)
        self.plans = PricingPlanRepository(session)
        self.podcasts = PodcastRepository(session)
        self.playlists = PlaylistRepository(session)
        self.merch_items = MerchItemRepository(session)
        self.subscriptions = SubscriptionRepository(session)
        self.purchases = PurchaseRepository(session)
        self.payments = PaymentHistoryRepository(session)
        self.refunds = RefundRequestRepository(session)
        self.merch_orders = MerchOrderRepository(session)
        self.webhook_events = WebhookEventRepository(session)

    async def flush(self) -> None:
        """Push pending changes so later statements in the transaction see them."""
        await self.session.flush()


class LedgerStore:
    """
    Opens ledger transactions.

    Injected into every service; holds no entity state between calls.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    @asynccontextmanager
    async def transaction(self) -> AsyncGenerator[Ledger, None]:
        """
        Run a block in a single database transaction.

        Commits on normal exit, rolls back on any exception.

        Raises:
            InvalidStateError: a uniqueness invariant rejected the writes
        """
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    yield Ledger(session)
        except IntegrityError as e:
            logger.warning(f"Ledger transaction rejected by constraint: {e.orig}")
            raise InvalidStateError(
                "Conflicting ledger update; retry the request",
                original_error=e,
            ) from e

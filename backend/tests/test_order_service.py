"""
Tests for the order orchestrator.

Runs against the in-memory ledger and the fake gateway.
"""

from datetime import timedelta
from decimal import Decimal

import pytest

from app.domain.billing import (
    CreateOrderRequest,
    OrderIntent,
    PaymentStatus,
    PaymentType,
    PurchaseStatus,
    SubscriptionStatus,
)
from app.infrastructure.db.models import (
    MerchOrderItemModel,
    MerchOrderModel,
    PaymentHistoryModel,
    PurchaseModel,
    SubscriptionModel,
)
from app.infrastructure.exceptions import (
    GatewayUnavailableError,
    InvalidAmountError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from app.infrastructure.services.order_service import OrderService

from conftest import add_rows, add_subscription, fetch_all, fetch_one


SHIPPING = {
    "name": "Listener",
    "phone": "+919800000000",
    "address": "12 Studio Lane",
    "city": "Bengaluru",
    "state": "KA",
    "postal_code": "560001",
}


@pytest.fixture
def order_service(store, gateway, settings, clock):
    return OrderService(store, gateway, settings, now_provider=clock)


class TestPodcastAndPlaylistOrders:
    """Per-item purchases."""

    async def test_podcast_order_writes_pending_rows(self, order_service, store, catalog, gateway_api):
        response = await order_service.create_order(
            "user-1",
            CreateOrderRequest(intent=OrderIntent.PURCHASE, target_id=catalog.podcast.id),
        )

        assert response.requires_payment is True
        assert response.order_id == "order_test1"
        assert response.amount == 4900
        assert response.currency == "INR"
        assert response.key_id == "rzp_test_key"

        purchase = await fetch_one(store, PurchaseModel, gateway_order_id="order_test1")
        assert purchase.status == PurchaseStatus.PENDING.value
        assert purchase.podcast_id == catalog.podcast.id
        assert str(purchase.id) == response.entity_id

        payment = await fetch_one(store, PaymentHistoryModel, gateway_order_id="order_test1")
        assert payment.status == PaymentStatus.PENDING.value
        assert payment.type == PaymentType.PURCHASE.value
        assert payment.amount == Decimal("49.00")
        assert payment.ref_id == purchase.id

        body = gateway_api.bodies("/orders")[0]
        assert body["amount"] == 4900
        assert len(body["receipt"]) <= 40
        assert body["notes"]["user_id"] == "user-1"

    async def test_playlist_order(self, order_service, store, catalog):
        response = await order_service.create_order(
            "user-1",
            CreateOrderRequest(intent=OrderIntent.PLAYLIST, target_id=catalog.playlist.id),
        )

        assert response.amount == 19900
        purchase = await fetch_one(store, PurchaseModel, gateway_order_id=response.order_id)
        assert purchase.playlist_id == catalog.playlist.id
        assert purchase.podcast_id is None

    async def test_free_podcast_rejected(self, order_service, catalog, gateway_api):
        with pytest.raises(InvalidAmountError):
            await order_service.create_order(
                "user-1",
                CreateOrderRequest(intent=OrderIntent.PURCHASE, target_id=catalog.free_podcast.id),
            )
        assert gateway_api.requests == []

    async def test_already_purchased(self, order_service, store, catalog):
        await add_rows(
            store,
            PurchaseModel(
                user_id="user-1",
                podcast_id=catalog.podcast.id,
                amount=Decimal("49.00"),
                status=PurchaseStatus.COMPLETED.value,
            ),
        )

        with pytest.raises(InvalidStateError):
            await order_service.create_order(
                "user-1",
                CreateOrderRequest(intent=OrderIntent.PURCHASE, target_id=catalog.podcast.id),
            )

    async def test_unknown_podcast(self, order_service, catalog):
        with pytest.raises(NotFoundError):
            await order_service.create_order(
                "user-1",
                CreateOrderRequest(intent=OrderIntent.PURCHASE, target_id=catalog.playlist.id),
            )

    async def test_currency_mismatch(self, order_service, catalog):
        with pytest.raises(ValidationError):
            await order_service.create_order(
                "user-1",
                CreateOrderRequest(
                    intent=OrderIntent.PURCHASE,
                    target_id=catalog.podcast.id,
                    currency="USD",
                ),
            )

    async def test_gateway_failure_writes_nothing(self, order_service, store, catalog, gateway_api):
        gateway_api.failure = 503

        with pytest.raises(GatewayUnavailableError) as exc_info:
            await order_service.create_order(
                "user-1",
                CreateOrderRequest(intent=OrderIntent.PURCHASE, target_id=catalog.podcast.id),
            )

        assert exc_info.value.details["retryable"] is True
        assert await fetch_all(store, PurchaseModel) == []
        assert await fetch_all(store, PaymentHistoryModel) == []


class TestSubscriptionOrders:
    """New subscriptions, upgrades and downgrades."""

    async def test_new_paid_subscription_is_pending_until_paid(self, order_service, store, catalog):
        response = await order_service.create_order(
            "user-1",
            CreateOrderRequest(intent=OrderIntent.SUBSCRIPTION_NEW, target_id=catalog.basic.id),
        )

        assert response.requires_payment is True
        assert response.amount == 29900
        payment = await fetch_one(store, PaymentHistoryModel, gateway_order_id=response.order_id)
        assert payment.type == PaymentType.SUBSCRIPTION.value
        assert payment.payment_metadata["plan_id"] == str(catalog.basic.id)
        assert payment.ref_id is None
        assert await fetch_all(store, SubscriptionModel) == []

    async def test_free_plan_activates_without_gateway(self, order_service, store, catalog, gateway_api, clock):
        response = await order_service.create_order(
            "user-1",
            CreateOrderRequest(intent=OrderIntent.SUBSCRIPTION_NEW, target_id=catalog.free_plan.id),
        )

        assert response.requires_payment is False
        assert gateway_api.requests == []
        subscription = await fetch_one(store, SubscriptionModel, user_id="user-1")
        assert subscription.status == SubscriptionStatus.ACTIVE.value
        assert subscription.current_period_start == clock.now
        assert str(subscription.id) == response.entity_id

    async def test_new_subscription_when_one_is_active(self, order_service, store, catalog, clock):
        await add_subscription(store, "user-1", catalog.basic, clock.now)

        with pytest.raises(InvalidStateError):
            await order_service.create_order(
                "user-1",
                CreateOrderRequest(intent=OrderIntent.SUBSCRIPTION_NEW, target_id=catalog.premium.id),
            )

    async def test_inactive_plan(self, order_service, catalog):
        with pytest.raises(NotFoundError):
            await order_service.create_order(
                "user-1",
                CreateOrderRequest(intent=OrderIntent.SUBSCRIPTION_NEW, target_id=catalog.retired.id),
            )

    async def test_upgrade_halfway_through_period(self, order_service, store, catalog, clock):
        current = await add_subscription(
            store,
            "user-1",
            catalog.basic,
            clock.now - timedelta(days=15),
            clock.now + timedelta(days=15),
        )

        response = await order_service.create_order(
            "user-1",
            CreateOrderRequest(intent=OrderIntent.SUBSCRIPTION_UPGRADE, target_id=catalog.premium.id),
        )

        assert response.requires_payment is True
        assert response.credit == Decimal("149.50")
        assert response.amount == 84950

        payment = await fetch_one(store, PaymentHistoryModel, gateway_order_id=response.order_id)
        assert payment.type == PaymentType.UPGRADE.value
        assert payment.amount == Decimal("849.50")
        assert payment.payment_metadata["from_subscription_id"] == str(current.id)

        # Access does not change until the payment settles.
        still_current = await fetch_one(store, SubscriptionModel, id=current.id)
        assert still_current.status == SubscriptionStatus.ACTIVE.value

    async def test_upgrade_to_cheaper_plan_rejected(self, order_service, store, catalog, clock):
        await add_subscription(store, "user-1", catalog.premium, clock.now)

        with pytest.raises(ValidationError):
            await order_service.create_order(
                "user-1",
                CreateOrderRequest(intent=OrderIntent.SUBSCRIPTION_UPGRADE, target_id=catalog.basic.id),
            )

    async def test_upgrade_without_subscription(self, order_service, catalog):
        with pytest.raises(InvalidStateError):
            await order_service.create_order(
                "user-1",
                CreateOrderRequest(intent=OrderIntent.SUBSCRIPTION_UPGRADE, target_id=catalog.premium.id),
            )

    async def test_downgrade_is_scheduled_once(self, order_service, store, catalog, clock, gateway_api):
        current = await add_subscription(store, "user-1", catalog.premium, clock.now)
        request = CreateOrderRequest(intent=OrderIntent.SUBSCRIPTION_DOWNGRADE, target_id=catalog.basic.id)

        first = await order_service.create_order("user-1", request)
        second = await order_service.create_order("user-1", request)

        assert first.requires_payment is False
        assert first.effective_date == current.current_period_end
        assert "already scheduled" in second.message
        assert gateway_api.requests == []

        subscription = await fetch_one(store, SubscriptionModel, id=current.id)
        assert subscription.status == SubscriptionStatus.PENDING_DOWNGRADE.value
        assert subscription.pending_plan_id == catalog.basic.id
        assert subscription.plan_id == catalog.premium.id

        downgrades = await fetch_all(store, PaymentHistoryModel, type=PaymentType.DOWNGRADE.value)
        assert len(downgrades) == 1
        assert downgrades[0].amount == Decimal("0.00")

    async def test_downgrade_to_pricier_plan_rejected(self, order_service, store, catalog, clock):
        await add_subscription(store, "user-1", catalog.basic, clock.now)

        with pytest.raises(ValidationError):
            await order_service.create_order(
                "user-1",
                CreateOrderRequest(intent=OrderIntent.SUBSCRIPTION_DOWNGRADE, target_id=catalog.premium.id),
            )


class TestMerchOrders:
    """Merchandise orders."""

    async def test_merch_order_totals_lines(self, order_service, store, catalog):
        response = await order_service.create_order(
            "user-1",
            CreateOrderRequest(
                intent=OrderIntent.MERCH,
                items=[
                    {"merch_item_id": catalog.tee.id, "quantity": 1},
                    {"merch_item_id": catalog.mug.id, "quantity": 1},
                    {"merch_item_id": catalog.tee.id, "quantity": 1},
                ],
                shipping=SHIPPING,
            ),
        )

        assert response.amount == 129700
        order = await fetch_one(store, MerchOrderModel, gateway_order_id=response.order_id)
        assert order.total_amount == Decimal("1297.00")
        assert order.shipping_city == "Bengaluru"

        lines = await fetch_all(store, MerchOrderItemModel, order_id=order.id)
        quantities = {line.merch_item_id: line.quantity for line in lines}
        assert quantities == {catalog.tee.id: 2, catalog.mug.id: 1}

    async def test_insufficient_stock(self, order_service, catalog, gateway_api):
        with pytest.raises(InvalidStateError):
            await order_service.create_order(
                "user-1",
                CreateOrderRequest(
                    intent=OrderIntent.MERCH,
                    items=[{"merch_item_id": catalog.mug.id, "quantity": 2}],
                    shipping=SHIPPING,
                ),
            )
        assert gateway_api.requests == []

    async def test_unknown_item(self, order_service, catalog):
        with pytest.raises(NotFoundError):
            await order_service.create_order(
                "user-1",
                CreateOrderRequest(
                    intent=OrderIntent.MERCH,
                    items=[{"merch_item_id": catalog.podcast.id, "quantity": 1}],
                    shipping=SHIPPING,
                ),
            )

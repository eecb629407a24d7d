"""
Order Orchestrator

Turns a purchase intent into a payable gateway order, or applies the change
directly when nothing has to be charged (free plans, zero-cost upgrades,
scheduled downgrades).

Flow for payable intents:
1. Validate and price the intent from the ledger (read transaction)
2. Create the gateway order (no transaction open)
3. Write pending Purchase / MerchOrder / PaymentHistory rows keyed by the order id

A gateway failure in step 2 writes nothing.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional
from uuid import UUID

from app.config.settings import Settings
from app.domain.billing import (
    CreateOrderRequest,
    MerchLineItem,
    OrderIntent,
    OrderResponse,
    PaymentStatus,
    PaymentType,
    PurchaseStatus,
    RefType,
    ShippingAddress,
)
from app.domain.proration import compute_upgrade_charge, to_minor_units, to_money, utcnow
from app.infrastructure.db.ledger import Ledger, LedgerStore
from app.infrastructure.db.models import (
    MerchOrderItemModel,
    MerchOrderModel,
    PricingPlanModel,
    PurchaseModel,
    SubscriptionModel,
)
from app.infrastructure.exceptions import (
    InvalidAmountError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from app.infrastructure.payments.gateway_client import GatewayClient
from app.infrastructure.services.settlement import (
    activate_subscription,
    record_payment,
    schedule_downgrade,
)


logger = logging.getLogger(__name__)

_RECEIPT_PREFIX = {
    OrderIntent.PURCHASE: "pod",
    OrderIntent.PLAYLIST: "pl",
    OrderIntent.SUBSCRIPTION_NEW: "sub_new",
    OrderIntent.SUBSCRIPTION_UPGRADE: "sub_upg",
    OrderIntent.MERCH: "merch",
}

_PAYMENT_TYPE = {
    OrderIntent.PURCHASE: PaymentType.PURCHASE,
    OrderIntent.PLAYLIST: PaymentType.PLAYLIST,
    OrderIntent.SUBSCRIPTION_NEW: PaymentType.SUBSCRIPTION,
    OrderIntent.SUBSCRIPTION_UPGRADE: PaymentType.UPGRADE,
    OrderIntent.MERCH: PaymentType.MERCH,
}


@dataclass
class PricedOrder:
    """A validated intent waiting for its gateway order."""
    intent: OrderIntent
    target_id: Optional[UUID]
    amount: Decimal
    currency: str
    notes: Dict[str, Any] = field(default_factory=dict)
    metadata: Dict[str, Any] = field(default_factory=dict)
    merch_lines: List[MerchOrderItemModel] = field(default_factory=list)
    shipping: Optional[ShippingAddress] = None
    credit: Optional[Decimal] = None


class OrderService:
    """
    Order orchestration for purchases, subscriptions and merchandise.

    Args:
        store: Ledger store
        gateway: Payment gateway client
        settings: Application settings
        now_provider: Clock returning naive UTC
    """

    def __init__(
        self,
        store: LedgerStore,
        gateway: GatewayClient,
        settings: Settings,
        now_provider: Callable[[], datetime] = utcnow,
    ):
        self._store = store
        self._gateway = gateway
        self._settings = settings
        self._now = now_provider

    async def create_order(self, user_id: str, request: CreateOrderRequest) -> OrderResponse:
        """
        Create a payable order, or apply a change that needs no payment.

        Raises:
            NotFoundError: unknown or inactive target
            InvalidStateError: target already owned, no subscription to change
            InvalidAmountError: nothing to charge where a charge was expected
            GatewayUnavailableError: the gateway could not create the order
        """
        now = self._now()

        async with self._store.transaction() as ledger:
            priced = await self._price(ledger, user_id, request, now)
            if isinstance(priced, OrderResponse):
                return priced

        if priced.amount <= 0:
            raise InvalidAmountError("Order amount must be greater than zero", amount=priced.amount)

        receipt = self._receipt(priced, now)
        order = await self._gateway.create_order(
            amount=to_minor_units(priced.amount),
            currency=priced.currency,
            receipt=receipt,
            notes={"user_id": user_id, "intent": priced.intent.value, **priced.notes},
        )

        async with self._store.transaction() as ledger:
            entity_id = await self._write_pending(ledger, user_id, priced, order.id)

        logger.info(
            f"Order {order.id} created for user {user_id}: {priced.intent.value} "
            f"{priced.amount} {priced.currency}"
        )
        return OrderResponse(
            requires_payment=True,
            intent=priced.intent,
            order_id=order.id,
            amount=order.amount,
            currency=order.currency,
            key_id=self._gateway.key_id,
            entity_id=str(entity_id) if entity_id else None,
            credit=priced.credit,
        )

    # =========================================================================
    # Pricing
    # =========================================================================

    async def _price(
        self,
        ledger: Ledger,
        user_id: str,
        request: CreateOrderRequest,
        now: datetime,
    ):
        intent = request.intent
        if intent == OrderIntent.PURCHASE:
            return await self._price_podcast(ledger, user_id, request)
        if intent == OrderIntent.PLAYLIST:
            return await self._price_playlist(ledger, user_id, request)
        if intent == OrderIntent.SUBSCRIPTION_NEW:
            return await self._price_new_subscription(ledger, user_id, request, now)
        if intent == OrderIntent.SUBSCRIPTION_UPGRADE:
            return await self._price_upgrade(ledger, user_id, request, now)
        if intent == OrderIntent.SUBSCRIPTION_DOWNGRADE:
            return await self._apply_downgrade(ledger, user_id, request, now)
        if intent == OrderIntent.MERCH:
            return await self._price_merch(ledger, request)
        raise ValidationError(f"Unsupported intent: {intent}")

    def _currency(self, request: CreateOrderRequest, catalog_currency: Optional[str]) -> str:
        currency = (catalog_currency or self._settings.default_currency).upper()
        if request.currency and request.currency.upper() != currency:
            raise ValidationError(
                f"Currency {request.currency.upper()} does not match price currency {currency}",
                details={"currency": currency},
            )
        return currency

    async def _price_podcast(self, ledger: Ledger, user_id: str, request: CreateOrderRequest) -> PricedOrder:
        podcast = await ledger.podcasts.get_by_id(request.target_id)
        if podcast is None:
            raise NotFoundError("Podcast not found", table="podcasts")
        if podcast.is_free or podcast.price <= 0:
            raise InvalidAmountError("Podcast is free", amount=podcast.price)
        if await ledger.purchases.get_completed(user_id, podcast_id=podcast.id):
            raise InvalidStateError("Podcast already purchased")

        return PricedOrder(
            intent=request.intent,
            target_id=podcast.id,
            amount=to_money(podcast.price),
            currency=self._currency(request, podcast.currency),
            notes={"podcast_id": str(podcast.id)},
        )

    async def _price_playlist(self, ledger: Ledger, user_id: str, request: CreateOrderRequest) -> PricedOrder:
        playlist = await ledger.playlists.get_by_id(request.target_id)
        if playlist is None:
            raise NotFoundError("Playlist not found", table="playlists")
        if playlist.price <= 0:
            raise InvalidAmountError("Playlist is free", amount=playlist.price)
        if await ledger.purchases.get_completed(user_id, playlist_id=playlist.id):
            raise InvalidStateError("Playlist already purchased")

        return PricedOrder(
            intent=request.intent,
            target_id=playlist.id,
            amount=to_money(playlist.price),
            currency=self._currency(request, playlist.currency),
            notes={"playlist_id": str(playlist.id)},
        )

    async def _active_plan(self, ledger: Ledger, plan_id: Optional[UUID]) -> PricingPlanModel:
        plan = await ledger.plans.get_active(plan_id)
        if plan is None:
            raise NotFoundError("Pricing plan not found", table="pricing_plans")
        return plan

    async def _current_subscription(self, ledger: Ledger, user_id: str) -> SubscriptionModel:
        current = await ledger.subscriptions.get_current(user_id)
        if current is None:
            raise InvalidStateError("No active subscription to change")
        return current

    async def _price_new_subscription(
        self,
        ledger: Ledger,
        user_id: str,
        request: CreateOrderRequest,
        now: datetime,
    ):
        plan = await self._active_plan(ledger, request.target_id)
        currency = self._currency(request, plan.currency)

        current = await ledger.subscriptions.get_current(user_id)
        if current is not None:
            raise InvalidStateError(
                "User already has an active subscription; upgrade or downgrade instead",
                current_status=current.status,
            )

        if plan.price <= 0:
            subscription = await activate_subscription(ledger, user_id, plan, now)
            await record_payment(
                ledger,
                user_id=user_id,
                payment_type=PaymentType.SUBSCRIPTION,
                amount=Decimal("0.00"),
                currency=currency,
                status=PaymentStatus.COMPLETED,
                ref_type=RefType.SUBSCRIPTION,
                ref_id=subscription.id,
                metadata={"plan_id": str(plan.id), "action": "new", "free": True},
            )
            return OrderResponse(
                requires_payment=False,
                intent=request.intent,
                currency=currency,
                entity_id=str(subscription.id),
                message=f"Subscribed to {plan.name}",
            )

        return PricedOrder(
            intent=request.intent,
            target_id=plan.id,
            amount=to_money(plan.price),
            currency=currency,
            notes={"plan_id": str(plan.id), "action": "new"},
            metadata={"plan_id": str(plan.id), "action": "new"},
        )

    async def _price_upgrade(
        self,
        ledger: Ledger,
        user_id: str,
        request: CreateOrderRequest,
        now: datetime,
    ):
        current = await self._current_subscription(ledger, user_id)
        new_plan = await self._active_plan(ledger, request.target_id)
        if current.plan_id == new_plan.id:
            raise InvalidStateError("Already subscribed to this plan", current_status=current.status)

        current_plan = await ledger.plans.get_by_id(current.plan_id)
        current_price = current_plan.price if current_plan else current.amount
        if new_plan.price <= current_price:
            raise ValidationError(
                "Target plan is not more expensive than the current plan; use a downgrade",
                details={"current_price": str(current_price), "new_price": str(new_plan.price)},
            )

        currency = self._currency(request, new_plan.currency)
        charge = compute_upgrade_charge(
            current_price,
            new_plan.price,
            current.current_period_start,
            current.current_period_end,
            now,
        )
        metadata = {
            "plan_id": str(new_plan.id),
            "action": "upgrade",
            "from_plan_id": str(current.plan_id),
            "from_subscription_id": str(current.id),
            "credit": str(charge.credit),
            "remaining_days": charge.remaining_days,
            "total_days": charge.total_days,
        }

        if charge.amount_to_pay <= 0:
            subscription = await activate_subscription(ledger, user_id, new_plan, now)
            await record_payment(
                ledger,
                user_id=user_id,
                payment_type=PaymentType.UPGRADE,
                amount=Decimal("0.00"),
                currency=currency,
                status=PaymentStatus.COMPLETED,
                ref_type=RefType.SUBSCRIPTION,
                ref_id=subscription.id,
                metadata=metadata,
            )
            return OrderResponse(
                requires_payment=False,
                intent=request.intent,
                currency=currency,
                entity_id=str(subscription.id),
                credit=charge.credit,
                message=f"Upgraded to {new_plan.name}; credit covered the full price",
            )

        return PricedOrder(
            intent=request.intent,
            target_id=new_plan.id,
            amount=charge.amount_to_pay,
            currency=currency,
            notes={
                "plan_id": str(new_plan.id),
                "action": "upgrade",
                "from_plan_id": str(current.plan_id),
                "credit": str(charge.credit),
            },
            metadata=metadata,
            credit=charge.credit,
        )

    async def _apply_downgrade(
        self,
        ledger: Ledger,
        user_id: str,
        request: CreateOrderRequest,
        now: datetime,
    ) -> OrderResponse:
        current = await self._current_subscription(ledger, user_id)
        new_plan = await self._active_plan(ledger, request.target_id)
        if current.plan_id == new_plan.id:
            raise InvalidStateError("Already subscribed to this plan", current_status=current.status)

        current_plan = await ledger.plans.get_by_id(current.plan_id)
        current_price = current_plan.price if current_plan else current.amount
        if new_plan.price >= current_price:
            raise ValidationError(
                "Target plan is not cheaper than the current plan; use an upgrade",
                details={"current_price": str(current_price), "new_price": str(new_plan.price)},
            )

        currency = self._currency(request, new_plan.currency)
        scheduled = await schedule_downgrade(ledger, current, new_plan, now)
        return OrderResponse(
            requires_payment=False,
            intent=request.intent,
            currency=currency,
            entity_id=str(current.id),
            effective_date=current.current_period_end,
            message=(
                f"Downgrade to {new_plan.name} scheduled"
                if scheduled else f"Downgrade to {new_plan.name} already scheduled"
            ),
        )

    async def _price_merch(self, ledger: Ledger, request: CreateOrderRequest) -> PricedOrder:
        quantities = self._merge_lines(request.items or [])
        items = {item.id: item for item in await ledger.merch_items.get_many(quantities.keys())}

        lines: List[MerchOrderItemModel] = []
        total = Decimal("0.00")
        currencies = set()
        for item_id, quantity in quantities.items():
            item = items.get(item_id)
            if item is None or not item.is_active:
                raise NotFoundError(f"Merch item {item_id} not found", table="merch_items")
            if not item.in_stock or item.stock_quantity < quantity:
                raise InvalidStateError(
                    f"Insufficient stock for {item.name}",
                    details={"merch_item_id": str(item_id), "available": item.stock_quantity},
                )
            currencies.add(item.currency.upper())
            total += to_money(item.price) * quantity
            lines.append(
                MerchOrderItemModel(
                    order_id=None,
                    merch_item_id=item.id,
                    quantity=quantity,
                    price_at_purchase=to_money(item.price),
                )
            )

        if len(currencies) > 1:
            raise ValidationError("Merch items must share one currency")

        return PricedOrder(
            intent=request.intent,
            target_id=None,
            amount=to_money(total),
            currency=self._currency(request, currencies.pop()),
            notes={"items": len(lines)},
            merch_lines=lines,
            shipping=request.shipping,
        )

    @staticmethod
    def _merge_lines(items: List[MerchLineItem]) -> Dict[UUID, int]:
        quantities: Dict[UUID, int] = {}
        for line in items:
            quantities[line.merch_item_id] = quantities.get(line.merch_item_id, 0) + line.quantity
        return quantities

    # =========================================================================
    # Pending Rows
    # =========================================================================

    async def _write_pending(
        self,
        ledger: Ledger,
        user_id: str,
        priced: PricedOrder,
        gateway_order_id: str,
    ) -> Optional[UUID]:
        ref_type: Optional[RefType] = None
        ref_id: Optional[UUID] = None

        if priced.intent in (OrderIntent.PURCHASE, OrderIntent.PLAYLIST):
            purchase = await ledger.purchases.add(
                PurchaseModel(
                    user_id=user_id,
                    podcast_id=priced.target_id if priced.intent == OrderIntent.PURCHASE else None,
                    playlist_id=priced.target_id if priced.intent == OrderIntent.PLAYLIST else None,
                    amount=priced.amount,
                    currency=priced.currency,
                    status=PurchaseStatus.PENDING.value,
                    gateway_order_id=gateway_order_id,
                )
            )
            ref_type, ref_id = RefType.PURCHASE, purchase.id

        elif priced.intent == OrderIntent.MERCH:
            shipping = priced.shipping
            order = await ledger.merch_orders.add(
                MerchOrderModel(
                    user_id=user_id,
                    total_amount=priced.amount,
                    currency=priced.currency,
                    shipping_name=shipping.name,
                    shipping_phone=shipping.phone,
                    shipping_address=shipping.address,
                    shipping_city=shipping.city,
                    shipping_state=shipping.state,
                    shipping_postal_code=shipping.postal_code,
                    gateway_order_id=gateway_order_id,
                )
            )
            for line in priced.merch_lines:
                line.order_id = order.id
                await ledger.merch_orders.add_item(line)
            ref_type, ref_id = RefType.MERCH_ORDER, order.id

        await record_payment(
            ledger,
            user_id=user_id,
            payment_type=_PAYMENT_TYPE[priced.intent],
            amount=priced.amount,
            currency=priced.currency,
            status=PaymentStatus.PENDING,
            ref_type=ref_type,
            ref_id=ref_id,
            gateway_order_id=gateway_order_id,
            metadata=priced.metadata,
        )
        return ref_id

    @staticmethod
    def _receipt(priced: PricedOrder, now: datetime) -> str:
        reference = str(priced.target_id)[:8] if priced.target_id else "cart"
        return f"{_RECEIPT_PREFIX[priced.intent]}_{reference}_{int(now.timestamp())}"

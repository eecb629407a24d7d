"""
Tests for the refund workflow: user requests, the refund window and admin actions.
"""

from datetime import timedelta
from decimal import Decimal
from uuid import uuid4

import pytest

from app.domain.billing import (
    AdminInitiateRefundRequest,
    AdminRefundActionRequest,
    CreateRefundRequest,
    PaymentStatus,
    PaymentType,
    PurchaseStatus,
    RefType,
    RefundAction,
    RefundStatus,
    SubscriptionStatus,
)
from app.infrastructure.db.models import (
    PaymentHistoryModel,
    PurchaseModel,
    RefundRequestModel,
    SubscriptionModel,
)
from app.infrastructure.exceptions import (
    GatewayUnavailableError,
    InvalidAmountError,
    InvalidStateError,
    NotFoundError,
    RefundWindowExpiredError,
    ValidationError,
)
from app.infrastructure.services.refund_service import RefundService

from conftest import add_rows, add_subscription, fetch_all, fetch_one


@pytest.fixture
def refunds(store, gateway, settings, clock):
    return RefundService(store, gateway, settings, now_provider=clock)


async def _purchase(store, catalog, created_at, payment_id="pay_p1", status=PurchaseStatus.COMPLETED):
    purchase = PurchaseModel(
        user_id="user-1",
        podcast_id=catalog.podcast.id,
        amount=Decimal("49.00"),
        status=status.value,
        gateway_payment_id=payment_id,
        created_at=created_at,
    )
    payment = PaymentHistoryModel(
        user_id="user-1",
        type=PaymentType.PURCHASE.value,
        amount=Decimal("49.00"),
        status=PaymentStatus.COMPLETED.value,
        gateway_order_id=f"order_{payment_id}",
        gateway_payment_id=payment_id,
        ref_type=RefType.PURCHASE.value,
        ref_id=purchase.id,
        created_at=created_at,
    )
    await add_rows(store, purchase, payment)
    return purchase, payment


async def _paid_subscription(store, catalog, clock, payment_id="pay_s1"):
    subscription = await add_subscription(
        store,
        "user-1",
        catalog.premium,
        clock.now - timedelta(days=2),
        gateway_payment_id=payment_id,
    )
    payment = await add_rows(
        store,
        PaymentHistoryModel(
            user_id="user-1",
            type=PaymentType.SUBSCRIPTION.value,
            amount=Decimal("999.00"),
            status=PaymentStatus.COMPLETED.value,
            gateway_order_id=f"order_{payment_id}",
            gateway_payment_id=payment_id,
            ref_type=RefType.SUBSCRIPTION.value,
            ref_id=subscription.id,
        ),
    )
    return subscription, payment


class TestRefundWindow:
    """Requests are accepted up to and including the last day of the window."""

    async def test_day_seven_is_accepted(self, refunds, store, catalog, clock):
        purchase, payment = await _purchase(store, catalog, clock.now - timedelta(days=7))

        refund = await refunds.request_refund(
            "user-1", CreateRefundRequest(purchase_id=purchase.id, reason="Audio was corrupted")
        )

        assert refund.status == RefundStatus.PENDING.value
        assert refund.amount == Decimal("49.00")
        assert refund.payment_history_id == payment.id

    async def test_day_eight_is_refused(self, refunds, store, catalog, clock):
        purchase, _ = await _purchase(store, catalog, clock.now - timedelta(days=7, seconds=1))

        with pytest.raises(RefundWindowExpiredError) as exc_info:
            await refunds.request_refund(
                "user-1", CreateRefundRequest(purchase_id=purchase.id, reason="Too late")
            )

        assert exc_info.value.details == {"days_elapsed": 8, "refund_window_days": 7}


class TestRefundRequests:

    async def test_subscription_refund_uses_paid_amount(self, refunds, store, catalog, clock):
        subscription, payment = await _paid_subscription(store, catalog, clock)

        refund = await refunds.request_refund(
            "user-1", CreateRefundRequest(subscription_id=subscription.id, reason="Not for me")
        )

        assert refund.amount == Decimal("999.00")
        assert refund.subscription_id == subscription.id
        assert refund.payment_history_id == payment.id

    async def test_second_open_request_rejected(self, refunds, store, catalog, clock):
        purchase, _ = await _purchase(store, catalog, clock.now)
        request = CreateRefundRequest(purchase_id=purchase.id, reason="Duplicate charge")
        await refunds.request_refund("user-1", request)

        with pytest.raises(InvalidStateError):
            await refunds.request_refund("user-1", request)

    async def test_exactly_one_target(self, refunds, store, catalog, clock):
        purchase, _ = await _purchase(store, catalog, clock.now)
        subscription, _ = await _paid_subscription(store, catalog, clock)

        with pytest.raises(ValidationError):
            await refunds.request_refund(
                "user-1",
                CreateRefundRequest(
                    purchase_id=purchase.id, subscription_id=subscription.id, reason="Both"
                ),
            )
        with pytest.raises(ValidationError):
            await refunds.request_refund("user-1", CreateRefundRequest(reason="Neither"))

    async def test_other_users_purchase(self, refunds, store, catalog, clock):
        purchase, _ = await _purchase(store, catalog, clock.now)

        with pytest.raises(NotFoundError):
            await refunds.request_refund(
                "user-2", CreateRefundRequest(purchase_id=purchase.id, reason="Not mine")
            )

    async def test_pending_purchase_cannot_be_refunded(self, refunds, store, catalog, clock):
        purchase, _ = await _purchase(store, catalog, clock.now, status=PurchaseStatus.PENDING)

        with pytest.raises(InvalidStateError):
            await refunds.request_refund(
                "user-1", CreateRefundRequest(purchase_id=purchase.id, reason="Never paid")
            )

    async def test_processed_subscription_refund_is_not_repeated(
        self, refunds, store, catalog, clock, gateway_api
    ):
        subscription, _ = await _paid_subscription(store, catalog, clock)
        refund = await refunds.request_refund(
            "user-1", CreateRefundRequest(subscription_id=subscription.id, reason="Not for me")
        )
        await refunds.process("admin-1", refund.id)

        with pytest.raises(InvalidStateError):
            await refunds.request_refund(
                "user-1", CreateRefundRequest(subscription_id=subscription.id, reason="Again")
            )
        assert len(gateway_api.bodies("/refund")) == 1

    async def test_subscription_refunded_at_gateway_is_not_requestable(self, refunds, store, catalog, clock):
        subscription = await add_subscription(
            store,
            "user-1",
            catalog.premium,
            clock.now - timedelta(days=1),
            status=SubscriptionStatus.CANCELLED,
        )
        await add_rows(
            store,
            PaymentHistoryModel(
                user_id="user-1",
                type=PaymentType.SUBSCRIPTION.value,
                amount=Decimal("999.00"),
                status=PaymentStatus.REFUNDED.value,
                gateway_payment_id="pay_gw",
                ref_type=RefType.SUBSCRIPTION.value,
                ref_id=subscription.id,
            ),
        )

        with pytest.raises(InvalidStateError):
            await refunds.request_refund(
                "user-1", CreateRefundRequest(subscription_id=subscription.id, reason="Refund me")
            )
        assert await fetch_all(store, RefundRequestModel) == []

    async def test_superseded_subscription_is_not_refundable(self, refunds, store, catalog, clock):
        old = await add_subscription(
            store,
            "user-1",
            catalog.basic,
            clock.now - timedelta(days=3),
            status=SubscriptionStatus.CANCELLED,
            created_at=clock.now - timedelta(days=3),
            cancelled_at=clock.now - timedelta(days=1),
        )
        upgraded = await add_subscription(
            store,
            "user-1",
            catalog.premium,
            clock.now - timedelta(days=1),
            created_at=clock.now - timedelta(days=1),
        )
        await add_rows(
            store,
            PaymentHistoryModel(
                user_id="user-1",
                type=PaymentType.SUBSCRIPTION.value,
                amount=Decimal("299.00"),
                status=PaymentStatus.COMPLETED.value,
                gateway_payment_id="pay_basic",
                ref_type=RefType.SUBSCRIPTION.value,
                ref_id=old.id,
            ),
            PaymentHistoryModel(
                user_id="user-1",
                type=PaymentType.UPGRADE.value,
                amount=Decimal("729.00"),
                status=PaymentStatus.COMPLETED.value,
                gateway_payment_id="pay_upgrade",
                ref_type=RefType.SUBSCRIPTION.value,
                ref_id=upgraded.id,
            ),
        )

        with pytest.raises(InvalidStateError) as exc_info:
            await refunds.request_refund(
                "user-1", CreateRefundRequest(subscription_id=old.id, reason="Old plan")
            )
        assert exc_info.value.details["subscription_id"] == str(upgraded.id)

        refund = await refunds.request_refund(
            "user-1", CreateRefundRequest(subscription_id=upgraded.id, reason="Upgrade not needed")
        )
        assert refund.amount == Decimal("729.00")

    async def test_free_subscription_has_nothing_to_refund(self, refunds, store, catalog, clock):
        subscription = await add_subscription(store, "user-1", catalog.free_plan, clock.now)

        with pytest.raises(InvalidAmountError):
            await refunds.request_refund(
                "user-1", CreateRefundRequest(subscription_id=subscription.id, reason="Free")
            )


class TestAdminActions:

    @pytest.fixture
    async def pending_purchase_refund(self, refunds, store, catalog, clock):
        purchase, payment = await _purchase(store, catalog, clock.now - timedelta(days=1))
        refund = await refunds.request_refund(
            "user-1", CreateRefundRequest(purchase_id=purchase.id, reason="Audio was corrupted")
        )
        return refund, purchase, payment

    async def test_approve_moves_no_money(self, refunds, pending_purchase_refund, gateway_api):
        refund, _, _ = pending_purchase_refund

        approved = await refunds.apply_action(
            "admin-1",
            AdminRefundActionRequest(refund_id=refund.id, action=RefundAction.APPROVE, admin_notes="ok"),
        )

        assert approved.status == RefundStatus.APPROVED.value
        assert approved.admin_notes == "ok"
        assert gateway_api.requests == []

    async def test_process_refunds_through_gateway_and_cascades(
        self, refunds, store, pending_purchase_refund, gateway_api
    ):
        refund, purchase, payment = pending_purchase_refund

        processed = await refunds.apply_action(
            "admin-1", AdminRefundActionRequest(refund_id=refund.id, action=RefundAction.PROCESS)
        )

        assert processed.status == RefundStatus.PROCESSED.value
        assert processed.gateway_refund_id == "rfnd_test1"
        assert processed.processed_by == "admin-1"
        assert processed.processed_at is not None

        call = gateway_api.requests[0]
        assert call.url.path.endswith("/payments/pay_p1/refund")
        assert gateway_api.bodies("/refund")[0]["amount"] == 4900

        assert (await fetch_one(store, PurchaseModel, id=purchase.id)).status == PurchaseStatus.REFUNDED.value
        assert (await fetch_one(store, PaymentHistoryModel, id=payment.id)).status == PaymentStatus.REFUNDED.value

    async def test_gateway_failure_keeps_request_approved(
        self, refunds, store, pending_purchase_refund, gateway_api
    ):
        refund, purchase, _ = pending_purchase_refund
        gateway_api.failure = 502

        with pytest.raises(GatewayUnavailableError):
            await refunds.process("admin-1", refund.id)

        stored = await fetch_one(store, RefundRequestModel, id=refund.id)
        assert stored.status == RefundStatus.APPROVED.value
        assert "Refund failed" in stored.admin_notes
        assert (await fetch_one(store, PurchaseModel, id=purchase.id)).status == PurchaseStatus.COMPLETED.value

        gateway_api.failure = None
        retried = await refunds.process("admin-1", refund.id)
        assert retried.status == RefundStatus.PROCESSED.value

    async def test_gateway_timeout_keeps_request_approved(self, refunds, store, pending_purchase_refund, gateway_api):
        refund, _, _ = pending_purchase_refund
        gateway_api.failure = "timeout"

        with pytest.raises(GatewayUnavailableError):
            await refunds.process("admin-1", refund.id)

        assert (await fetch_one(store, RefundRequestModel, id=refund.id)).status == RefundStatus.APPROVED.value

    async def test_reject_then_process_is_refused(self, refunds, store, pending_purchase_refund, gateway_api):
        refund, purchase, _ = pending_purchase_refund

        rejected = await refunds.reject("admin-1", refund.id, "Listened to the whole episode")
        assert rejected.status == RefundStatus.REJECTED.value

        with pytest.raises(InvalidStateError):
            await refunds.process("admin-1", refund.id)
        assert gateway_api.requests == []
        assert (await fetch_one(store, PurchaseModel, id=purchase.id)).status == PurchaseStatus.COMPLETED.value

    async def test_reject_during_gateway_call_stays_rejected(
        self, refunds, store, gateway, pending_purchase_refund, monkeypatch
    ):
        refund, _, payment = pending_purchase_refund
        gateway_refund = gateway.refund

        async def refund_then_reject(*args, **kwargs):
            result = await gateway_refund(*args, **kwargs)
            await refunds.reject("admin-2", refund.id, "Listened to the whole episode")
            return result

        monkeypatch.setattr(gateway, "refund", refund_then_reject)

        result = await refunds.process("admin-1", refund.id)

        assert result.status == RefundStatus.REJECTED.value
        stored = await fetch_one(store, RefundRequestModel, id=refund.id)
        assert stored.status == RefundStatus.REJECTED.value
        assert stored.processed_by == "admin-2"
        assert stored.gateway_refund_id == "rfnd_test1"
        assert "went through after the request was rejected" in stored.admin_notes
        # The money did leave, so the payment still reflects it.
        assert (await fetch_one(store, PaymentHistoryModel, id=payment.id)).status == PaymentStatus.REFUNDED.value

    async def test_mark_processed_records_manual_refund(self, refunds, store, pending_purchase_refund, gateway_api):
        refund, purchase, _ = pending_purchase_refund

        marked = await refunds.apply_action(
            "admin-1",
            AdminRefundActionRequest(
                refund_id=refund.id,
                action=RefundAction.MARK_PROCESSED,
                gateway_refund_id="rfnd_manual",
            ),
        )

        assert marked.status == RefundStatus.PROCESSED.value
        assert marked.gateway_refund_id == "rfnd_manual"
        assert gateway_api.requests == []
        assert (await fetch_one(store, PurchaseModel, id=purchase.id)).status == PurchaseStatus.REFUNDED.value

    async def test_unknown_refund(self, refunds, catalog):
        with pytest.raises(NotFoundError):
            await refunds.approve("admin-1", uuid4())

    async def test_missing_gateway_payment_needs_manual_refund(self, refunds, store, catalog, clock):
        subscription = await add_subscription(store, "user-1", catalog.basic, clock.now)
        refund = await add_rows(
            store,
            RefundRequestModel(
                user_id="user-1",
                subscription_id=subscription.id,
                amount=Decimal("299.00"),
                reason="Charged twice",
            ),
        )

        with pytest.raises(InvalidStateError) as exc_info:
            await refunds.process("admin-1", refund.id)

        assert exc_info.value.details["manual_refund_required"] is True
        stored = await fetch_one(store, RefundRequestModel, id=refund.id)
        assert stored.status == RefundStatus.APPROVED.value
        assert "refund manually" in stored.admin_notes


class TestInitiate:

    async def test_initiate_and_process_subscription_refund(self, refunds, store, catalog, clock):
        subscription, payment = await _paid_subscription(store, catalog, clock)

        refund = await refunds.initiate(
            "admin-1", AdminInitiateRefundRequest(payment_id="pay_s1", reason="Goodwill")
        )

        assert refund.status == RefundStatus.PROCESSED.value
        assert refund.amount == Decimal("999.00")
        assert refund.subscription_id == subscription.id
        cancelled = await fetch_one(store, SubscriptionModel, id=subscription.id)
        assert cancelled.status == SubscriptionStatus.CANCELLED.value

    async def test_initiate_without_processing(self, refunds, store, catalog, clock, gateway_api):
        await _paid_subscription(store, catalog, clock)

        refund = await refunds.initiate(
            "admin-1",
            AdminInitiateRefundRequest(
                payment_id="pay_s1", amount=Decimal("100.00"), reason="Partial", process_immediately=False
            ),
        )

        assert refund.status == RefundStatus.APPROVED.value
        assert refund.amount == Decimal("100.00")
        assert gateway_api.requests == []

        with pytest.raises(InvalidStateError):
            await refunds.initiate(
                "admin-1", AdminInitiateRefundRequest(payment_id="pay_s1", reason="Again")
            )

    async def test_initiate_more_than_paid(self, refunds, store, catalog, clock):
        await _paid_subscription(store, catalog, clock)

        with pytest.raises(InvalidAmountError):
            await refunds.initiate(
                "admin-1",
                AdminInitiateRefundRequest(payment_id="pay_s1", amount=Decimal("1500.00"), reason="Too much"),
            )

    async def test_initiate_unknown_payment(self, refunds, catalog):
        with pytest.raises(NotFoundError):
            await refunds.initiate(
                "admin-1", AdminInitiateRefundRequest(payment_id="pay_nope", reason="Missing")
            )


async def test_list_refunds_filters_by_status(refunds, store, catalog, clock):
    purchase, _ = await _purchase(store, catalog, clock.now)
    refund = await refunds.request_refund(
        "user-1", CreateRefundRequest(purchase_id=purchase.id, reason="Audio was corrupted")
    )

    pending = await refunds.list_refunds(RefundStatus.PENDING)
    processed = await refunds.list_refunds(RefundStatus.PROCESSED)

    assert [row.id for row in pending] == [refund.id]
    assert processed == []

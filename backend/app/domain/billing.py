"""
Billing Domain Models

Domain models for payments, subscriptions and refunds following Clean Architecture.
Enums, DTOs, and read models for the billing bounded context.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator


class SubscriptionStatus(str, Enum):
    """Subscription lifecycle status."""
    ACTIVE = "active"
    PENDING_DOWNGRADE = "pending_downgrade"
    PAUSED = "paused"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


# Statuses that grant content access. At most one per user.
GRANT_ACCESS_STATUSES = (
    SubscriptionStatus.ACTIVE,
    SubscriptionStatus.PENDING_DOWNGRADE,
)


class PurchaseStatus(str, Enum):
    """Per-item purchase status."""
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class MerchOrderStatus(str, Enum):
    """Merchandise order fulfilment status."""
    PENDING = "pending"
    PAID = "paid"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    """Status of a payment history entry."""
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class PaymentType(str, Enum):
    """What a payment history entry paid for."""
    SUBSCRIPTION = "subscription"
    UPGRADE = "upgrade"
    DOWNGRADE = "downgrade"
    PURCHASE = "purchase"
    PLAYLIST = "playlist"
    MERCH = "merch"
    SUBSCRIPTION_RENEWAL = "subscription_renewal"
    INVOICE = "invoice"
    CANCELLATION = "cancellation"
    REACTIVATION = "reactivation"


class RefType(str, Enum):
    """Entity a payment history entry refers to."""
    SUBSCRIPTION = "subscription"
    PURCHASE = "purchase"
    MERCH_ORDER = "merch_order"


class RefundStatus(str, Enum):
    """Refund request workflow status."""
    PENDING = "pending"
    APPROVED = "approved"
    PROCESSED = "processed"
    REJECTED = "rejected"


OPEN_REFUND_STATUSES = (RefundStatus.PENDING, RefundStatus.APPROVED)


class RefundAction(str, Enum):
    """Admin actions on a refund request."""
    APPROVE = "approve"
    PROCESS = "process"
    REJECT = "reject"
    MARK_PROCESSED = "mark_processed"


class OrderIntent(str, Enum):
    """What the client is trying to pay for."""
    PURCHASE = "purchase"
    SUBSCRIPTION_NEW = "subscription-new"
    SUBSCRIPTION_UPGRADE = "subscription-upgrade"
    SUBSCRIPTION_DOWNGRADE = "subscription-downgrade"
    PLAYLIST = "playlist"
    MERCH = "merch"


class PlanInterval(str, Enum):
    """Billing interval of a pricing plan."""
    MONTH = "month"
    YEAR = "year"


class UserRole(str, Enum):
    """Platform role of a user."""
    USER = "user"
    ADMIN = "admin"


class WebhookOutcome(str, Enum):
    """Result of reconciling one webhook delivery."""
    PROCESSED = "processed"
    IGNORED = "ignored"
    FAILED = "failed"


# =============================================================================
# Request DTOs
# =============================================================================

class MerchLineItem(BaseModel):
    """A single merchandise line in an order request."""
    merch_item_id: UUID
    quantity: int = Field(default=1, ge=1, le=100)


class ShippingAddress(BaseModel):
    """Shipping details for merchandise orders."""
    name: str = Field(..., min_length=1, max_length=200)
    phone: str = Field(..., min_length=5, max_length=20)
    address: str = Field(..., min_length=1, max_length=500)
    city: str = Field(..., min_length=1, max_length=100)
    state: str = Field(..., min_length=1, max_length=100)
    postal_code: str = Field(..., min_length=3, max_length=12)


class CreateOrderRequest(BaseModel):
    """Request DTO for creating a payable order."""
    intent: OrderIntent
    target_id: Optional[UUID] = Field(
        default=None,
        validation_alias=AliasChoices("target_id", "targetId", "plan_id", "podcast_id", "playlist_id"),
        description="Plan, podcast or playlist being paid for",
    )
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    items: Optional[list[MerchLineItem]] = None
    shipping: Optional[ShippingAddress] = None

    @model_validator(mode="after")
    def check_target(self) -> "CreateOrderRequest":
        if self.intent == OrderIntent.MERCH:
            if not self.items:
                raise ValueError("items are required for merch orders")
            if self.shipping is None:
                raise ValueError("shipping is required for merch orders")
        elif self.target_id is None:
            raise ValueError(f"target_id is required for {self.intent.value} orders")
        return self


class VerifyPaymentRequest(BaseModel):
    """Client-submitted payment confirmation."""
    order_id: str = Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices("order_id", "razorpay_order_id", "orderId"),
    )
    payment_id: str = Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices("payment_id", "razorpay_payment_id", "paymentId"),
    )
    signature: str = Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices("signature", "razorpay_signature"),
    )
    intent: Optional[OrderIntent] = None
    target_id: Optional[UUID] = Field(
        default=None,
        validation_alias=AliasChoices("target_id", "targetId", "plan_id"),
    )


class CreateRefundRequest(BaseModel):
    """User refund request for a subscription or a purchase."""
    subscription_id: Optional[UUID] = None
    purchase_id: Optional[UUID] = None
    reason: str = Field(..., min_length=1, max_length=1000)


class AdminRefundActionRequest(BaseModel):
    """Admin action on an existing refund request."""
    refund_id: UUID = Field(
        ...,
        validation_alias=AliasChoices("refund_id", "refundId", "id"),
    )
    action: RefundAction
    admin_notes: Optional[str] = Field(
        default=None,
        max_length=1000,
        validation_alias=AliasChoices("admin_notes", "adminNotes", "notes"),
    )
    gateway_refund_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("gateway_refund_id", "razorpay_refund_id"),
    )


class AdminInitiateRefundRequest(BaseModel):
    """Admin-created refund for any completed payment."""
    payment_id: str = Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices("payment_id", "razorpay_payment_id"),
    )
    amount: Optional[Decimal] = Field(default=None, gt=0, max_digits=10, decimal_places=2)
    reason: str = Field(..., min_length=1, max_length=1000)
    process_immediately: bool = True


class CancelSubscriptionRequest(BaseModel):
    """Request DTO for cancelling the current subscription."""
    immediate: bool = False
    reason: Optional[str] = Field(default=None, max_length=1000)


# =============================================================================
# Response DTOs
# =============================================================================

class OrderResponse(BaseModel):
    """
    Result of order creation.

    requires_payment=False means the change was applied without a charge
    (free plan, zero-cost upgrade, scheduled downgrade).
    """
    requires_payment: bool
    intent: OrderIntent
    order_id: Optional[str] = None
    amount: int = Field(default=0, description="Amount in minor currency units")
    currency: str
    key_id: Optional[str] = None
    entity_id: Optional[str] = None
    credit: Optional[Decimal] = None
    effective_date: Optional[datetime] = None
    message: Optional[str] = None


class VerifyPaymentResponse(BaseModel):
    """Result of client-side payment verification."""
    success: bool = True
    already_processed: bool = False
    intent: Optional[OrderIntent] = None
    payment_status: PaymentStatus
    entity_type: Optional[RefType] = None
    entity_id: Optional[str] = None
    message: Optional[str] = None


class SubscriptionRead(BaseModel):
    """Read model for a subscription."""
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: str
    plan_id: UUID
    status: SubscriptionStatus
    amount: Decimal
    currency: str
    current_period_start: datetime
    current_period_end: datetime
    pending_plan_id: Optional[UUID] = None
    cancel_at_period_end: bool = False
    cancelled_at: Optional[datetime] = None


class CancelSubscriptionResponse(BaseModel):
    """Result of a cancellation, with refund eligibility."""
    subscription: SubscriptionRead
    refund_eligible: bool
    days_elapsed: int
    message: str


class RefundRead(BaseModel):
    """Read model for a refund request."""
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: str
    subscription_id: Optional[UUID] = None
    purchase_id: Optional[UUID] = None
    payment_history_id: Optional[UUID] = None
    amount: Decimal
    currency: str
    reason: str
    status: RefundStatus
    gateway_refund_id: Optional[str] = None
    processed_by: Optional[str] = None
    processed_at: Optional[datetime] = None
    admin_notes: Optional[str] = None
    created_at: datetime

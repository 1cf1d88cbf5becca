"""Enum definitions for claim, payment and chat state."""

from enum import Enum


class ClaimStatus(str, Enum):
    """
    Claim lifecycle status.

    pending -> accepted -> paid -> shipped -> delivered
    pending -> rejected (terminal for payment, still chattable)
    """

    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    PAID = "paid"
    SHIPPED = "shipped"
    DELIVERED = "delivered"


class ClaimActor(str, Enum):
    """Who is attempting a claim status transition."""

    ITEM_OWNER = "item_owner"
    CLAIMER = "claimer"
    SETTLEMENT = "settlement"


class PaymentStatus(str, Enum):
    """
    Payment record status.

    canceled: intent superseded by renegotiation or compensated after failure
    refund_due: funds captured for a claim another payment already settled
    """

    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELED = "canceled"
    REFUND_DUE = "refund_due"


class SettlementOutcome(str, Enum):
    """Outcome reported by the payment processor for an intent."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"


class ShippingDetailStatus(str, Enum):
    PENDING = "pending"
    SHIPPED = "shipped"
    DELIVERED = "delivered"


class PaymentReadiness(str, Enum):
    """Distinct payment UI states for a claim."""

    READY = "ready"
    CANNOT_PAY = "cannot_pay"
    PROCESSING = "processing"
    FAILED = "failed"
    PAID = "paid"


class RealtimeEventType(str, Enum):
    """Event types carried over the message bus and websockets."""

    SUBSCRIBED = "subscribed"
    MESSAGE = "message"
    READ_RECEIPT = "read_receipt"
    COUNT_UPDATE = "count_update"
    CLAIM_STATUS = "claim_status"

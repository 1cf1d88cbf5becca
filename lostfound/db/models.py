"""SQLAlchemy ORM models for items, claims, chat and settlement."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from lostfound.db.base import Base
from lostfound.db.enums import ClaimStatus, PaymentStatus, ShippingDetailStatus


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


_CLAIM_STATUS_VALUES = ", ".join(f"'{s.value}'" for s in ClaimStatus)
_PAYMENT_STATUS_VALUES = ", ".join(f"'{s.value}'" for s in PaymentStatus)


# =============================================================================
# Users
# =============================================================================

class User(Base):
    """
    Minimal user record.

    Profiles and credentials are managed by the external identity
    service; this table only anchors ownership and session revocation.
    """
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    display_name: Mapped[str] = mapped_column(String(100), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    token_version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=_utcnow, nullable=False)

    payout_account: Mapped["PayoutAccount | None"] = relationship(
        back_populates="user", uselist=False
    )


# =============================================================================
# Items & Claims
# =============================================================================

class Item(Base):
    """
    A reported item. The owner (finder) receives shipping payments.

    owner_user_id is nullable: unauthenticated finders may report items.
    """
    __tablename__ = "items"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    owner_user_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True
    )
    title: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_claimed: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default=text("false"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        default=_utcnow, onupdate=_utcnow, nullable=False
    )

    owner: Mapped["User | None"] = relationship()
    claims: Mapped[list["Claim"]] = relationship(
        back_populates="item", cascade="all, delete-orphan", passive_deletes=True
    )
    shipping_configs: Mapped[list["ShippingConfig"]] = relationship(
        back_populates="item", cascade="all, delete-orphan", passive_deletes=True
    )


class Claim(Base):
    """
    A claimer's assertion of ownership over an item.

    room_id is the only handle into the chat channel: unique, immutable,
    never reused. Status is mutated only by claim_status_service.
    """
    __tablename__ = "claims"
    __table_args__ = (
        CheckConstraint(f"status IN ({_CLAIM_STATUS_VALUES})", name="ck_claims_status"),
        Index("idx_claims_item_status", "item_id", "status"),
        Index("idx_claims_claimer_email", "claimer_email"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    item_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("items.id", ondelete="CASCADE"), nullable=False
    )
    claimer_user_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True
    )
    claimer_name: Mapped[str] = mapped_column(String(100), nullable=False)
    claimer_email: Mapped[str] = mapped_column(String(255), nullable=False)
    claimer_phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    room_id: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), default=ClaimStatus.PENDING.value, nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        default=_utcnow, onupdate=_utcnow, nullable=False
    )

    item: Mapped["Item"] = relationship(back_populates="claims")
    messages: Mapped[list["ChatMessage"]] = relationship(
        back_populates="claim",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="ChatMessage.created_at",
    )
    payments: Mapped[list["Payment"]] = relationship(
        back_populates="claim", cascade="all, delete-orphan", passive_deletes=True
    )


class ChatMessage(Base):
    """
    Durable chat log entry for a claim room.

    Append-only: only is_read changes, and only by a non-sender participant.
    """
    __tablename__ = "chat_messages"
    __table_args__ = (
        Index("idx_chat_room_created", "room_id", "created_at"),
        Index("idx_chat_room_unread", "room_id", "is_read"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True)
    room_id: Mapped[str] = mapped_column(
        String(100), ForeignKey("claims.room_id", ondelete="CASCADE"), nullable=False
    )
    sender_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    sender_name: Mapped[str] = mapped_column(String(100), nullable=False)
    sender_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    is_read: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default=text("false"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(default=_utcnow, nullable=False)

    claim: Mapped["Claim"] = relationship(back_populates="messages")


# =============================================================================
# Settlement
# =============================================================================

class Payment(Base):
    """
    Shipping payment for an accepted claim.

    amount = shipping_fee + tip_amount (minor units); platform_fee_amount is
    derived from the fixed split rule at creation. Amount and fee never change
    after the external intent exists; renegotiation creates a new row.
    """
    __tablename__ = "payments"
    __table_args__ = (
        CheckConstraint(f"status IN ({_PAYMENT_STATUS_VALUES})", name="ck_payments_status"),
        CheckConstraint("amount = shipping_fee + tip_amount", name="ck_payments_amount"),
        CheckConstraint(
            "platform_fee_amount >= 0 AND platform_fee_amount <= amount",
            name="ck_payments_platform_fee",
        ),
        Index("idx_payments_claim_created", "claim_id", "created_at"),
        # At most one settled payment per claim
        Index(
            "uq_payments_claim_succeeded",
            "claim_id",
            unique=True,
            postgresql_where=text("status = 'succeeded'"),
            sqlite_where=text("status = 'succeeded'"),
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    claim_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("claims.id", ondelete="CASCADE"), nullable=False
    )
    payer_user_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    payer_email: Mapped[str] = mapped_column(String(255), nullable=False)
    recipient_user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=False
    )
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    shipping_fee: Mapped[int] = mapped_column(Integer, nullable=False)
    tip_amount: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    platform_fee_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="usd", nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), default=PaymentStatus.PENDING.value, nullable=False
    )
    external_intent_id: Mapped[str | None] = mapped_column(
        String(255), unique=True, nullable=True
    )
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        default=_utcnow, onupdate=_utcnow, nullable=False
    )

    claim: Mapped["Claim"] = relationship(back_populates="payments")
    shipping_detail: Mapped["ShippingDetail | None"] = relationship(
        back_populates="payment",
        uselist=False,
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    @property
    def transfer_amount(self) -> int:
        return self.amount - self.platform_fee_amount


class ShippingDetail(Base):
    """Shipping address and tracking for a payment."""
    __tablename__ = "shipping_details"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    payment_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("payments.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    address_line1: Mapped[str] = mapped_column(Text, nullable=False)
    address_line2: Mapped[str | None] = mapped_column(Text, nullable=True)
    city: Mapped[str] = mapped_column(String(100), nullable=False)
    state: Mapped[str] = mapped_column(String(100), nullable=False)
    postal_code: Mapped[str] = mapped_column(String(20), nullable=False)
    country: Mapped[str] = mapped_column(String(2), default="US", nullable=False)
    tracking_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    shipping_provider: Mapped[str | None] = mapped_column(String(100), nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), default=ShippingDetailStatus.PENDING.value, nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        default=_utcnow, onupdate=_utcnow, nullable=False
    )

    payment: Mapped["Payment"] = relationship(back_populates="shipping_detail")


class ShippingConfig(Base):
    """
    Shipping fee configuration set by an item owner.

    Scope: claim-specific, item-specific, or the owner's default
    (both claim_id and item_id null).
    """
    __tablename__ = "shipping_configs"
    __table_args__ = (
        CheckConstraint(
            "min_fee >= 0 AND min_fee <= default_fee AND default_fee <= max_fee",
            name="ck_shipping_configs_fee_bounds",
        ),
        Index("idx_shipping_configs_user", "user_id"),
        Index("uq_shipping_configs_claim", "claim_id", unique=True),
        Index("uq_shipping_configs_item", "item_id", unique=True),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    item_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("items.id", ondelete="CASCADE"), nullable=True
    )
    claim_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("claims.id", ondelete="CASCADE"), nullable=True
    )
    default_fee: Mapped[int] = mapped_column(Integer, nullable=False)
    min_fee: Mapped[int] = mapped_column(Integer, nullable=False)
    max_fee: Mapped[int] = mapped_column(Integer, nullable=False)
    allow_custom_fee: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    allow_tipping: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        default=_utcnow, onupdate=_utcnow, nullable=False
    )

    item: Mapped["Item | None"] = relationship(back_populates="shipping_configs")


class PayoutAccount(Base):
    """A finder's connected account able to receive destination transfers."""
    __tablename__ = "payout_accounts"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    external_account_id: Mapped[str | None] = mapped_column(
        String(255), unique=True, nullable=True
    )
    enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    onboarded: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    onboarding_completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        default=_utcnow, onupdate=_utcnow, nullable=False
    )

    user: Mapped["User"] = relationship(back_populates="payout_account")


class ProcessorWebhookEvent(Base):
    """Processed payment-processor webhook events (dedupe by event id)."""
    __tablename__ = "processor_webhook_events"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    provider_event_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=_utcnow, nullable=False)

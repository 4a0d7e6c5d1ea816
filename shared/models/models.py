"""
shared/models/models.py
All SQLAlchemy ORM models for the Stoodioz Booking Platform.
UUID primary keys throughout. Portable column types (Uuid, JSON) so the
same metadata runs on PostgreSQL and on SQLite in tests.
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum as PyEnum
from typing import List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from config.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Enumerations ──────────────────────────────────────────────

class UserRole(str, PyEnum):
    ARTIST = "ARTIST"
    ENGINEER = "ENGINEER"
    PRODUCER = "PRODUCER"
    STOODIO = "STOODIO"


class SubscriptionTier(str, PyEnum):
    FREE = "FREE"
    ENGINEER_PLUS = "ENGINEER_PLUS"
    PRODUCER_PRO = "PRODUCER_PRO"
    STOODIO_PRO = "STOODIO_PRO"


class VerificationStatus(str, PyEnum):
    UNVERIFIED = "UNVERIFIED"
    PENDING = "PENDING"
    VERIFIED = "VERIFIED"


class SmokingPolicy(str, PyEnum):
    NON_SMOKING = "NON_SMOKING"
    SMOKING_ALLOWED = "SMOKING_ALLOWED"


class BookingStatus(str, PyEnum):
    PENDING = "PENDING"                    # Open job, any engineer may accept
    PENDING_APPROVAL = "PENDING_APPROVAL"  # Awaiting a specific engineer
    CONFIRMED = "CONFIRMED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class BookingRequestType(str, PyEnum):
    FIND_AVAILABLE = "FIND_AVAILABLE"
    SPECIFIC_ENGINEER = "SPECIFIC_ENGINEER"
    BRING_YOUR_OWN = "BRING_YOUR_OWN"


class TransactionCategory(str, PyEnum):
    SESSION_PAYMENT = "SESSION_PAYMENT"
    SESSION_PAYOUT = "SESSION_PAYOUT"
    REFUND = "REFUND"
    TIP_PAYMENT = "TIP_PAYMENT"
    TIP_PAYOUT = "TIP_PAYOUT"
    ADD_FUNDS = "ADD_FUNDS"
    WITHDRAWAL = "WITHDRAWAL"


class TransactionStatus(str, PyEnum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"


class MessageType(str, PyEnum):
    TEXT = "TEXT"
    SYSTEM = "SYSTEM"
    LINK = "LINK"


class NotificationType(str, PyEnum):
    BOOKING_REQUEST = "BOOKING_REQUEST"
    BOOKING_CONFIRMED = "BOOKING_CONFIRMED"
    BOOKING_DENIED = "BOOKING_DENIED"
    BOOKING_CANCELLED = "BOOKING_CANCELLED"
    BOOKING_COMPLETED = "BOOKING_COMPLETED"
    NEW_TIP = "NEW_TIP"
    WALLET_UPDATE = "WALLET_UPDATE"
    GENERAL = "GENERAL"


class PaymentPurpose(str, PyEnum):
    WALLET_TOPUP = "WALLET_TOPUP"
    SUBSCRIPTION = "SUBSCRIPTION"


class PaymentStatus(str, PyEnum):
    PENDING = "PENDING"
    PAID = "PAID"
    EXPIRED = "EXPIRED"


# ── Mixins ────────────────────────────────────────────────────

class TimestampMixin:
    """Adds created_at and updated_at to any model."""
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow, server_default=func.now(),
        onupdate=utcnow,
        nullable=False,
    )


# ── Accounts ──────────────────────────────────────────────────

class User(TimestampMixin, Base):
    """Marketplace account. One role per account; the wallet lives here."""
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    avatar_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    role: Mapped[UserRole] = mapped_column(Enum(UserRole), nullable=False, default=UserRole.ARTIST)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Cached running total of this user's transactions
    wallet_balance: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), default=Decimal("0.00"), nullable=False
    )

    subscription_tier: Mapped[SubscriptionTier] = mapped_column(
        Enum(SubscriptionTier), default=SubscriptionTier.FREE, nullable=False
    )
    subscription_status: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    stripe_customer_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    engineer_profile: Mapped[Optional["EngineerProfile"]] = relationship(
        back_populates="user", uselist=False
    )
    producer_profile: Mapped[Optional["ProducerProfile"]] = relationship(
        back_populates="user", uselist=False
    )
    refresh_tokens: Mapped[List["RefreshToken"]] = relationship(back_populates="user")
    transactions: Mapped[List["Transaction"]] = relationship(
        back_populates="user", foreign_keys="Transaction.user_id"
    )

    __table_args__ = (
        Index("ix_users_role", "role"),
        Index("ix_users_stripe_customer", "stripe_customer_id"),
    )

    def __repr__(self) -> str:
        return f"<User {self.email} ({self.role})>"


class RefreshToken(Base):
    """Refresh tokens stored for rotation and revocation."""
    __tablename__ = "refresh_tokens"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    token_hash: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    is_revoked: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
    user_agent: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    ip_address: Mapped[Optional[str]] = mapped_column(String(45), nullable=True)

    user: Mapped["User"] = relationship(back_populates="refresh_tokens")

    __table_args__ = (Index("ix_refresh_tokens_user_id", "user_id"),)


class EngineerProfile(TimestampMixin, Base):
    """Audio engineer's professional profile (one-to-one with User)."""
    __tablename__ = "engineer_profiles"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    bio: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    specialties: Mapped[list] = mapped_column(JSON, default=list)
    is_available: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    minimum_pay_rate: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0.00"))

    user: Mapped["User"] = relationship(back_populates="engineer_profile")

    __table_args__ = (Index("ix_engineer_profiles_available", "is_available"),)


class ProducerProfile(TimestampMixin, Base):
    """Producer's profile. pull_up_price is charged when a producer joins a session."""
    __tablename__ = "producer_profiles"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    bio: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    genres: Mapped[list] = mapped_column(JSON, default=list)
    is_available: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    pull_up_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)

    user: Mapped["User"] = relationship(back_populates="producer_profile")


# ── Catalogue ─────────────────────────────────────────────────

class Stoodio(TimestampMixin, Base):
    """A recording studio listing, owned by a STOODIO account."""
    __tablename__ = "stoodioz"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    owner_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    location: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    hourly_rate: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    engineer_pay_rate: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    amenities: Mapped[list] = mapped_column(JSON, default=list)
    verification_status: Mapped[VerificationStatus] = mapped_column(
        Enum(VerificationStatus), default=VerificationStatus.UNVERIFIED, nullable=False
    )

    owner: Mapped["User"] = relationship()
    rooms: Mapped[List["Room"]] = relationship(back_populates="stoodio", order_by="Room.created_at")

    __table_args__ = (Index("ix_stoodioz_owner_id", "owner_id"),)


class Room(TimestampMixin, Base):
    """Bookable room inside a stoodio. Its hourly_rate overrides the stoodio's base rate."""
    __tablename__ = "rooms"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    stoodio_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("stoodioz.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    hourly_rate: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    smoking_policy: Mapped[SmokingPolicy] = mapped_column(
        Enum(SmokingPolicy), default=SmokingPolicy.NON_SMOKING, nullable=False
    )

    stoodio: Mapped["Stoodio"] = relationship(back_populates="rooms")


# ── Bookings ──────────────────────────────────────────────────

class Booking(TimestampMixin, Base):
    """
    Reserved session combining a stoodio room, an optional engineer/producer
    and a payer. Never deleted: cancellation is a status change.
    Status transitions: PENDING ⇄ PENDING_APPROVAL → CONFIRMED → COMPLETED | CANCELLED
    """
    __tablename__ = "bookings"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    booking_number: Mapped[str] = mapped_column(String(20), unique=True, nullable=False)

    # Schedule
    starts_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    duration_hrs: Mapped[Decimal] = mapped_column(Numeric(4, 1), nullable=False)

    # Parties
    stoodio_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("stoodioz.id"), nullable=False)
    room_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, ForeignKey("rooms.id"), nullable=True)
    engineer_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, ForeignKey("users.id"), nullable=True)
    producer_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, ForeignKey("users.id"), nullable=True)
    artist_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, ForeignKey("users.id"), nullable=True)
    requested_engineer_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=True
    )
    booked_by_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False)
    booked_by_role: Mapped[UserRole] = mapped_column(Enum(UserRole), nullable=False)
    posted_by: Mapped[Optional[UserRole]] = mapped_column(Enum(UserRole), nullable=True)

    # Status
    status: Mapped[BookingStatus] = mapped_column(Enum(BookingStatus), nullable=False)
    request_type: Mapped[BookingRequestType] = mapped_column(Enum(BookingRequestType), nullable=False)

    # Pricing
    engineer_pay_rate: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0.00"))
    stoodio_cost: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0.00"))
    engineer_fee: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0.00"))
    service_fee: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0.00"))
    pull_up_fee: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0.00"))
    total_cost: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    tip: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)

    # Extras
    mixing_details: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    instrumentals_purchased: Mapped[list] = mapped_column(JSON, default=list)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Cancellation
    refund_percentage: Mapped[Optional[Decimal]] = mapped_column(Numeric(4, 2), nullable=True)
    refund_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)

    # Timestamps
    confirmed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    stoodio: Mapped["Stoodio"] = relationship()
    room: Mapped[Optional["Room"]] = relationship()
    audit_logs: Mapped[List["BookingAuditLog"]] = relationship(
        back_populates="booking", order_by="BookingAuditLog.created_at"
    )

    __table_args__ = (
        Index("ix_bookings_booked_by_id", "booked_by_id"),
        Index("ix_bookings_engineer_id", "engineer_id"),
        Index("ix_bookings_stoodio_id", "stoodio_id"),
        Index("ix_bookings_status", "status"),
        Index("ix_bookings_starts_at", "starts_at"),
        CheckConstraint("total_cost >= 0", name="ck_booking_total_non_negative"),
    )

    @property
    def participant_ids(self) -> set:
        """Users attached to the session (stoodio owner is resolved separately)."""
        return {
            uid
            for uid in (self.booked_by_id, self.engineer_id, self.producer_id, self.artist_id)
            if uid is not None
        }


class BookingAuditLog(Base):
    """Immutable log of all booking status transitions."""
    __tablename__ = "booking_audit_logs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    booking_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("bookings.id"), nullable=False)
    from_status: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    to_status: Mapped[str] = mapped_column(String(30), nullable=False)
    changed_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=True
    )
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    audit_metadata: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )

    booking: Mapped["Booking"] = relationship(back_populates="audit_logs")


# ── Wallet Ledger ─────────────────────────────────────────────

class Transaction(Base):
    """
    Append-only wallet ledger entry. Negative amount = debit.
    Only status/settled_at ever change (PENDING → COMPLETED on settlement).
    """
    __tablename__ = "transactions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False)
    description: Mapped[str] = mapped_column(String(255), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    category: Mapped[TransactionCategory] = mapped_column(Enum(TransactionCategory), nullable=False)
    status: Mapped[TransactionStatus] = mapped_column(
        Enum(TransactionStatus), default=TransactionStatus.COMPLETED, nullable=False
    )
    related_booking_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("bookings.id"), nullable=True
    )
    related_user_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    settled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    user: Mapped["User"] = relationship(back_populates="transactions", foreign_keys=[user_id])

    __table_args__ = (
        Index("ix_transactions_user_id_created", "user_id", "created_at"),
        Index("ix_transactions_status", "status"),
        Index("ix_transactions_booking", "related_booking_id"),
    )


# ── Messaging ─────────────────────────────────────────────────

class Conversation(TimestampMixin, Base):
    """Chat thread. booking_id is set for the group chat of a confirmed session."""
    __tablename__ = "conversations"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    title: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    booking_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("bookings.id"), unique=True, nullable=True
    )

    participants: Mapped[List["ConversationParticipant"]] = relationship(
        back_populates="conversation", cascade="all, delete-orphan"
    )
    messages: Mapped[List["Message"]] = relationship(
        back_populates="conversation", order_by="Message.created_at"
    )


class ConversationParticipant(Base):
    __tablename__ = "conversation_participants"

    conversation_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("conversations.id", ondelete="CASCADE"), primary_key=True
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    joined_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )

    conversation: Mapped["Conversation"] = relationship(back_populates="participants")

    __table_args__ = (Index("ix_conversation_participants_user", "user_id"),)


class Message(Base):
    __tablename__ = "messages"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    conversation_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False
    )
    sender_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=True
    )  # None for system messages
    text: Mapped[str] = mapped_column(Text, nullable=False)
    type: Mapped[MessageType] = mapped_column(Enum(MessageType), default=MessageType.TEXT)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )

    conversation: Mapped["Conversation"] = relationship(back_populates="messages")

    __table_args__ = (Index("ix_messages_conversation_created", "conversation_id", "created_at"),)


# ── Notifications ─────────────────────────────────────────────

class Notification(TimestampMixin, Base):
    """In-app notification. Pushed over realtime; booking types also emailed."""
    __tablename__ = "notifications"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False)
    actor_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, ForeignKey("users.id"), nullable=True)
    booking_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("bookings.id"), nullable=True
    )
    type: Mapped[NotificationType] = mapped_column(Enum(NotificationType), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    link: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)  # {"view": ..., "entity_id": ...}
    is_read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    read_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    sent_email: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    __table_args__ = (Index("ix_notifications_user_id_read", "user_id", "is_read"),)


# ── Payments ──────────────────────────────────────────────────

class Payment(TimestampMixin, Base):
    """Stripe Checkout record for wallet top-ups and subscriptions."""
    __tablename__ = "payments"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False)
    purpose: Mapped[PaymentPurpose] = mapped_column(Enum(PaymentPurpose), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="usd")
    status: Mapped[PaymentStatus] = mapped_column(
        Enum(PaymentStatus), default=PaymentStatus.PENDING, nullable=False
    )
    stripe_session_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    requested_tier: Mapped[Optional[SubscriptionTier]] = mapped_column(
        Enum(SubscriptionTier), nullable=True
    )
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        Index("ix_payments_user_id", "user_id"),
        Index("ix_payments_stripe_session", "stripe_session_id"),
    )

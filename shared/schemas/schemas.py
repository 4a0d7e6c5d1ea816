"""
shared/schemas/schemas.py
All Pydantic v2 request/response schemas for the platform.
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator


# ── Base ──────────────────────────────────────────────────────

class BaseSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class PaginatedResponse(BaseSchema):
    items: List[Any]
    total: int
    page: int
    page_size: int
    pages: int


# ── Auth ──────────────────────────────────────────────────────

class RegisterRequest(BaseSchema):
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=72)
    name: str = Field(..., min_length=2, max_length=255)
    role: Literal["ARTIST", "ENGINEER", "PRODUCER", "STOODIO"] = "ARTIST"


class LoginRequest(BaseSchema):
    email: EmailStr
    password: str


class RefreshRequest(BaseSchema):
    refresh_token: Optional[str] = None


class TokenResponse(BaseSchema):
    access_token: str
    refresh_token: Optional[str] = None
    token_type: str = "bearer"
    expires_in: int  # seconds


class AuthResponse(BaseSchema):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int
    user: "UserResponse"


# ── User ──────────────────────────────────────────────────────

class UserResponse(BaseSchema):
    id: uuid.UUID
    email: EmailStr
    name: str
    avatar_url: Optional[str] = None
    role: str
    wallet_balance: Decimal
    subscription_tier: str
    subscription_status: Optional[str] = None
    created_at: datetime


class UserUpdateRequest(BaseSchema):
    name: Optional[str] = Field(None, min_length=2, max_length=255)
    avatar_url: Optional[str] = Field(None, max_length=2000)


class EngineerProfileUpdate(BaseSchema):
    bio: Optional[str] = Field(None, max_length=2000)
    specialties: Optional[List[str]] = None
    is_available: Optional[bool] = None
    minimum_pay_rate: Optional[Decimal] = Field(None, ge=0)


class EngineerProfileResponse(BaseSchema):
    id: uuid.UUID
    user_id: uuid.UUID
    bio: Optional[str]
    specialties: List[str]
    is_available: bool
    minimum_pay_rate: Decimal
    name: Optional[str] = None


class ProducerProfileUpdate(BaseSchema):
    bio: Optional[str] = Field(None, max_length=2000)
    genres: Optional[List[str]] = None
    is_available: Optional[bool] = None
    pull_up_price: Optional[Decimal] = Field(None, ge=0)


class ProducerProfileResponse(BaseSchema):
    id: uuid.UUID
    user_id: uuid.UUID
    bio: Optional[str]
    genres: List[str]
    is_available: bool
    pull_up_price: Optional[Decimal]
    name: Optional[str] = None


# ── Stoodio ───────────────────────────────────────────────────

class RoomCreate(BaseSchema):
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=2000)
    hourly_rate: Decimal = Field(..., ge=0)
    smoking_policy: Literal["NON_SMOKING", "SMOKING_ALLOWED"] = "NON_SMOKING"


class RoomResponse(BaseSchema):
    id: uuid.UUID
    stoodio_id: uuid.UUID
    name: str
    description: Optional[str]
    hourly_rate: Decimal
    smoking_policy: str


class StoodioCreate(BaseSchema):
    name: str = Field(..., min_length=2, max_length=255)
    location: Optional[str] = Field(None, max_length=255)
    description: Optional[str] = Field(None, max_length=5000)
    hourly_rate: Decimal = Field(..., ge=0)
    engineer_pay_rate: Optional[Decimal] = Field(None, ge=0)
    amenities: List[str] = []


class StoodioUpdate(BaseSchema):
    name: Optional[str] = Field(None, min_length=2, max_length=255)
    location: Optional[str] = Field(None, max_length=255)
    description: Optional[str] = Field(None, max_length=5000)
    hourly_rate: Optional[Decimal] = Field(None, ge=0)
    engineer_pay_rate: Optional[Decimal] = Field(None, ge=0)
    amenities: Optional[List[str]] = None


class StoodioResponse(BaseSchema):
    id: uuid.UUID
    owner_id: uuid.UUID
    name: str
    location: Optional[str]
    description: Optional[str]
    hourly_rate: Decimal
    engineer_pay_rate: Optional[Decimal]
    amenities: List[str]
    verification_status: str
    rooms: List[RoomResponse] = []


# ── Booking ───────────────────────────────────────────────────

class BookingCreateRequest(BaseSchema):
    stoodio_id: uuid.UUID
    room_id: Optional[uuid.UUID] = None
    starts_at: datetime
    duration_hrs: Decimal = Field(..., gt=0, le=24)
    request_type: Literal["FIND_AVAILABLE", "SPECIFIC_ENGINEER", "BRING_YOUR_OWN"]
    requested_engineer_id: Optional[uuid.UUID] = None
    producer_id: Optional[uuid.UUID] = None
    engineer_pay_rate: Optional[Decimal] = Field(None, ge=0)
    mixing_details: Optional[Dict[str, Any]] = None
    instrumentals_purchased: List[str] = []
    notes: Optional[str] = Field(None, max_length=2000)

    @field_validator("starts_at")
    @classmethod
    def validate_starts_at(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            v = v.replace(tzinfo=timezone.utc)
        if v <= datetime.now(timezone.utc):
            raise ValueError("Session start must be in the future")
        return v

    @model_validator(mode="after")
    def validate_requested_engineer(self) -> "BookingCreateRequest":
        if self.request_type == "SPECIFIC_ENGINEER" and self.requested_engineer_id is None:
            raise ValueError("requested_engineer_id is required for SPECIFIC_ENGINEER requests")
        return self


class BookingResponse(BaseSchema):
    id: uuid.UUID
    booking_number: str
    starts_at: datetime
    duration_hrs: Decimal
    stoodio_id: uuid.UUID
    room_id: Optional[uuid.UUID]
    engineer_id: Optional[uuid.UUID]
    producer_id: Optional[uuid.UUID]
    artist_id: Optional[uuid.UUID]
    requested_engineer_id: Optional[uuid.UUID]
    booked_by_id: uuid.UUID
    booked_by_role: str
    posted_by: Optional[str]
    status: str
    request_type: str
    engineer_pay_rate: Decimal
    stoodio_cost: Decimal
    engineer_fee: Decimal
    service_fee: Decimal
    pull_up_fee: Decimal
    total_cost: Decimal
    tip: Optional[Decimal]
    mixing_details: Optional[Dict[str, Any]]
    instrumentals_purchased: List[str]
    notes: Optional[str]
    refund_percentage: Optional[Decimal]
    refund_amount: Optional[Decimal]
    confirmed_at: Optional[datetime]
    completed_at: Optional[datetime]
    cancelled_at: Optional[datetime]
    created_at: datetime


class RefundQuoteResponse(BaseSchema):
    booking_id: uuid.UUID
    hours_until_session: int
    refund_percentage: Decimal
    refund_amount: Decimal
    cancellation_fee: Decimal
    policy_message: str


class TipRequest(BaseSchema):
    amount: Decimal = Field(..., gt=0, le=10000, decimal_places=2)


class BookingAuditLogResponse(BaseSchema):
    id: uuid.UUID
    from_status: Optional[str]
    to_status: str
    changed_by_id: Optional[uuid.UUID]
    reason: Optional[str]
    audit_metadata: Optional[Dict[str, Any]]
    created_at: datetime


# ── Wallet ────────────────────────────────────────────────────

class TransactionResponse(BaseSchema):
    id: uuid.UUID
    description: str
    amount: Decimal
    category: str
    status: str
    related_booking_id: Optional[uuid.UUID]
    related_user_id: Optional[uuid.UUID]
    created_at: datetime
    settled_at: Optional[datetime]


class WalletResponse(BaseSchema):
    user_id: uuid.UUID
    balance: Decimal
    pending_amount: Decimal


class AddFundsRequest(BaseSchema):
    amount: Decimal = Field(..., gt=0, le=10000, decimal_places=2)


class WithdrawRequest(BaseSchema):
    amount: Decimal = Field(..., gt=0, decimal_places=2)


# ── Payment ───────────────────────────────────────────────────

class SubscriptionCheckoutRequest(BaseSchema):
    tier: Literal["ENGINEER_PLUS", "PRODUCER_PRO", "STOODIO_PRO"]


class CheckoutSessionResponse(BaseSchema):
    payment_id: uuid.UUID
    checkout_url: str
    stripe_session_id: str


class PaymentResponse(BaseSchema):
    id: uuid.UUID
    purpose: str
    amount: Decimal
    currency: str
    status: str
    requested_tier: Optional[str]
    paid_at: Optional[datetime]
    created_at: datetime


# ── Messaging ─────────────────────────────────────────────────

class ConversationCreateRequest(BaseSchema):
    user_id: uuid.UUID


class MessageCreateRequest(BaseSchema):
    text: str = Field(..., min_length=1, max_length=5000)
    type: Literal["TEXT", "LINK"] = "TEXT"


class MessageResponse(BaseSchema):
    id: uuid.UUID
    conversation_id: uuid.UUID
    sender_id: Optional[uuid.UUID]
    text: str
    type: str
    created_at: datetime


class ConversationResponse(BaseSchema):
    id: uuid.UUID
    title: Optional[str]
    booking_id: Optional[uuid.UUID]
    participant_ids: List[uuid.UUID]
    last_message: Optional[MessageResponse] = None
    created_at: datetime


class ConversationDetailResponse(ConversationResponse):
    messages: List[MessageResponse] = []


class SmartRepliesResponse(BaseSchema):
    replies: List[str]


# ── Notification ──────────────────────────────────────────────

class NotificationResponse(BaseSchema):
    id: uuid.UUID
    type: str
    message: str
    link: Optional[Dict[str, Any]]
    is_read: bool
    read_at: Optional[datetime]
    booking_id: Optional[uuid.UUID]
    actor_id: Optional[uuid.UUID]
    created_at: datetime


# ── Assistant ─────────────────────────────────────────────────

class AssistantTurn(BaseSchema):
    role: Literal["user", "assistant"]
    content: str = Field(..., max_length=4000)


class AssistantCommandRequest(BaseSchema):
    message: str = Field(..., min_length=1, max_length=2000)
    history: List[AssistantTurn] = Field(default_factory=list, max_length=20)


class AssistantAction(BaseSchema):
    type: Literal["navigate", "create_document", "find_studios", "assist_signup", "speak"]
    target: Optional[str] = None
    value: Optional[Any] = None
    text: str


# ── Generic ───────────────────────────────────────────────────

class StatusMessage(BaseSchema):
    message: str
    success: bool = True


class ErrorResponse(BaseSchema):
    detail: str
    code: Optional[str] = None


AuthResponse.model_rebuild()

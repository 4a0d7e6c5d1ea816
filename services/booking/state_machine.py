"""
services/booking/state_machine.py
Legal booking transitions, actor guards and the cancellation refund policy.

    PENDING ──accept──▶ CONFIRMED ──complete──▶ COMPLETED
    CONFIRMED (bring your own) ──complete by owner──▶ COMPLETED
    PENDING_APPROVAL ──accept──▶ CONFIRMED
    PENDING_APPROVAL ──deny──▶ PENDING
    any non-terminal ──cancel──▶ CANCELLED

Guards only inspect; they never mutate. Every rejection is an InvalidTransition.
"""

import math
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, FrozenSet, Optional
from uuid import UUID

from config.settings import settings
from services.wallet.ledger import to_money
from shared.models.models import (
    Booking,
    BookingStatus,
    SubscriptionTier,
    User,
    UserRole,
)
from shared.utils.exceptions import InvalidTransition, SubscriptionRequired

TERMINAL: FrozenSet[BookingStatus] = frozenset({BookingStatus.COMPLETED, BookingStatus.CANCELLED})

# action → (allowed source states, target state)
TRANSITIONS: Dict[str, tuple] = {
    "accept": (
        frozenset({BookingStatus.PENDING, BookingStatus.PENDING_APPROVAL}),
        BookingStatus.CONFIRMED,
    ),
    "deny": (frozenset({BookingStatus.PENDING_APPROVAL}), BookingStatus.PENDING),
    "cancel": (
        frozenset({BookingStatus.PENDING, BookingStatus.PENDING_APPROVAL, BookingStatus.CONFIRMED}),
        BookingStatus.CANCELLED,
    ),
    "complete": (frozenset({BookingStatus.CONFIRMED}), BookingStatus.COMPLETED),
}


def target_status(action: str) -> BookingStatus:
    return TRANSITIONS[action][1]


def _status_value(booking: Booking) -> str:
    return booking.status.value if booking.status else None


def _require_state(booking: Booking, action: str) -> None:
    allowed, _ = TRANSITIONS[action]
    if booking.status not in allowed:
        raise InvalidTransition(
            _status_value(booking),
            action,
            f"allowed only from {', '.join(sorted(s.value for s in allowed))}",
        )


def check_accept(booking: Booking, actor: User) -> None:
    if actor.role != UserRole.ENGINEER:
        raise InvalidTransition(_status_value(booking), "accept", "only engineers can accept bookings")
    _require_state(booking, "accept")
    if booking.booked_by_id == actor.id:
        raise InvalidTransition(_status_value(booking), "accept", "cannot accept your own booking")
    if booking.status == BookingStatus.PENDING_APPROVAL and booking.requested_engineer_id != actor.id:
        raise InvalidTransition(
            _status_value(booking), "accept", "this request was sent to a different engineer"
        )
    if actor.subscription_tier == SubscriptionTier.FREE:
        raise SubscriptionRequired("Upgrade your plan to accept session requests")


def check_deny(booking: Booking, actor: User) -> None:
    if actor.role != UserRole.ENGINEER:
        raise InvalidTransition(_status_value(booking), "deny", "only engineers can deny bookings")
    _require_state(booking, "deny")
    if booking.requested_engineer_id != actor.id:
        raise InvalidTransition(
            _status_value(booking), "deny", "this request was sent to a different engineer"
        )


def check_cancel(booking: Booking, actor: User) -> None:
    if booking.booked_by_id != actor.id:
        raise InvalidTransition(_status_value(booking), "cancel", "only the payer can cancel")
    if booking.status in TERMINAL:
        raise InvalidTransition(_status_value(booking), "cancel", "booking is already closed")


def check_complete(booking: Booking, actor: User, stoodio_owner_id: Optional[UUID] = None) -> None:
    """Engineered sessions end with their engineer. Bring-your-own sessions end with the stoodio owner."""
    if booking.engineer_id is None:
        if stoodio_owner_id is None or stoodio_owner_id != actor.id:
            raise InvalidTransition(_status_value(booking), "complete", "only the stoodio owner can end this session")
    elif booking.engineer_id != actor.id:
        raise InvalidTransition(_status_value(booking), "complete", "only the session engineer can end it")
    _require_state(booking, "complete")


def check_tip(booking: Booking, actor: User) -> None:
    if booking.booked_by_id != actor.id:
        raise InvalidTransition(_status_value(booking), "tip", "only the payer can tip")
    if booking.status != BookingStatus.COMPLETED:
        raise InvalidTransition(_status_value(booking), "tip", "tips are allowed on completed sessions")
    if booking.engineer_id is None:
        raise InvalidTransition(_status_value(booking), "tip", "session had no engineer")
    if booking.tip is not None:
        raise InvalidTransition(_status_value(booking), "tip", "session was already tipped")


# ── Refund policy ─────────────────────────────────────────────

def hours_until(starts_at: datetime, now: Optional[datetime] = None) -> int:
    """Whole hours until the session starts, truncated toward zero."""
    now = now or datetime.now(timezone.utc)
    if starts_at.tzinfo is None:
        starts_at = starts_at.replace(tzinfo=timezone.utc)
    return math.trunc((starts_at - now).total_seconds() / 3600)


def refund_percentage(hours: int) -> Decimal:
    if hours > settings.REFUND_FULL_HOURS:
        return Decimal("1.00")
    if hours > settings.REFUND_PARTIAL_HOURS:
        return to_money(settings.REFUND_PARTIAL_RATE)
    return Decimal("0.00")


def refund_amount(total_cost, hours: int) -> Decimal:
    return to_money(Decimal(str(total_cost)) * refund_percentage(hours))


def policy_message(hours: int) -> str:
    pct = refund_percentage(hours)
    if pct == 1:
        return f"Cancelling more than {settings.REFUND_FULL_HOURS} hours ahead: full refund."
    if pct > 0:
        return (
            f"Cancelling within {settings.REFUND_FULL_HOURS} hours: "
            f"{int(pct * 100)}% refund."
        )
    return f"Cancelling within {settings.REFUND_PARTIAL_HOURS} hours: no refund."

"""
services/booking/router.py
Booking lifecycle endpoints.
States: PENDING ⇄ PENDING_APPROVAL → CONFIRMED → COMPLETED | CANCELLED
"""

from typing import Literal, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import commit, get_db
from services.booking.service import BookingService
from shared.middleware.auth import get_current_user, require_engineer
from shared.models.models import (
    Booking,
    BookingAuditLog,
    BookingStatus,
    Stoodio,
    User,
)
from shared.schemas.schemas import (
    BookingAuditLogResponse,
    BookingCreateRequest,
    BookingResponse,
    PaginatedResponse,
    RefundQuoteResponse,
    TipRequest,
)
from shared.utils.pagination import paginate

router = APIRouter(prefix="/bookings", tags=["Bookings"])


def _parse_status(status_filter: Optional[str]) -> Optional[BookingStatus]:
    if not status_filter:
        return None
    try:
        return BookingStatus(status_filter)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid status: {status_filter}")


# ── Create ────────────────────────────────────────────────────

@router.post("", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def create_booking(
    data: BookingCreateRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Book a session. The payer's wallet is charged the full total immediately;
    the initial status depends on the request type and who is booking.
    """
    booking = await BookingService(db).create(data, current_user)
    await commit(db)
    return BookingResponse.model_validate(booking)


# ── Read Endpoints ────────────────────────────────────────────

@router.get("", response_model=PaginatedResponse)
async def list_my_bookings(
    view: Literal["all", "payer", "engineer", "producer", "stoodio"] = Query("all"),
    status_filter: Optional[str] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=50),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Bookings the current user pays for, works on, produces, or hosts."""
    owned_stoodioz = select(Stoodio.id).where(Stoodio.owner_id == current_user.id)
    conditions = {
        "payer": Booking.booked_by_id == current_user.id,
        "engineer": Booking.engineer_id == current_user.id,
        "producer": Booking.producer_id == current_user.id,
        "stoodio": Booking.stoodio_id.in_(owned_stoodioz),
    }
    if view == "all":
        query = select(Booking).where(or_(*conditions.values(), Booking.artist_id == current_user.id))
    else:
        query = select(Booking).where(conditions[view])

    booking_status = _parse_status(status_filter)
    if booking_status:
        query = query.where(Booking.status == booking_status)

    query = query.order_by(Booking.starts_at.desc())
    return await paginate(db, query, page, page_size, BookingResponse)


@router.get("/jobs", response_model=PaginatedResponse)
async def list_open_jobs(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=50),
    current_user: User = Depends(require_engineer),
    db: AsyncSession = Depends(get_db),
):
    """Open PENDING sessions any engineer may accept, soonest first."""
    query = (
        select(Booking)
        .where(Booking.status == BookingStatus.PENDING, Booking.booked_by_id != current_user.id)
        .order_by(Booking.starts_at)
    )
    return await paginate(db, query, page, page_size, BookingResponse)


@router.get("/{booking_id}", response_model=BookingResponse)
async def get_booking(
    booking_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    booking = await BookingService(db).get_for_user(booking_id, current_user)
    return BookingResponse.model_validate(booking)


@router.get("/{booking_id}/audit", response_model=list[BookingAuditLogResponse])
async def get_booking_audit(
    booking_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Status history, oldest first."""
    await BookingService(db).get_for_user(booking_id, current_user)
    result = await db.execute(
        select(BookingAuditLog)
        .where(BookingAuditLog.booking_id == booking_id)
        .order_by(BookingAuditLog.created_at, BookingAuditLog.id)
    )
    return [BookingAuditLogResponse.model_validate(log) for log in result.scalars()]


@router.get("/{booking_id}/refund-quote", response_model=RefundQuoteResponse)
async def get_refund_quote(
    booking_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """What cancelling now would refund. Read-only."""
    return RefundQuoteResponse(**await BookingService(db).refund_quote(booking_id, current_user))


# ── Transitions ───────────────────────────────────────────────

@router.post("/{booking_id}/accept", response_model=BookingResponse)
async def accept_booking(
    booking_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Engineer accepts an open job or a request addressed to them. → CONFIRMED"""
    booking = await BookingService(db).accept(booking_id, current_user)
    await commit(db)
    return BookingResponse.model_validate(booking)


@router.post("/{booking_id}/deny", response_model=BookingResponse)
async def deny_booking(
    booking_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Requested engineer passes. PENDING_APPROVAL → PENDING (open job)."""
    booking = await BookingService(db).deny(booking_id, current_user)
    await commit(db)
    return BookingResponse.model_validate(booking)


@router.post("/{booking_id}/cancel", response_model=BookingResponse)
async def cancel_booking(
    booking_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Payer cancels. Refund by lead time:
    more than 48h → 100%, more than 24h → 50%, otherwise nothing.
    """
    booking = await BookingService(db).cancel(booking_id, current_user)
    await commit(db)
    return BookingResponse.model_validate(booking)


@router.post("/{booking_id}/complete", response_model=BookingResponse)
async def complete_booking(
    booking_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Engineer ends the session, or the stoodio owner when no engineer is bound. Schedules payouts."""
    booking = await BookingService(db).complete(booking_id, current_user)
    await commit(db)
    return BookingResponse.model_validate(booking)


@router.post("/{booking_id}/tip", response_model=BookingResponse)
async def tip_engineer(
    booking_id: UUID,
    data: TipRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    booking = await BookingService(db).tip(booking_id, current_user, data.amount)
    await commit(db)
    return BookingResponse.model_validate(booking)

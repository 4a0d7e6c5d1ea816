"""
services/booking/factory.py
Builds a fully priced, unsaved Booking from a create request and the acting user.

Resolution rules:
  BRING_YOUR_OWN     → CONFIRMED, no engineer, engineer fee 0
  SPECIFIC_ENGINEER  → PENDING_APPROVAL until the requested engineer accepts
  FIND_AVAILABLE     → CONFIRMED with the first available engineer, else open PENDING job
  Producer bookings  → always CONFIRMED (NoEngineerAvailable when none resolves)
  Studio job posts   → PENDING (or PENDING_APPROVAL), priced at the engineer fee only
"""

import logging
import random
import string
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from fastapi import HTTPException
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from services.wallet.ledger import to_money
from shared.models.models import (
    Booking,
    BookingRequestType,
    BookingStatus,
    EngineerProfile,
    ProducerProfile,
    Room,
    Stoodio,
    User,
    UserRole,
)
from shared.schemas.schemas import BookingCreateRequest
from shared.utils.exceptions import BookingNotPermitted, NoEngineerAvailable

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")


@dataclass(frozen=True)
class PriceBreakdown:
    stoodio_cost: Decimal
    engineer_fee: Decimal
    service_fee: Decimal
    pull_up_fee: Decimal

    @property
    def total(self) -> Decimal:
        return self.stoodio_cost + self.engineer_fee + self.service_fee + self.pull_up_fee


def calculate_price(
    hourly_rate,
    duration_hrs,
    engineer_pay_rate,
    pull_up_price=None,
    include_engineer: bool = True,
    include_stoodio: bool = True,
    service_fee_rate=None,
) -> PriceBreakdown:
    """
    stoodio_cost = hourly_rate × duration
    engineer_fee = engineer_pay_rate × duration (0 without an engineer)
    service_fee  = stoodio_cost × fee rate (the platform cut is on the studio only)
    pull_up_fee  = producer's pull-up price, flat
    """
    rate = Decimal(str(settings.SERVICE_FEE_PERCENTAGE if service_fee_rate is None else service_fee_rate))
    duration = Decimal(str(duration_hrs))

    stoodio_cost = to_money(Decimal(str(hourly_rate)) * duration) if include_stoodio else ZERO
    engineer_fee = to_money(Decimal(str(engineer_pay_rate)) * duration) if include_engineer else ZERO
    service_fee = to_money(stoodio_cost * rate)
    pull_up_fee = to_money(pull_up_price) if pull_up_price else ZERO

    return PriceBreakdown(stoodio_cost, engineer_fee, service_fee, pull_up_fee)


def generate_booking_number() -> str:
    """Human-readable booking number like SZ-2026-X7K9M."""
    year = datetime.now().year
    suffix = "".join(random.choices(string.ascii_uppercase + string.digits, k=5))
    return f"SZ-{year}-{suffix}"


class BookingFactory:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def load_stoodio(self, stoodio_id: UUID) -> Stoodio:
        stoodio = await self.db.get(Stoodio, stoodio_id)
        if not stoodio:
            raise HTTPException(status_code=404, detail="Stoodio not found")
        return stoodio

    async def _load_room(self, stoodio: Stoodio, room_id: Optional[UUID]) -> Optional[Room]:
        if room_id is None:
            return None
        room = await self.db.get(Room, room_id)
        if not room or room.stoodio_id != stoodio.id:
            raise HTTPException(status_code=404, detail="Room not found in this stoodio")
        return room

    async def _load_user_with_role(self, user_id: UUID, role: UserRole, label: str) -> User:
        user = await self.db.get(User, user_id)
        if not user or user.role != role or not user.is_active:
            raise HTTPException(status_code=404, detail=f"{label} not found")
        return user

    async def _engineer_profile(self, user_id: UUID) -> Optional[EngineerProfile]:
        result = await self.db.execute(
            select(EngineerProfile).where(EngineerProfile.user_id == user_id)
        )
        return result.scalar_one_or_none()

    async def first_available_engineer(self, exclude: Optional[UUID] = None) -> Optional[EngineerProfile]:
        """First engineer flagged available, by profile creation time."""
        query = (
            select(EngineerProfile)
            .join(User, User.id == EngineerProfile.user_id)
            .where(
                EngineerProfile.is_available.is_(True),
                User.is_active.is_(True),
                User.role == UserRole.ENGINEER,
            )
            .order_by(EngineerProfile.created_at, EngineerProfile.id)
            .limit(1)
        )
        if exclude is not None:
            query = query.where(User.id != exclude)
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    def check_permission(self, stoodio: Stoodio, actor: User, request_type: BookingRequestType) -> None:
        if actor.role != UserRole.STOODIO:
            return
        if stoodio.owner_id != actor.id:
            raise BookingNotPermitted("Stoodioz can only post jobs for their own stoodio")
        if request_type == BookingRequestType.BRING_YOUR_OWN:
            raise BookingNotPermitted("A job post needs an engineer; BRING_YOUR_OWN is not allowed")

    @staticmethod
    def resolve_pay_rate(
        requested: Optional[Decimal],
        stoodio: Stoodio,
        engineer: Optional[EngineerProfile],
    ) -> Decimal:
        if requested is not None:
            rate = Decimal(str(requested))
        elif stoodio.engineer_pay_rate is not None:
            rate = Decimal(str(stoodio.engineer_pay_rate))
        else:
            rate = Decimal(str(settings.DEFAULT_ENGINEER_PAY_RATE))
        if engineer is not None and engineer.minimum_pay_rate:
            rate = max(rate, Decimal(str(engineer.minimum_pay_rate)))
        return to_money(rate)

    async def build(self, data: BookingCreateRequest, actor: User, stoodio: Stoodio) -> Booking:
        """Return an unsaved, priced Booking. Raises before anything is written."""
        request_type = BookingRequestType(data.request_type)
        self.check_permission(stoodio, actor, request_type)
        room = await self._load_room(stoodio, data.room_id)

        is_job_post = actor.role == UserRole.STOODIO
        engineer_id = None
        requested_engineer_id = None
        engineer_profile = None

        if request_type == BookingRequestType.BRING_YOUR_OWN:
            status = BookingStatus.CONFIRMED

        elif request_type == BookingRequestType.SPECIFIC_ENGINEER:
            requested = await self._load_user_with_role(
                data.requested_engineer_id, UserRole.ENGINEER, "Engineer"
            )
            engineer_profile = await self._engineer_profile(requested.id)
            if actor.role == UserRole.PRODUCER:
                status = BookingStatus.CONFIRMED
                engineer_id = requested.id
            else:
                status = BookingStatus.PENDING_APPROVAL
                requested_engineer_id = requested.id

        else:
            engineer_profile = None if is_job_post else await self.first_available_engineer(exclude=actor.id)
            if engineer_profile is not None:
                status = BookingStatus.CONFIRMED
                engineer_id = engineer_profile.user_id
            elif actor.role == UserRole.PRODUCER:
                raise NoEngineerAvailable()
            else:
                status = BookingStatus.PENDING

        # Producer attachment
        producer_id = None
        pull_up_price = None
        if actor.role == UserRole.PRODUCER:
            producer_id = actor.id
        elif data.producer_id is not None and not is_job_post:
            producer = await self._load_user_with_role(data.producer_id, UserRole.PRODUCER, "Producer")
            producer_id = producer.id
            result = await self.db.execute(
                select(ProducerProfile.pull_up_price).where(ProducerProfile.user_id == producer.id)
            )
            pull_up_price = result.scalar_one_or_none()

        include_engineer = request_type != BookingRequestType.BRING_YOUR_OWN
        pay_rate = self.resolve_pay_rate(data.engineer_pay_rate, stoodio, engineer_profile) if include_engineer else ZERO
        hourly_rate = room.hourly_rate if room is not None else stoodio.hourly_rate
        price = calculate_price(
            hourly_rate,
            data.duration_hrs,
            pay_rate,
            pull_up_price=pull_up_price,
            include_engineer=include_engineer,
            include_stoodio=not is_job_post,
        )

        booking = Booking(
            booking_number=generate_booking_number(),
            starts_at=data.starts_at,
            duration_hrs=data.duration_hrs,
            stoodio_id=stoodio.id,
            room_id=room.id if room else None,
            engineer_id=engineer_id,
            producer_id=producer_id,
            artist_id=actor.id if actor.role == UserRole.ARTIST else None,
            requested_engineer_id=requested_engineer_id,
            booked_by_id=actor.id,
            booked_by_role=actor.role,
            posted_by=UserRole.STOODIO if is_job_post else None,
            status=status,
            request_type=request_type,
            engineer_pay_rate=pay_rate,
            stoodio_cost=price.stoodio_cost,
            engineer_fee=price.engineer_fee,
            service_fee=price.service_fee,
            pull_up_fee=price.pull_up_fee,
            total_cost=price.total,
            mixing_details=data.mixing_details,
            instrumentals_purchased=list(data.instrumentals_purchased or []),
            notes=data.notes,
        )
        logger.info(
            f"Built booking {booking.booking_number}: {request_type.value} by {actor.role.value} "
            f"→ {status.value}, total {price.total}"
        )
        return booking

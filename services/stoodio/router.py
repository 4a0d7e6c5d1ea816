"""
services/stoodio/router.py
Stoodio listings and their bookable rooms.
"""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from config.database import get_db
from shared.middleware.auth import get_current_user, require_stoodio
from shared.models.models import Room, SmokingPolicy, Stoodio, User
from shared.schemas.schemas import (
    RoomCreate,
    RoomResponse,
    StoodioCreate,
    StoodioResponse,
    StoodioUpdate,
)

router = APIRouter(prefix="/stoodioz", tags=["Stoodioz"])


async def _get_stoodio_or_404(db: AsyncSession, stoodio_id: UUID) -> Stoodio:
    result = await db.execute(
        select(Stoodio).options(selectinload(Stoodio.rooms)).where(Stoodio.id == stoodio_id)
    )
    stoodio = result.scalar_one_or_none()
    if not stoodio:
        raise HTTPException(status_code=404, detail="Stoodio not found")
    return stoodio


def _require_owner(stoodio: Stoodio, user: User) -> None:
    if stoodio.owner_id != user.id:
        raise HTTPException(status_code=403, detail="Only the owner can manage this stoodio")


@router.post("", response_model=StoodioResponse, status_code=status.HTTP_201_CREATED)
async def create_stoodio(
    data: StoodioCreate,
    current_user: User = Depends(require_stoodio),
    db: AsyncSession = Depends(get_db),
):
    stoodio = Stoodio(owner_id=current_user.id, rooms=[], **data.model_dump())
    db.add(stoodio)
    await db.commit()
    return StoodioResponse.model_validate(stoodio)


@router.get("", response_model=list[StoodioResponse])
async def list_stoodioz(
    location: Optional[str] = Query(None, max_length=255),
    max_hourly_rate: Optional[float] = Query(None, ge=0),
    owner_id: Optional[UUID] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=50),
    db: AsyncSession = Depends(get_db),
):
    """Public listing, cheapest first."""
    query = select(Stoodio).options(selectinload(Stoodio.rooms))
    if location:
        query = query.where(Stoodio.location.ilike(f"%{location}%"))
    if max_hourly_rate is not None:
        query = query.where(Stoodio.hourly_rate <= max_hourly_rate)
    if owner_id:
        query = query.where(Stoodio.owner_id == owner_id)

    query = query.order_by(Stoodio.hourly_rate, Stoodio.name).offset((page - 1) * page_size).limit(page_size)
    result = await db.execute(query)
    return [StoodioResponse.model_validate(s) for s in result.scalars()]


@router.get("/{stoodio_id}", response_model=StoodioResponse)
async def get_stoodio(stoodio_id: UUID, db: AsyncSession = Depends(get_db)):
    return StoodioResponse.model_validate(await _get_stoodio_or_404(db, stoodio_id))


@router.put("/{stoodio_id}", response_model=StoodioResponse)
async def update_stoodio(
    stoodio_id: UUID,
    data: StoodioUpdate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    stoodio = await _get_stoodio_or_404(db, stoodio_id)
    _require_owner(stoodio, current_user)

    for field, value in data.model_dump(exclude_none=True).items():
        setattr(stoodio, field, value)

    await db.commit()
    return StoodioResponse.model_validate(stoodio)


@router.post(
    "/{stoodio_id}/rooms",
    response_model=RoomResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_room(
    stoodio_id: UUID,
    data: RoomCreate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    stoodio = await _get_stoodio_or_404(db, stoodio_id)
    _require_owner(stoodio, current_user)

    room = Room(
        stoodio_id=stoodio.id,
        name=data.name,
        description=data.description,
        hourly_rate=data.hourly_rate,
        smoking_policy=SmokingPolicy(data.smoking_policy),
    )
    db.add(room)
    await db.commit()
    return RoomResponse.model_validate(room)

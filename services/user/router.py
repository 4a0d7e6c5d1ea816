"""
services/user/router.py
Account profile plus engineer and producer profiles.
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from shared.middleware.auth import get_current_user, require_engineer, require_producer
from shared.models.models import EngineerProfile, ProducerProfile, User
from shared.schemas.schemas import (
    EngineerProfileResponse,
    EngineerProfileUpdate,
    ProducerProfileResponse,
    ProducerProfileUpdate,
    UserResponse,
    UserUpdateRequest,
)

router = APIRouter(prefix="/users", tags=["Users"])


def _engineer_response(profile: EngineerProfile, user: User) -> EngineerProfileResponse:
    return EngineerProfileResponse(
        id=profile.id,
        user_id=profile.user_id,
        bio=profile.bio,
        specialties=profile.specialties or [],
        is_available=profile.is_available,
        minimum_pay_rate=profile.minimum_pay_rate,
        name=user.name,
    )


def _producer_response(profile: ProducerProfile, user: User) -> ProducerProfileResponse:
    return ProducerProfileResponse(
        id=profile.id,
        user_id=profile.user_id,
        bio=profile.bio,
        genres=profile.genres or [],
        is_available=profile.is_available,
        pull_up_price=profile.pull_up_price,
        name=user.name,
    )


@router.get("/me", response_model=UserResponse)
async def get_me(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Return the currently authenticated user's profile."""
    # Ledger writes bypass the identity map
    await db.refresh(current_user)
    return UserResponse.model_validate(current_user)


@router.put("/me", response_model=UserResponse)
async def update_me(
    data: UserUpdateRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Update user profile fields (name, avatar_url).
    Only non-None fields in the request body are updated.
    """
    updates = data.model_dump(exclude_none=True)
    if not updates:
        return UserResponse.model_validate(current_user)

    for field, value in updates.items():
        setattr(current_user, field, value)

    await db.commit()
    await db.refresh(current_user)
    return UserResponse.model_validate(current_user)


# ── Engineer / Producer profiles ──────────────────────────────

@router.put("/me/engineer-profile", response_model=EngineerProfileResponse)
async def upsert_engineer_profile(
    data: EngineerProfileUpdate,
    current_user: User = Depends(require_engineer),
    db: AsyncSession = Depends(get_db),
):
    profile = await db.scalar(select(EngineerProfile).where(EngineerProfile.user_id == current_user.id))
    if profile is None:
        profile = EngineerProfile(user_id=current_user.id, specialties=[])
        db.add(profile)

    for field, value in data.model_dump(exclude_none=True).items():
        setattr(profile, field, value)

    await db.commit()
    await db.refresh(profile)
    return _engineer_response(profile, current_user)


@router.put("/me/producer-profile", response_model=ProducerProfileResponse)
async def upsert_producer_profile(
    data: ProducerProfileUpdate,
    current_user: User = Depends(require_producer),
    db: AsyncSession = Depends(get_db),
):
    profile = await db.scalar(select(ProducerProfile).where(ProducerProfile.user_id == current_user.id))
    if profile is None:
        profile = ProducerProfile(user_id=current_user.id, genres=[])
        db.add(profile)

    for field, value in data.model_dump(exclude_none=True).items():
        setattr(profile, field, value)

    await db.commit()
    await db.refresh(profile)
    return _producer_response(profile, current_user)


@router.get("/engineers", response_model=list[EngineerProfileResponse])
async def list_engineers(
    available_only: bool = Query(True),
    limit: int = Query(50, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    query = (
        select(EngineerProfile, User)
        .join(User, User.id == EngineerProfile.user_id)
        .where(User.is_active == True)
        .order_by(EngineerProfile.created_at)
        .limit(limit)
    )
    if available_only:
        query = query.where(EngineerProfile.is_available == True)
    result = await db.execute(query)
    return [_engineer_response(profile, user) for profile, user in result.all()]


@router.get("/producers", response_model=list[ProducerProfileResponse])
async def list_producers(
    available_only: bool = Query(True),
    limit: int = Query(50, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    query = (
        select(ProducerProfile, User)
        .join(User, User.id == ProducerProfile.user_id)
        .where(User.is_active == True)
        .order_by(ProducerProfile.created_at)
        .limit(limit)
    )
    if available_only:
        query = query.where(ProducerProfile.is_available == True)
    result = await db.execute(query)
    return [_producer_response(profile, user) for profile, user in result.all()]

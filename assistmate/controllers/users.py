from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from assistmate.config import settings
from assistmate.database.connection import get_db
from assistmate.database.models import User
from assistmate.models.common import MessageResponse
from assistmate.models.user import (
    FMCTokenRequest,
    NearbyUserResponse,
    UserLocationUpdate,
    UserResponse,
    serialize_user,
)
from assistmate.services.firebase_auth import get_current_user
from assistmate.services.geo import Point, clamp_limit, km_to_meters, nearby_users
from assistmate.utils.errors import ValidationError

router = APIRouter()


@router.get("/me", response_model=UserResponse)
async def get_me(current_user: User = Depends(get_current_user)):
    return serialize_user(current_user)


@router.patch("/me/location", response_model=UserResponse)
async def update_location(
        location: UserLocationUpdate,
        current_user: User = Depends(get_current_user),
        db: AsyncSession = Depends(get_db)
):
    current_user.latitude = location.latitude
    current_user.longitude = location.longitude
    await db.commit()
    await db.refresh(current_user)
    return serialize_user(current_user)


@router.post("/me/fmc-token", response_model=MessageResponse)
async def update_fmc_token(
        request: FMCTokenRequest,
        current_user: User = Depends(get_current_user),
        db: AsyncSession = Depends(get_db)
):
    # A device token belongs to one user at a time.
    stmt_clear = (
        update(User)
        .where(User.fmc_token == request.fmc_token, User.id != current_user.id)
        .values(fmc_token=None)
        .execution_options(synchronize_session=False)
    )
    await db.execute(stmt_clear)
    current_user.fmc_token = request.fmc_token
    await db.commit()
    return MessageResponse(message="FMC token updated successfully")


@router.get("/nearby", response_model=List[NearbyUserResponse])
async def get_nearby_users(
        distance: Optional[float] = None,
        search: Optional[str] = None,
        user_type: Optional[str] = Query(None, alias="userType"),
        limit: Optional[int] = None,
        current_user: User = Depends(get_current_user),
        db: AsyncSession = Depends(get_db)
):
    """
    Users around the caller's stored location, nearest first. Distance is in
    kilometers and defaults to the configured search radius.
    """
    if not current_user.has_location:
        raise ValidationError("Set your location before searching for nearby users")

    radius = km_to_meters(distance if distance is not None else settings.default_search_radius_km)
    ranked = await nearby_users(
        db,
        Point(current_user.longitude, current_user.latitude),
        radius,
        exclude_user_id=current_user.id,
        user_type=user_type,
        search=search.strip() if search else None,
        limit=clamp_limit(limit, settings.nearby_result_limit),
    )
    return [serialize_user(user, distance=meters) for user, meters in ranked]

from datetime import datetime
from typing import Optional

from pydantic import Field

from assistmate.models.common import CamelModel, GeoPoint


class UserSyncRequest(CamelModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    username: Optional[str] = None
    user_type: Optional[str] = None
    avatar: Optional[str] = None


class FMCTokenRequest(CamelModel):
    fmc_token: str = Field(min_length=1)


class UserLocationUpdate(CamelModel):
    latitude: float = Field(ge=-90, le=90, allow_inf_nan=False)
    longitude: float = Field(ge=-180, le=180, allow_inf_nan=False)


class UserSummary(CamelModel):
    id: int
    username: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    avatar: Optional[str] = None


class UserResponse(UserSummary):
    uid: str
    email: Optional[str] = None
    user_type: Optional[str] = None
    coordinate: Optional[GeoPoint] = None
    created_at: datetime


class NearbyUserResponse(UserResponse):
    distance: float


def serialize_user(db_user, distance: Optional[float] = None):
    data = dict(
        id=db_user.id,
        uid=db_user.firebase_uid,
        email=db_user.email,
        username=db_user.username,
        first_name=db_user.first_name,
        last_name=db_user.last_name,
        avatar=db_user.avatar,
        user_type=db_user.user_type,
        coordinate=GeoPoint.from_lon_lat(db_user.longitude, db_user.latitude),
        created_at=db_user.created_at,
    )
    if distance is not None:
        return NearbyUserResponse(**data, distance=distance)
    return UserResponse(**data)

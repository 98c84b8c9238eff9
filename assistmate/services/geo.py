"""
Proximity queries over request and user locations.

Points are stored as plain longitude/latitude columns. A bounding box around the
query point narrows the rows in SQL, then the exact great-circle distance on a
sphere filters and orders them nearest-first.
"""

import logging
import math
from typing import Iterable, List, NamedTuple, Optional, Tuple

from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from assistmate.database.models import (
    TERMINAL_STATUSES,
    Request,
    RequestCandidate,
    RequestStatus,
    User,
)
from assistmate.utils.errors import ValidationError

logger = logging.getLogger(__name__)

# Same sphere radius MongoDB uses for 2dsphere queries.
EARTH_RADIUS_METERS = 6378100.0
MAX_RESULT_LIMIT = 100


class Point(NamedTuple):
    longitude: float
    latitude: float


class BoundingBox(NamedTuple):
    min_longitude: Optional[float]
    min_latitude: float
    max_longitude: Optional[float]
    max_latitude: float


def parse_point(latitude, longitude) -> Point:
    """Caller-supplied coordinates; anything missing or out of range is a 400."""
    if latitude is None or longitude is None:
        raise ValidationError("Latitude and longitude are required")
    try:
        lat = float(latitude)
        lon = float(longitude)
    except (TypeError, ValueError):
        raise ValidationError("Latitude and longitude must be numbers")
    if not (math.isfinite(lat) and math.isfinite(lon)):
        raise ValidationError("Latitude and longitude must be finite numbers")
    if not -90 <= lat <= 90:
        raise ValidationError("Latitude must be between -90 and 90")
    if not -180 <= lon <= 180:
        raise ValidationError("Longitude must be between -180 and 180")
    return Point(longitude=lon, latitude=lat)


def km_to_meters(distance_km) -> float:
    try:
        km = float(distance_km)
    except (TypeError, ValueError):
        raise ValidationError("Distance must be a number")
    if not math.isfinite(km) or km <= 0:
        raise ValidationError("Distance must be a positive number of kilometers")
    return km * 1000.0


def clamp_limit(limit: Optional[int], default: int) -> int:
    if limit is None:
        return default
    if limit < 1:
        raise ValidationError("Limit must be at least 1")
    return min(limit, MAX_RESULT_LIMIT)


def haversine_meters(a: Point, b: Point) -> float:
    phi1 = math.radians(a.latitude)
    phi2 = math.radians(b.latitude)
    delta_phi = math.radians(b.latitude - a.latitude)
    delta_lambda = math.radians(b.longitude - a.longitude)
    h = math.sin(delta_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(delta_lambda / 2) ** 2
    c = 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))
    return EARTH_RADIUS_METERS * c


def bounding_box(center: Point, radius_meters: float) -> BoundingBox:
    """Box enclosing the search circle. Longitude bounds are None when the box
    wraps the antimeridian or touches a pole; latitude still narrows the scan."""
    delta_lat = math.degrees(radius_meters / EARTH_RADIUS_METERS)
    min_lat = center.latitude - delta_lat
    max_lat = center.latitude + delta_lat
    if min_lat <= -90 or max_lat >= 90:
        return BoundingBox(None, max(min_lat, -90.0), None, min(max_lat, 90.0))

    delta_lon = math.degrees(radius_meters / (EARTH_RADIUS_METERS * math.cos(math.radians(center.latitude))))
    min_lon = center.longitude - delta_lon
    max_lon = center.longitude + delta_lon
    if min_lon < -180 or max_lon > 180:
        return BoundingBox(None, min_lat, None, max_lat)
    return BoundingBox(min_lon, min_lat, max_lon, max_lat)


def _box_filter(model, box: BoundingBox):
    clauses = [model.latitude.between(box.min_latitude, box.max_latitude)]
    if box.min_longitude is not None:
        clauses.append(model.longitude.between(box.min_longitude, box.max_longitude))
    return and_(*clauses)


def rank_by_distance(center: Point, radius_meters: float, rows: Iterable, limit: int) -> List[Tuple[object, float]]:
    ranked = []
    for row in rows:
        distance = haversine_meters(center, Point(row.longitude, row.latitude))
        if distance <= radius_meters:
            ranked.append((row, distance))
    ranked.sort(key=lambda pair: (pair[1], pair[0].id))
    return ranked[:limit]


async def nearby_requests(
        db: AsyncSession,
        center: Point,
        radius_meters: float,
        exclude_user_id: int,
        excluded_statuses: Iterable[RequestStatus] = TERMINAL_STATUSES,
        candidate_id: Optional[int] = None,
        limit: int = 20,
) -> List[Tuple[Request, float]]:
    """
    Requests within ``radius_meters`` of ``center``, nearest first.

    Requests created by ``exclude_user_id`` are skipped. When ``candidate_id`` is
    given only requests where that user is a temp resolver or the resolver are
    returned; without it the query is unconstrained (the "top" listing).
    """
    box = bounding_box(center, radius_meters)
    stmt = (
        select(Request)
        .where(
            _box_filter(Request, box),
            Request.created_by_id != exclude_user_id,
            Request.status.notin_(list(excluded_statuses)),
        )
    )
    if candidate_id is not None:
        stmt = stmt.where(
            or_(
                Request.resolver_id == candidate_id,
                Request.candidates.any(RequestCandidate.user_id == candidate_id),
            )
        )
    result = await db.execute(stmt)
    ranked = rank_by_distance(center, radius_meters, result.scalars().unique().all(), limit)
    logger.debug("nearby_requests at %s within %.0fm -> %d results", center, radius_meters, len(ranked))
    return ranked


async def nearby_users(
        db: AsyncSession,
        center: Point,
        radius_meters: float,
        exclude_user_id: int,
        user_type: Optional[str] = None,
        search: Optional[str] = None,
        limit: int = 20,
) -> List[Tuple[User, float]]:
    box = bounding_box(center, radius_meters)
    stmt = select(User).where(
        User.id != exclude_user_id,
        User.latitude.is_not(None),
        User.longitude.is_not(None),
        _box_filter(User, box),
    )
    if user_type:
        stmt = stmt.where(User.user_type == user_type)
    if search:
        pattern = f"%{search}%"
        stmt = stmt.where(
            or_(
                User.username.ilike(pattern),
                User.email.ilike(pattern),
                User.first_name.ilike(pattern),
                User.last_name.ilike(pattern),
            )
        )
    result = await db.execute(stmt)
    return rank_by_distance(center, radius_meters, result.scalars().all(), limit)

# file: assistmate/controllers/requests.py

from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from assistmate.config import settings
from assistmate.database.connection import get_db
from assistmate.database.models import Request, RequestStatus, User
from assistmate.models.request import (
    NearbyRequestResponse,
    RequestAction,
    RequestActionPayload,
    RequestActionResponse,
    RequestCreate,
    RequestResponse,
    RequestUpdate,
    serialize_request,
)
from assistmate.services import request_lifecycle
from assistmate.services.firebase_auth import get_current_user
from assistmate.services.geo import clamp_limit, km_to_meters, nearby_requests, parse_point
from assistmate.services.notification_dispatcher import ACTION_VERBS
from assistmate.services.ownership import OwnedScope, OwnershipGuard
from assistmate.services.push import PushSender, get_push_sender

router = APIRouter()

require_request_owner = OwnershipGuard(Request, owner_field="user_id", id_param="request_id")

TOP_RESULT_LIMIT = 20


@router.post("", response_model=RequestResponse, status_code=status.HTTP_201_CREATED)
async def create_request(
        request: RequestCreate,
        current_user: User = Depends(get_current_user),
        db: AsyncSession = Depends(get_db),
        push_sender: PushSender = Depends(get_push_sender),
):
    """
    Creates a help request owned by the caller. The first temp resolver is
    notified.
    """
    db_request = await request_lifecycle.create_request(db, push_sender, current_user, request)
    return serialize_request(db_request)


@router.get("", response_model=List[RequestResponse])
async def get_my_requests(
        request_status: Optional[RequestStatus] = Query(None, alias="status"),
        category: Optional[str] = None,
        search: Optional[str] = None,
        scope: OwnedScope = Depends(require_request_owner),
        db: AsyncSession = Depends(get_db),
):
    stmt = select(Request).where(scope.query_filter).order_by(Request.created_at.desc(), Request.id.desc())
    if request_status is not None:
        stmt = stmt.where(Request.status == request_status)
    if category:
        stmt = stmt.where(Request.category == category)
    if search:
        pattern = f"%{search.strip()}%"
        stmt = stmt.where(or_(Request.title.ilike(pattern), Request.description.ilike(pattern)))
    result = await db.execute(stmt)
    return [serialize_request(r) for r in result.scalars().all()]


@router.get("/near", response_model=List[NearbyRequestResponse])
async def get_requests_near(
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
        distance: Optional[float] = None,
        limit: Optional[int] = None,
        current_user: User = Depends(get_current_user),
        db: AsyncSession = Depends(get_db),
):
    """
    Open requests around a point where the caller is a temp resolver or the
    resolver, nearest first. Distance is in kilometers.
    """
    center = parse_point(latitude, longitude)
    radius = km_to_meters(distance if distance is not None else settings.default_search_radius_km)
    ranked = await nearby_requests(
        db,
        center,
        radius,
        exclude_user_id=current_user.id,
        candidate_id=current_user.id,
        limit=clamp_limit(limit, settings.nearby_result_limit),
    )
    return [serialize_request(r, distance=meters) for r, meters in ranked]


@router.get("/top-20/{max_distance}", response_model=List[NearbyRequestResponse])
async def get_top_requests(
        max_distance: float,
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
        current_user: User = Depends(get_current_user),
        db: AsyncSession = Depends(get_db),
):
    """The twenty closest open requests by others within ``max_distance`` km."""
    center = parse_point(latitude, longitude)
    ranked = await nearby_requests(
        db,
        center,
        km_to_meters(max_distance),
        exclude_user_id=current_user.id,
        limit=TOP_RESULT_LIMIT,
    )
    return [serialize_request(r, distance=meters) for r, meters in ranked]


@router.get("/{request_id}", response_model=RequestResponse)
async def get_request(
        request_id: int,
        current_user: User = Depends(get_current_user),
        db: AsyncSession = Depends(get_db),
):
    db_request = await request_lifecycle.load_request(db, request_id)
    return serialize_request(db_request)


@router.patch("/{request_id}", response_model=RequestResponse)
async def update_request(
        request_id: int,
        request: RequestUpdate,
        scope: OwnedScope = Depends(require_request_owner),
        db: AsyncSession = Depends(get_db),
        push_sender: PushSender = Depends(get_push_sender),
):
    db_request = await request_lifecycle.edit_request(db, push_sender, scope.user, request_id, request)
    return serialize_request(db_request)


@router.patch("/{request_id}/{action}", response_model=RequestActionResponse)
async def act_on_request(
        request_id: int,
        action: str,
        payload: Optional[RequestActionPayload] = None,
        current_user: User = Depends(get_current_user),
        db: AsyncSession = Depends(get_db),
        push_sender: PushSender = Depends(get_push_sender),
):
    """
    ACCEPT, REJECT, CANCEL or COMPLETE a request (case-insensitive). Losing a
    race against another transition answers 409 with the current status.
    """
    db_request = await request_lifecycle.apply_action(
        db, push_sender, current_user, request_id, action, payload or RequestActionPayload()
    )
    verb = ACTION_VERBS[RequestAction.parse(action)]
    return RequestActionResponse(message=f"Request {verb} successfully", data=serialize_request(db_request))


@router.delete("/{request_id}", status_code=status.HTTP_201_CREATED, response_class=Response)
async def delete_request(
        request_id: int,
        scope: OwnedScope = Depends(require_request_owner),
        db: AsyncSession = Depends(get_db),
):
    await request_lifecycle.delete_request(db, request_id)
    return Response(status_code=status.HTTP_201_CREATED)

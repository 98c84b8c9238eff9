"""
Lifecycle of a help request.

    CREATED --accept--> IN_PROGRESS --complete--> COMPLETED
    CREATED --reject--> REJECTED
    CREATED --cancel--> CANCELLED

Every transition is applied as one conditional UPDATE keyed on the status the
guards were checked against. Concurrent callers may all pass the guards; only the
first UPDATE matches a row, the rest see ``rowcount == 0`` and get a conflict
naming the status the request has moved to.
"""

import logging
from typing import Dict, Iterable, List, Optional

from fastapi import status as http_status
from sqlalchemy import delete, insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from assistmate.database.models import Request, RequestCandidate, RequestStatus, User, utcnow
from assistmate.models.request import (
    RequestAction,
    RequestActionPayload,
    RequestCreate,
    RequestUpdate,
)
from assistmate.services.notification_dispatcher import ACTION_VERBS, NotificationDispatcher
from assistmate.services.push import PushSender
from assistmate.utils.errors import (
    AppError,
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)

logger = logging.getLogger(__name__)

RESOLVER_ACTIONS = (RequestAction.ACCEPT, RequestAction.REJECT, RequestAction.CANCEL)

REQUIRED_STATUS = {
    RequestAction.ACCEPT: RequestStatus.CREATED,
    RequestAction.REJECT: RequestStatus.CREATED,
    RequestAction.CANCEL: RequestStatus.CREATED,
    RequestAction.COMPLETE: RequestStatus.IN_PROGRESS,
}


async def load_request(db: AsyncSession, request_id: int) -> Request:
    stmt = (
        select(Request)
        .where(Request.id == request_id)
        .options(
            selectinload(Request.user),
            selectinload(Request.resolver),
            selectinload(Request.candidates),
            selectinload(Request.chats),
        )
        .execution_options(populate_existing=True)
    )
    result = await db.execute(stmt)
    request = result.scalars().first()
    if request is None:
        raise NotFoundError("Request not found")
    return request


async def _resolve_candidates(db: AsyncSession, actor: User, user_ids: List[int]) -> Dict[int, User]:
    if actor.id in user_ids:
        raise ValidationError("You cannot be a candidate resolver on your own request")
    result = await db.execute(select(User).where(User.id.in_(user_ids)))
    users = {user.id: user for user in result.scalars().all()}
    missing = [uid for uid in user_ids if uid not in users]
    if missing:
        raise AppError(
            f"Temporary resolver not found: {', '.join(str(uid) for uid in missing)}",
            http_status.HTTP_401_UNAUTHORIZED,
        )
    return users


def _candidate_rows(user_ids: Iterable[int]) -> List[RequestCandidate]:
    return [RequestCandidate(user_id=uid, position=position) for position, uid in enumerate(user_ids)]


async def _transition(db: AsyncSession, request_id: int, expected: RequestStatus, values: dict, *criteria) -> bool:
    stmt = (
        update(Request)
        .where(Request.id == request_id, Request.status == expected, *criteria)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(stmt)
    return result.rowcount == 1


async def _raise_stale(db: AsyncSession, request_id: int, verb: str, expected: Optional[RequestStatus] = None):
    current = await db.scalar(select(Request.status).where(Request.id == request_id))
    if current is None:
        raise NotFoundError("Request not found")
    if current == expected:
        # status held, so the candidate list changed underneath the caller
        logger.info("Request %s candidates changed; %s rejected", request_id, verb)
        raise PermissionDeniedError("You are no longer a candidate resolver for this request")
    logger.info("Request %s already moved to %s; %s rejected", request_id, current.value, verb)
    raise ConflictError(f"Request cannot be {verb} as it is currently in {current.value} status.")


async def create_request(db: AsyncSession, push_sender: PushSender, actor: User, data: RequestCreate) -> Request:
    candidates = await _resolve_candidates(db, actor, data.temp_resolvers)

    request = Request(
        title=data.title,
        category=data.category,
        other_category=data.other_category,
        description=data.description,
        due_date_time=data.due_date_time,
        status=RequestStatus.CREATED,
        longitude=data.coordinate.longitude,
        latitude=data.coordinate.latitude,
        user_id=actor.id,
        created_by_id=actor.id,
        candidates=_candidate_rows(data.temp_resolvers),
    )
    db.add(request)
    await db.commit()
    request = await load_request(db, request.id)
    logger.info("Request %s created by user %s for candidates %s", request.id, actor.id, data.temp_resolvers)

    dispatcher = NotificationDispatcher(db, push_sender)
    await dispatcher.dispatch(
        request, actor, candidates[data.temp_resolvers[0]], payload=data.model_dump()
    )
    return request


async def edit_request(
        db: AsyncSession,
        push_sender: PushSender,
        actor: User,
        request_id: int,
        data: RequestUpdate,
) -> Request:
    request = await load_request(db, request_id)
    if request.created_by_id != actor.id:
        raise PermissionDeniedError("Only the creator can edit this request")
    if request.status != RequestStatus.CREATED:
        raise ConflictError(f"Request cannot be edited as it is currently in {request.status.value} status.")

    changes = data.model_dump(exclude_unset=True)
    if not changes:
        raise ValidationError("No fields to update")

    temp_resolvers = changes.pop("temp_resolvers", None)
    candidates = {}
    if temp_resolvers is not None:
        candidates = await _resolve_candidates(db, actor, temp_resolvers)

    coordinate = changes.pop("coordinate", None)
    if coordinate is not None:
        changes["longitude"], changes["latitude"] = data.coordinate.coordinates
    for required in ("title", "category", "description"):
        if required in changes and changes[required] is None:
            raise ValidationError(f"Invalid input data: {required} cannot be null")
    changes["updated_at"] = utcnow()

    if not await _transition(db, request_id, RequestStatus.CREATED, changes):
        await _raise_stale(db, request_id, "edited")

    if temp_resolvers is not None:
        await db.execute(delete(RequestCandidate).where(RequestCandidate.request_id == request_id))
        await db.execute(
            insert(RequestCandidate),
            [{"request_id": request_id, "user_id": uid, "position": position}
             for position, uid in enumerate(temp_resolvers)],
        )
    await db.commit()
    request = await load_request(db, request_id)
    logger.info("Request %s edited by user %s", request_id, actor.id)

    counterparty = candidates.get(temp_resolvers[0]) if temp_resolvers else await _first_candidate(db, request)
    if counterparty is not None:
        dispatcher = NotificationDispatcher(db, push_sender)
        await dispatcher.dispatch(
            request, actor, counterparty, payload=data.model_dump(exclude_unset=True), has_path_id=True
        )
    return request


async def _first_candidate(db: AsyncSession, request: Request) -> Optional[User]:
    if not request.candidates:
        return None
    return await db.get(User, request.candidates[0].user_id)


def check_action_allowed(request: Request, actor: User, action: RequestAction) -> None:
    """Guards for accept/reject/cancel/complete, checked before the atomic update."""
    verb = ACTION_VERBS[action]
    if action in RESOLVER_ACTIONS:
        if actor.id == request.created_by_id:
            raise ConflictError(f"You cannot {action.value.lower()} your own request")
        if request.status != RequestStatus.CREATED:
            raise ConflictError(f"Request cannot be {verb} as it is currently in {request.status.value} status.")
        if actor.id not in request.temp_resolver_ids:
            raise PermissionDeniedError("You are not a candidate resolver for this request")
        return

    if actor.id not in request.participant_ids:
        raise PermissionDeniedError("Only the requester or the resolver can complete this request")
    if request.status != RequestStatus.IN_PROGRESS:
        raise ConflictError(f"Request cannot be {verb} as it is currently in {request.status.value} status.")


def transition_values(action: RequestAction, actor: User, payload: RequestActionPayload) -> dict:
    if action == RequestAction.ACCEPT:
        return {
            "status": RequestStatus.IN_PROGRESS,
            "resolver_id": actor.id,
            "offer_reason": payload.reason,
            "offer_paid": payload.paid,
            "offer_currency": payload.currency,
            "offer_payment_amount": payload.payment_amount,
        }
    if action == RequestAction.REJECT:
        return {"status": RequestStatus.REJECTED, "resolver_id": None, "offer_reason": payload.reason}
    if action == RequestAction.CANCEL:
        return {"status": RequestStatus.CANCELLED, "resolver_id": None, "offer_reason": payload.reason}

    values = {"status": RequestStatus.COMPLETED}
    if payload.reason is not None:
        values["offer_reason"] = payload.reason
    return values


async def apply_action(
        db: AsyncSession,
        push_sender: PushSender,
        actor: User,
        request_id: int,
        action_token: str,
        payload: RequestActionPayload,
) -> Request:
    action = RequestAction.parse(action_token)
    if action is None:
        raise ValidationError(f"Invalid action type: {action_token}. Expected one of ACCEPT, REJECT, CANCEL, COMPLETE")

    request = await load_request(db, request_id)
    check_action_allowed(request, actor, action)

    verb = ACTION_VERBS[action]
    expected = REQUIRED_STATUS[action]
    criteria = []
    if action in RESOLVER_ACTIONS:
        criteria.append(Request.candidates.any(RequestCandidate.user_id == actor.id))
    if not await _transition(db, request_id, expected, transition_values(action, actor, payload), *criteria):
        await _raise_stale(db, request_id, verb, expected if criteria else None)

    if action in RESOLVER_ACTIONS:
        await db.execute(
            delete(RequestCandidate).where(
                RequestCandidate.request_id == request_id,
                RequestCandidate.user_id == actor.id,
            )
        )
    await db.commit()
    request = await load_request(db, request_id)
    logger.info("Request %s %s by user %s", request_id, verb, actor.id)

    if actor.id == request.user_id:
        counterparty = request.resolver
    else:
        counterparty = request.user
    if counterparty is not None:
        dispatcher = NotificationDispatcher(db, push_sender)
        await dispatcher.dispatch(
            request, actor, counterparty, payload=payload.model_dump(), action=action, has_path_id=True
        )
    return request


async def delete_request(db: AsyncSession, request_id: int) -> None:
    request = await load_request(db, request_id)
    await db.delete(request)
    await db.commit()
    logger.info("Request %s deleted together with %d chat messages", request_id, len(request.chats))

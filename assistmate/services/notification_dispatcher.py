"""
Turns a request transition (or a chat message) into one persisted Notification
and one push call for the counterparty. Users without a delivery token are
skipped entirely: no record, no push.
"""

import logging
from typing import Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from assistmate.database.models import Notification, Request, User
from assistmate.models.request import RequestAction
from assistmate.services.push import PushSender

logger = logging.getLogger(__name__)

TRIGGER_CREATED = "request_created"
TRIGGER_UPDATED = "request_updated"
TRIGGER_NEW_MESSAGE = "new_message"

ACTION_TRIGGERS = {
    RequestAction.ACCEPT: "request_accepted",
    RequestAction.REJECT: "request_rejected",
    RequestAction.CANCEL: "request_cancelled",
    RequestAction.COMPLETE: "request_completed",
}

ACTION_VERBS = {
    RequestAction.ACCEPT: "accepted",
    RequestAction.REJECT: "rejected",
    RequestAction.CANCEL: "cancelled",
    RequestAction.COMPLETE: "completed",
}


def derive_trigger(action: Optional[RequestAction], has_path_id: bool) -> str:
    if action is not None:
        return ACTION_TRIGGERS[action]
    return TRIGGER_UPDATED if has_path_id else TRIGGER_CREATED


def derive_description(action: Optional[RequestAction], actor: User, payload: dict, request: Request) -> str:
    if action is not None and actor.display_name:
        return f"{actor.display_name} {ACTION_VERBS[action]} your request"
    return payload.get("reason") or payload.get("description") or request.description


def is_acceptance_like(action: Optional[RequestAction], request: Request, actor: User) -> bool:
    """Responses from a resolver go back to the requester; everything the
    requester does goes out to the resolver or candidate."""
    if action in (RequestAction.ACCEPT, RequestAction.REJECT):
        return True
    return action is not None and actor.id != request.user_id


def route(action: Optional[RequestAction], request: Request, actor: User, counterparty: User) -> Tuple[User, User]:
    """Returns (recipient, owner)."""
    if is_acceptance_like(action, request, actor):
        return request.user, actor
    return counterparty, request.user


class NotificationDispatcher:
    def __init__(self, db: AsyncSession, push_sender: PushSender):
        self.db = db
        self.push_sender = push_sender

    async def dispatch(
            self,
            request: Request,
            actor: User,
            counterparty: User,
            payload: Optional[dict] = None,
            action: Optional[RequestAction] = None,
            has_path_id: bool = False,
    ) -> Optional[Notification]:
        payload = payload or {}
        recipient, owner = route(action, request, actor, counterparty)
        trigger = derive_trigger(action, has_path_id)

        if not recipient.fmc_token:
            logger.info("Skipping %s notification for request %s: user %s has no delivery token",
                        trigger, request.id, recipient.id)
            return None

        description = derive_description(action, actor, payload, request)
        notification = await self._save(
            title=request.title,
            description=description,
            trigger=trigger,
            subject_id=request.id,
            due_date_time=payload.get("due_date_time") or request.due_date_time,
            recipient=recipient,
            owner=owner,
        )
        await self.push_sender.send(
            recipient.fmc_token,
            title=payload.get("title") or request.title,
            body=description,
            data={"requestId": request.id, "user": recipient.id, "trigger": trigger},
        )
        return notification

    async def dispatch_chat_message(
            self,
            request: Request,
            sender: User,
            receiver: User,
            message: str,
    ) -> Optional[Notification]:
        if not receiver.fmc_token:
            logger.debug("Receiver %s has no delivery token; chat push skipped", receiver.id)
            return None

        title = f"New message from {sender.full_name or sender.display_name}".strip()
        notification = await self._save(
            title=title,
            description=message,
            trigger=TRIGGER_NEW_MESSAGE,
            subject_id=request.id,
            due_date_time=None,
            recipient=receiver,
            owner=sender,
        )
        await self.push_sender.send(
            receiver.fmc_token,
            title=title,
            body=message,
            data={"requestId": request.id, "user": receiver.id, "trigger": TRIGGER_NEW_MESSAGE},
        )
        return notification

    async def _save(self, title, description, trigger, subject_id, due_date_time, recipient, owner) -> Notification:
        notification = Notification(
            title=title,
            description=description,
            trigger=trigger,
            notification_id=str(subject_id),
            due_date_time=due_date_time,
            user_id=recipient.id,
            owner_id=owner.id,
        )
        self.db.add(notification)
        await self.db.commit()
        await self.db.refresh(notification)
        logger.info("Notification %s (%s) stored for user %s", notification.id, trigger, recipient.id)
        return notification

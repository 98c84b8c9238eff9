"""
Real-time chat relay scoped to one help request.

Sockets exchange JSON frames ``{"event": ..., "data": {...}}``. Rooms are keyed
by request id. Within a room, persistence and broadcast happen under the room's
lock, so every member sees messages in the order they were stored. Push delivery
for the receiver happens after the lock is released and is best-effort.

Nothing that goes wrong here is reported back to the socket: bad frames,
unknown requests and non-participants are logged and dropped.
"""

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from typing import Callable, Dict, Optional, Set

from fastapi import WebSocket
from pydantic import ValidationError as PydanticValidationError

from assistmate.config import settings
from assistmate.database.connection import get_db_session
from assistmate.database.models import Chat, Request
from assistmate.models.chat import JoinRoomPayload, LeaveRoomPayload, ReceivedMessage, SendMessagePayload
from assistmate.models.user import UserSummary
from assistmate.services.notification_dispatcher import NotificationDispatcher
from assistmate.services.push import get_push_sender

logger = logging.getLogger(__name__)

RECEIVE_MESSAGE = "receive_message"


def socket_label(websocket: WebSocket) -> str:
    return f"{id(websocket):x}"


class RoomManager:
    """Tracks which sockets joined which request room."""

    def __init__(self):
        # room -> set of joined sockets
        self._rooms: Dict[str, Set[WebSocket]] = {}
        self._lock = asyncio.Lock()

    async def join(self, room: str, websocket: WebSocket):
        async with self._lock:
            self._rooms.setdefault(room, set()).add(websocket)

    async def leave(self, room: str, websocket: WebSocket):
        async with self._lock:
            members = self._rooms.get(room)
            if members is None:
                return
            members.discard(websocket)
            if not members:
                del self._rooms[room]

    async def leave_all(self, websocket: WebSocket) -> list:
        async with self._lock:
            left = [room for room, members in self._rooms.items() if websocket in members]
            for room in left:
                self._rooms[room].discard(websocket)
                if not self._rooms[room]:
                    del self._rooms[room]
        return left

    def members(self, room: str) -> Set[WebSocket]:
        return set(self._rooms.get(room, set()))

    async def emit(self, room: str, event: str, data: dict) -> int:
        """Send an event to every socket in the room; returns how many got it."""
        async with self._lock:
            members = self._rooms.get(room, set()).copy()

        delivered = 0
        closed = []
        for ws in members:
            try:
                await ws.send_json({"event": event, "data": data})
                delivered += 1
            except Exception:
                # Connection closed or errored
                closed.append(ws)

        for ws in closed:
            await self.leave(room, ws)
        return delivered


class ChatChannel:
    def __init__(
            self,
            rooms: RoomManager,
            session_factory: Callable = get_db_session,
            push_sender_factory: Callable = get_push_sender,
            require_participant: bool = settings.chat_join_requires_participant,
    ):
        self.rooms = rooms
        self.session_factory = session_factory
        self.push_sender_factory = push_sender_factory
        self.require_participant = require_participant
        self._room_locks: Dict[str, asyncio.Lock] = {}
        self._room_lock_users: Dict[str, int] = {}

    @asynccontextmanager
    async def _room_lock(self, room: str):
        """Serialises sends per room. The lock lives only while someone holds or
        waits for it."""
        lock = self._room_locks.setdefault(room, asyncio.Lock())
        self._room_lock_users[room] = self._room_lock_users.get(room, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._room_lock_users[room] -= 1
            if not self._room_lock_users[room]:
                del self._room_lock_users[room]
                del self._room_locks[room]

    async def handle(self, websocket: WebSocket, raw) -> None:
        """Entry point for one inbound frame."""
        try:
            frame = json.loads(raw) if isinstance(raw, (str, bytes)) else raw
            event = frame.get("event")
            data = frame.get("data") or {}
            if event == "join_room":
                await self.join(websocket, JoinRoomPayload.model_validate(data))
            elif event == "leave_room":
                await self.leave(websocket, LeaveRoomPayload.model_validate(data))
            elif event == "send_message":
                await self.send_message(websocket, SendMessagePayload.model_validate(data))
            else:
                logger.warning("Socket %s sent unknown event %r", socket_label(websocket), event)
        except (ValueError, AttributeError, PydanticValidationError) as e:
            logger.warning("Dropping malformed frame from socket %s: %s", socket_label(websocket), e)
        except Exception:
            logger.exception("Error handling frame from socket %s", socket_label(websocket))

    async def join(self, websocket: WebSocket, payload: JoinRoomPayload) -> bool:
        room = str(payload.request_id)
        if self.require_participant:
            async with self.session_factory() as db:
                request = await db.get(Request, payload.request_id)
            if request is None:
                logger.info("Request %s not found; join refused", payload.request_id)
                return False
            if payload.user_id is None or payload.user_id not in request.participant_ids:
                logger.info("User %s is not a participant of request %s; join refused",
                            payload.user_id, payload.request_id)
                return False

        await self.rooms.join(room, websocket)
        logger.info("Socket %s (user %s) joined room %s", socket_label(websocket), payload.user_id, room)
        return True

    async def leave(self, websocket: WebSocket, payload: LeaveRoomPayload) -> None:
        await self.rooms.leave(str(payload.request_id), websocket)
        logger.info("Socket %s left room %s", socket_label(websocket), payload.request_id)

    async def send_message(self, websocket: WebSocket, payload: SendMessagePayload) -> Optional[Chat]:
        async with self.session_factory() as db:
            request = await db.get(Request, payload.request_id)
            if request is None:
                logger.error("Request %s not found.", payload.request_id)
                return None
            if payload.sender_id not in request.participant_ids:
                logger.error("Sender %s is not authorized to send messages in request %s.",
                             payload.sender_id, payload.request_id)
                return None
            if request.resolver_id is None:
                logger.error("Request %s has no resolver yet; message from %s dropped.",
                             payload.request_id, payload.sender_id)
                return None

            room = str(request.id)
            if payload.room is not None and payload.room != room:
                logger.warning("Socket %s addressed room %s for request %s; using %s",
                               socket_label(websocket), payload.room, request.id, room)

            sender = request.user if payload.sender_id == request.user_id else request.resolver
            async with self._room_lock(room):
                chat = Chat(
                    request_id=request.id,
                    participants=[request.user_id, request.resolver_id],
                    sender_id=sender.id,
                    message=payload.message,
                )
                db.add(chat)
                await db.commit()

                event = ReceivedMessage(
                    request_id=request.id,
                    sender_id=sender.id,
                    sender=UserSummary.model_validate(sender),
                    message=chat.message,
                    timestamp=chat.timestamp,
                )
                await self.rooms.emit(room, RECEIVE_MESSAGE, event.model_dump(mode="json", by_alias=True))

            receiver = self._receiver(request, sender.id, payload.receiver_id)
            if receiver is None:
                logger.warning("Receiver %s is not the other participant of request %s; push skipped",
                               payload.receiver_id, request.id)
                return chat

            dispatcher = NotificationDispatcher(db, self.push_sender_factory())
            await dispatcher.dispatch_chat_message(request, sender, receiver, chat.message)
            return chat

    @staticmethod
    def _receiver(request: Request, sender_id: int, receiver_id: Optional[int]):
        other = request.resolver if sender_id == request.user_id else request.user
        if receiver_id is not None and receiver_id != other.id:
            return None
        return other

    async def disconnect(self, websocket: WebSocket) -> None:
        rooms = await self.rooms.leave_all(websocket)
        logger.info("User disconnected: %s (rooms: %s)", socket_label(websocket), ", ".join(rooms) or "none")


room_manager = RoomManager()
chat_channel = ChatChannel(room_manager)

import logging
from typing import List

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from assistmate.database.connection import get_db
from assistmate.database.models import Chat, Request, User
from assistmate.models.chat import ChatMessageResponse
from assistmate.services.chat_channel import chat_channel, socket_label
from assistmate.services.firebase_auth import get_current_user
from assistmate.utils.errors import NotFoundError, PermissionDeniedError

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/chats/{request_id}", response_model=List[ChatMessageResponse])
async def get_chat_history(
        request_id: int,
        current_user: User = Depends(get_current_user),
        db: AsyncSession = Depends(get_db),
):
    """
    Messages exchanged on a request, oldest first. Only the requester and the
    resolver may read them.
    """
    request = await db.get(Request, request_id)
    if request is None:
        raise NotFoundError("Request not found")
    if current_user.id not in request.participant_ids:
        raise PermissionDeniedError("Only participants can read this conversation")

    stmt = select(Chat).where(Chat.request_id == request_id).order_by(Chat.timestamp, Chat.id)
    result = await db.execute(stmt)
    return [ChatMessageResponse.model_validate(chat) for chat in result.scalars().all()]


@router.websocket("/ws/chat")
async def chat_socket(websocket: WebSocket):
    await websocket.accept()
    logger.info("User connected: %s", socket_label(websocket))
    try:
        while True:
            frame = await websocket.receive_text()
            await chat_channel.handle(websocket, frame)
    except WebSocketDisconnect:
        pass
    finally:
        await chat_channel.disconnect(websocket)

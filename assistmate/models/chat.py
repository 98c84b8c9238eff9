from datetime import datetime
from typing import List, Optional

from pydantic import field_validator

from assistmate.models.common import CamelModel
from assistmate.models.user import UserSummary


class JoinRoomPayload(CamelModel):
    request_id: int
    user_id: Optional[int] = None


class LeaveRoomPayload(CamelModel):
    request_id: int


class SendMessagePayload(CamelModel):
    request_id: int
    sender_id: int
    message: str
    room: Optional[str] = None
    receiver_id: Optional[int] = None

    @field_validator('message')
    def validate_message(cls, v):
        if not v.strip():
            raise ValueError('Message cannot be empty')
        return v.strip()


class ChatMessageResponse(CamelModel):
    id: int
    request_id: int
    participants: List[int]
    sender: UserSummary
    message: str
    timestamp: datetime


class ReceivedMessage(CamelModel):
    request_id: int
    sender_id: int
    sender: UserSummary
    message: str
    timestamp: datetime

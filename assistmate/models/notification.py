# file: assistmate/models/notification.py

from datetime import datetime
from typing import List, Optional

from pydantic import AliasChoices, Field

from assistmate.models.common import CamelModel


class NotificationResponse(CamelModel):
    id: int
    title: str
    description: str
    trigger: str
    notification_id: str
    due_date_time: Optional[datetime] = None
    user: int = Field(validation_alias=AliasChoices("user_id", "user"))
    owner: int = Field(validation_alias=AliasChoices("owner_id", "owner"))
    read: bool
    created_at: datetime
    updated_at: datetime


class NotificationReadUpdate(CamelModel):
    read: bool


class NotificationReadAll(CamelModel):
    ids: List[int] = Field(min_length=1)


class BulkUpdateResponse(CamelModel):
    status: str = "success"
    message: str
    matched: int
    modified: int

# file: assistmate/controllers/notifications.py

from typing import List, Optional

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from assistmate.database.connection import get_db
from assistmate.database.models import Notification, utcnow
from assistmate.models.notification import (
    BulkUpdateResponse,
    NotificationReadAll,
    NotificationReadUpdate,
    NotificationResponse,
)
from assistmate.services.ownership import OwnedScope, OwnershipGuard
from assistmate.utils.errors import NotFoundError

router = APIRouter()

require_notification_owner = OwnershipGuard(Notification, owner_field="user_id", id_param="notification_id")


@router.get("", response_model=List[NotificationResponse])
async def get_user_notifications(
        read: Optional[bool] = None,
        scope: OwnedScope = Depends(require_notification_owner),
        db: AsyncSession = Depends(get_db),
):
    """
    Retrieves the caller's notifications, most recent first, optionally
    filtered by read state.
    """
    stmt = (
        select(Notification)
        .where(scope.query_filter)
        .order_by(Notification.created_at.desc(), Notification.id.desc())
    )
    if read is not None:
        stmt = stmt.where(Notification.read == read)
    result = await db.execute(stmt)
    return result.scalars().all()


@router.patch("/read-all", response_model=BulkUpdateResponse)
async def mark_notifications_as_read(
        body: NotificationReadAll,
        scope: OwnedScope = Depends(require_notification_owner),
        db: AsyncSession = Depends(get_db),
):
    """
    Marks the listed notifications as read. Ids that belong to someone else are
    not matched.
    """
    owned = (Notification.id.in_(body.ids), scope.query_filter)
    matched = await db.scalar(select(func.count()).select_from(Notification).where(*owned))
    stmt = (
        update(Notification)
        .where(*owned, Notification.read.is_(False))
        .values(read=True, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(stmt)
    await db.commit()
    return BulkUpdateResponse(
        message="Notifications marked as read",
        matched=matched,
        modified=result.rowcount,
    )


@router.get("/{notification_id}", response_model=NotificationResponse)
async def get_notification(
        notification_id: int,
        scope: OwnedScope = Depends(require_notification_owner),
        db: AsyncSession = Depends(get_db),
):
    """
    Fetches one of the caller's notifications and marks it as read.
    """
    stmt = select(Notification).where(Notification.id == notification_id, scope.query_filter)
    result = await db.execute(stmt)
    db_notification = result.scalars().first()

    if not db_notification:
        raise NotFoundError("Notification not found")

    if not db_notification.read:
        db_notification.read = True
        await db.commit()
        await db.refresh(db_notification)
    return db_notification


@router.patch("/{notification_id}", response_model=NotificationResponse)
async def update_notification(
        notification_id: int,
        body: NotificationReadUpdate,
        scope: OwnedScope = Depends(require_notification_owner),
        db: AsyncSession = Depends(get_db),
):
    db_notification = scope.document
    db_notification.read = body.read
    await db.commit()
    await db.refresh(db_notification)
    return db_notification


@router.delete("/{notification_id}", status_code=status.HTTP_201_CREATED, response_class=Response)
async def delete_notification(
        notification_id: int,
        scope: OwnedScope = Depends(require_notification_owner),
        db: AsyncSession = Depends(get_db),
):
    await db.delete(scope.document)
    await db.commit()
    return Response(status_code=status.HTTP_201_CREATED)

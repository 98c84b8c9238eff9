import logging

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from assistmate.database.connection import get_db
from assistmate.database.models import User
from assistmate.models.user import UserResponse, UserSyncRequest, serialize_user
from assistmate.services.firebase_auth import Identity, get_identity

logger = logging.getLogger(__name__)

router = APIRouter()


def _split_name(name):
    if not name:
        return None, None
    first, _, last = name.strip().partition(" ")
    return first or None, last.strip() or None


@router.post("/sync", response_model=UserResponse)
async def sync_user(
        sync_data: UserSyncRequest,
        identity: Identity = Depends(get_identity),
        db: AsyncSession = Depends(get_db)
):
    """
    Called by the client after signing in with the identity provider.
    Returns the internal user for the verified identity, creating it on first sync.
    """
    stmt = select(User).where(User.firebase_uid == identity.uid)
    result = await db.execute(stmt)
    db_user = result.scalars().first()
    if db_user:
        return serialize_user(db_user)

    first_name, last_name = _split_name(identity.name)
    new_user = User(
        firebase_uid=identity.uid,
        email=identity.email,
        username=sync_data.username,
        first_name=sync_data.first_name or first_name,
        last_name=sync_data.last_name or last_name,
        user_type=sync_data.user_type,
        avatar=sync_data.avatar,
    )
    db.add(new_user)
    await db.commit()
    await db.refresh(new_user)
    logger.info("Synced new user %s for identity %s", new_user.id, identity.uid)
    return serialize_user(new_user)

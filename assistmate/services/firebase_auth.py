import logging
from dataclasses import dataclass, field
from typing import Optional

import firebase_admin
from fastapi import Depends, Request
from fastapi.security import OAuth2PasswordBearer
from firebase_admin import auth, credentials
from firebase_admin.auth import (
    CertificateFetchError,
    InvalidIdTokenError,
    UserDisabledError,
)
from firebase_admin.exceptions import FirebaseError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from assistmate.config import settings
from assistmate.database.connection import get_db
from assistmate.database.models import User
from assistmate.utils.errors import AuthenticationError, PermissionDeniedError, UpstreamError

logger = logging.getLogger(__name__)

# Scheme to extract token. auto_error=False so a missing token reaches our own 401.
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/sync", auto_error=False)


@dataclass(frozen=True)
class Identity:
    """Verified identity claim for the current HTTP call."""

    uid: str
    email: Optional[str] = None
    name: Optional[str] = None
    claims: dict = field(default_factory=dict)


def init_firebase() -> None:
    # Singleton pattern: Check if the app is already initialized
    if firebase_admin._apps:
        logger.info("Firebase Admin SDK already initialized.")
        return
    try:
        cred = credentials.Certificate(settings.firebase_credentials)
        firebase_admin.initialize_app(cred)
        logger.info("Firebase Admin SDK initialized successfully.")
    except (OSError, ValueError) as e:
        logger.error("Error initializing Firebase Admin SDK: %s", e)


def verify_token(token: Optional[str]) -> Identity:
    """
    Verifies a Firebase ID token. Credential problems are reported as a generic
    401 so provider internals never leak; provider outages surface as 500.
    """
    if not token:
        raise AuthenticationError("Not authenticated")
    try:
        decoded_token = auth.verify_id_token(token)
    except (InvalidIdTokenError, UserDisabledError, ValueError):
        raise AuthenticationError("Invalid credentials")
    except CertificateFetchError as e:
        logger.error("Could not fetch identity provider certificates: %s", e)
        raise UpstreamError("Identity provider unavailable")
    except FirebaseError as e:
        logger.error("Identity provider error: %s", e)
        raise UpstreamError("Identity provider unavailable")

    uid = decoded_token.get("uid") or decoded_token.get("sub")
    if not uid:
        raise AuthenticationError("Invalid credentials")
    return Identity(
        uid=uid,
        email=decoded_token.get("email"),
        name=decoded_token.get("name"),
        claims=dict(decoded_token),
    )


async def get_identity(request: Request, token: Optional[str] = Depends(oauth2_scheme)) -> Identity:
    identity = verify_token(token)
    request.state.identity = identity
    return identity


async def get_current_user(
        identity: Identity = Depends(get_identity),
        db: AsyncSession = Depends(get_db)
) -> User:
    """
    Required dependency: maps the verified identity to the internal user record.
    """
    stmt = select(User).where(User.firebase_uid == identity.uid)
    result = await db.execute(stmt)
    user = result.scalars().first()

    if user is None:
        raise PermissionDeniedError("User not signed in. Please sync your account.")
    return user

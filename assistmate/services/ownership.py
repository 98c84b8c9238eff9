import logging
from dataclasses import dataclass
from typing import Any, Optional

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from assistmate.database.connection import get_db
from assistmate.database.models import User
from assistmate.services.firebase_auth import get_current_user
from assistmate.utils.errors import NotFoundError, PermissionDeniedError, ValidationError

logger = logging.getLogger(__name__)

MUTATING_METHODS = frozenset({"PATCH", "PUT", "DELETE"})


@dataclass(frozen=True)
class OwnedScope:
    user: User
    query_filter: Any
    document: Optional[Any] = None


class OwnershipGuard:
    """
    Dependency restricting a resource to the user named by its ownership column.

    The column is resolved once, when the guard is built, so a misspelt field
    fails at import time rather than on the first request. Every call yields a
    ``query_filter`` for listing; mutating calls with an id in the path also load
    the target row and reject anyone but its owner.
    """

    def __init__(self, model, owner_field: str = "user_id", id_param: str = "id"):
        self.model = model
        self.owner_field = owner_field
        self.owner_column = getattr(model, owner_field)
        self.id_param = id_param

    async def __call__(
            self,
            request: Request,
            current_user: User = Depends(get_current_user),
            db: AsyncSession = Depends(get_db),
    ) -> OwnedScope:
        query_filter = self.owner_column == current_user.id
        raw_id = request.path_params.get(self.id_param)
        if request.method not in MUTATING_METHODS or raw_id is None:
            return OwnedScope(user=current_user, query_filter=query_filter)

        try:
            document_id = int(raw_id)
        except ValueError:
            raise ValidationError(f"Invalid {self.id_param}: {raw_id}")

        document = await db.get(self.model, document_id)
        if document is None:
            raise NotFoundError(f"{self.model.__name__} not found")
        if getattr(document, self.owner_field) != current_user.id:
            logger.warning("User %s denied %s on %s %s", current_user.id, request.method,
                           self.model.__name__, document_id)
            raise PermissionDeniedError("You do not have permission to perform this action")
        return OwnedScope(user=current_user, query_filter=query_filter, document=document)

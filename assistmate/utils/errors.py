"""
Error taxonomy and the single translator every failure is funnelled through.

Controllers and services raise the ``AppError`` subclasses below. Anything else
that escapes a handler (store failures, framework errors, bugs) is normalised by
``translate_exception`` so clients always receive::

    {"status": "fail" | "error", "message": "..."}

In development the body also carries the error repr and its traceback.
"""

import logging
import re
import traceback
from typing import List

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import DataError, IntegrityError, StatementError
from starlette.exceptions import HTTPException as StarletteHTTPException

from assistmate.config import settings

logger = logging.getLogger(__name__)

GENERIC_ERROR_MESSAGE = "Something went wrong"


class AppError(Exception):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    @property
    def status(self) -> str:
        return "fail" if 400 <= self.status_code < 500 else "error"


class ValidationError(AppError):
    status_code = status.HTTP_400_BAD_REQUEST


class AuthenticationError(AppError):
    status_code = status.HTTP_401_UNAUTHORIZED


class PermissionDeniedError(AppError):
    status_code = status.HTTP_403_FORBIDDEN


class NotFoundError(AppError):
    status_code = status.HTTP_404_NOT_FOUND


class ConflictError(AppError):
    status_code = status.HTTP_409_CONFLICT


class UpstreamError(AppError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


_UNIQUE_PATTERNS = (
    # sqlite: UNIQUE constraint failed: users.email, users.username
    re.compile(r"UNIQUE constraint failed: (?P<fields>[\w.,\s]+)"),
    # postgres: Key (email)=(a@b.c) already exists.
    re.compile(r"Key \((?P<fields>[^)]+)\)=\(.*\) already exists"),
)


def _duplicate_fields(exc: IntegrityError) -> List[str]:
    text = str(exc.orig) if exc.orig is not None else str(exc)
    for pattern in _UNIQUE_PATTERNS:
        match = pattern.search(text)
        if match:
            return [f.strip().split(".")[-1] for f in match.group("fields").split(",") if f.strip()]
    return []


def _validation_message(exc: RequestValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = [str(p) for p in error.get("loc", ()) if p not in ("body", "query", "path")]
        field = ".".join(location) or "request"
        parts.append(f"{field}: {error.get('msg', 'invalid value')}")
    return f"Invalid input data: {'. '.join(parts)}"


def translate_exception(exc: Exception) -> AppError:
    if isinstance(exc, AppError):
        return exc
    if isinstance(exc, RequestValidationError):
        return ValidationError(_validation_message(exc))
    if isinstance(exc, IntegrityError):
        fields = _duplicate_fields(exc)
        if fields:
            return ValidationError(f"Duplicate field value: {', '.join(fields)}. Please use another value")
        return ValidationError("Invalid input data: a referenced record does not exist")
    if isinstance(exc, DataError) or (
        isinstance(exc, StatementError) and isinstance(exc.orig, (TypeError, ValueError))
    ):
        return ValidationError(f"Invalid input data: {exc.orig or exc}")
    if isinstance(exc, StarletteHTTPException):
        return AppError(str(exc.detail), exc.status_code)
    return AppError(GENERIC_ERROR_MESSAGE, status.HTTP_500_INTERNAL_SERVER_ERROR)


def error_body(exc: Exception, error: AppError) -> dict:
    body = {"status": error.status, "message": error.message}
    if settings.is_development:
        body["error"] = repr(exc)
        body["stack"] = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    return body


async def app_error_handler(request: Request, exc: Exception) -> JSONResponse:
    error = translate_exception(exc)
    if error.status_code >= 500:
        logger.error("Unhandled error on %s %s: %s", request.method, request.url.path, exc, exc_info=exc)
    headers = getattr(exc, "headers", None) if isinstance(exc, StarletteHTTPException) else None
    if isinstance(error, AuthenticationError):
        headers = {"WWW-Authenticate": "Bearer"}
    return JSONResponse(status_code=error.status_code, content=error_body(exc, error), headers=headers)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(RequestValidationError, app_error_handler)
    app.add_exception_handler(StarletteHTTPException, app_error_handler)
    app.add_exception_handler(IntegrityError, app_error_handler)
    app.add_exception_handler(StatementError, app_error_handler)
    app.add_exception_handler(Exception, app_error_handler)

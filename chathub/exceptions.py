from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


def error_payload(message: str, code: Optional[str] = None, details: Any = None) -> Dict[str, Any]:
    payload: Dict[str, Any] = {"error": message}
    if code is not None:
        payload["code"] = code
    if details is not None:
        payload["details"] = details
    return payload


class ChatHubError(Exception):
    """Base error raised from request handlers and services.

    Rendered as ``{"error": message, "code": code}`` by the handlers
    registered in :func:`register_exception_handlers`.
    """

    status_code: int = 400
    default_code: Optional[str] = None

    def __init__(self, message: str, *, code: Optional[str] = None, status_code: Optional[int] = None) -> None:
        self.message = message
        self.code = code if code is not None else self.default_code
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)


class AuthenticationError(ChatHubError):
    status_code = 401
    default_code = "unauthenticated"


class PermissionDeniedError(ChatHubError):
    status_code = 403
    default_code = "forbidden"


class NotFoundError(ChatHubError):
    status_code = 404
    default_code = "not_found"


class ConflictError(ChatHubError):
    status_code = 409
    default_code = "conflict"


class MembershipUnavailableError(ChatHubError):
    """The membership store could not answer a room-members query."""

    status_code = 503
    default_code = "membership_unavailable"


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(ChatHubError)
    async def _chathub_error(_request: Request, exc: ChatHubError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content=error_payload(exc.message, exc.code))

    @app.exception_handler(StarletteHTTPException)
    async def _http_error(_request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content=error_payload(str(exc.detail)),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def _validation_error(_request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=422,
            content=error_payload("Invalid request", "validation_error", jsonable_encoder(exc.errors())),
        )

    @app.exception_handler(Exception)
    async def _unhandled(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content=error_payload("Internal server error", "internal_error"))


__all__ = [
    "ChatHubError",
    "AuthenticationError",
    "PermissionDeniedError",
    "NotFoundError",
    "ConflictError",
    "MembershipUnavailableError",
    "error_payload",
    "register_exception_handlers",
]

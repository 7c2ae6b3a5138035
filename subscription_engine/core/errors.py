"""
Engine errors and their HTTP rendering.

Every failure a caller can act on is an AppError subclass with a stable
`code` and HTTP status. The handlers registered in main.py render those,
stray HTTPExceptions and unexpected crashes the same way:

    {"error": {"code": ..., "message": ..., "request_id": ...}, "detail": message}

with the request id echoed in the x-request-id header.
"""

import builtins
import logging
from typing import Optional
from uuid import uuid4

from fastapi import HTTPException
from fastapi.responses import JSONResponse
from starlette.requests import Request

from subscription_engine.core.logging import LOGGER_NAME, get_request_id


class AppError(Exception):
    code = "app_error"
    status_code = 500

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
        request_id: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or type(self).code
        self.status_code = status_code or type(self).status_code
        self.request_id = request_id


class ValidationError(AppError, ValueError):
    """Operation not valid in the current state (paid invoice, bad plan change...)."""
    code = "validation_error"
    status_code = 400


class NotFoundError(AppError, LookupError):
    """Unknown plan, subscription, invoice, payment method or transaction."""
    code = "not_found"
    status_code = 404


class PermissionError(AppError, builtins.PermissionError):
    """The user's plan does not grant the resource."""
    code = "forbidden"
    status_code = 403


class ConflictError(AppError):
    """Duplicate active subscription or payment method id."""
    code = "conflict"
    status_code = 409


def _request_id_for(request: Request) -> str:
    return getattr(request.state, "request_id", None) or get_request_id() or str(uuid4())


def _render(rid: str, status_code: int, code: str, message: str) -> JSONResponse:
    response = JSONResponse(
        status_code=status_code,
        content={
            "error": {"code": code, "message": message, "request_id": rid},
            "detail": message,
        },
    )
    response.headers["x-request-id"] = rid
    return response


async def app_error_handler(request: Request, exc: AppError):
    rid = exc.request_id or _request_id_for(request)
    logging.getLogger(LOGGER_NAME).log(
        logging.ERROR if exc.status_code >= 500 else logging.WARNING,
        "app.error",
        extra={"request_id": rid, "error_code": exc.code, "details": {"message": exc.message, "status": exc.status_code}},
    )
    return _render(rid, exc.status_code, exc.code, exc.message)


async def http_error_handler(request: Request, exc: HTTPException):
    rid = _request_id_for(request)
    code = "not_found" if exc.status_code == 404 else "http_error"
    logging.getLogger(LOGGER_NAME).warning(
        "http.error",
        extra={"request_id": rid, "error_code": code, "details": {"status": exc.status_code}},
    )
    return _render(rid, exc.status_code, code, exc.detail or "HTTP error")


async def unhandled_exception_handler(request: Request, exc: Exception):
    rid = _request_id_for(request)
    logging.getLogger(LOGGER_NAME).error(
        "unhandled.exception",
        exc_info=exc,
        extra={"request_id": rid, "error_code": "internal_error"},
    )
    return _render(rid, 500, "internal_error", "Unexpected error")

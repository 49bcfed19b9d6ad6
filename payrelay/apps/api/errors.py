from __future__ import annotations

import logging
from typing import Any

from fastapi import HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from payrelay.apps.api.response import error_response
from payrelay.core.errors import (
    AlreadyBoundError,
    InvalidStatusTransitionError,
    InvalidWebhookConfigError,
    OperationNotFoundError,
    PayRelayError,
)


logger = logging.getLogger(__name__)

_DEFAULT_ERROR_CODES: dict[int, str] = {
    400: "BAD_REQUEST",
    401: "AUTH_UNAUTHORIZED",
    404: "NOT_FOUND",
    409: "CONFLICT",
    422: "VALIDATION_ERROR",
    500: "INTERNAL_ERROR",
    503: "SERVICE_UNAVAILABLE",
}

_DOMAIN_ERRORS: dict[type[PayRelayError], tuple[int, str]] = {
    OperationNotFoundError: (404, "OPERATION_NOT_FOUND"),
    AlreadyBoundError: (409, "OPERATION_ALREADY_BOUND"),
    InvalidStatusTransitionError: (409, "INVALID_STATUS_TRANSITION"),
    InvalidWebhookConfigError: (422, "INVALID_WEBHOOK_CONFIG"),
}


def _default_code(status_code: int) -> str:
    return _DEFAULT_ERROR_CODES.get(status_code, "UNKNOWN_ERROR")


def _split_detail(detail: Any, status_code: int) -> tuple[str, str, dict[str, Any] | None]:
    # HTTPException detail may be a {"code", "message", ...} dict or a plain string.
    if isinstance(detail, dict):
        code = str(detail.get("code") or _default_code(status_code))
        message = str(detail.get("message") or "Request failed")
        details = {k: v for k, v in detail.items() if k not in {"code", "message"}}
        return code, message, details or None
    if isinstance(detail, str):
        return _default_code(status_code), detail, None
    return _default_code(status_code), "Request failed", None


async def http_exception_handler(request: Request, exc: StarletteHTTPException | HTTPException) -> JSONResponse:
    code, message, details = _split_detail(exc.detail, exc.status_code)
    payload = error_response(request=request, code=code, message=message, details=details)
    return JSONResponse(content=payload, status_code=exc.status_code, headers=getattr(exc, "headers", None))


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    payload = error_response(
        request=request,
        code="REQUEST_VALIDATION_ERROR",
        message="Validation error",
        details={"errors": jsonable_encoder(exc.errors())},
    )
    return JSONResponse(content=payload, status_code=422)


async def payrelay_exception_handler(request: Request, exc: PayRelayError) -> JSONResponse:
    status_code, code = 400, "BAD_REQUEST"
    for error_type, mapped in _DOMAIN_ERRORS.items():
        if isinstance(exc, error_type):
            status_code, code = mapped
            break
    payload = error_response(request=request, code=code, message=str(exc) or code.lower())
    return JSONResponse(content=payload, status_code=status_code)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    # Never leak stack traces to callers.
    logger.exception("unhandled_api_error path=%s", request.url.path)
    payload = error_response(request=request, code="INTERNAL_ERROR", message="Internal server error")
    return JSONResponse(content=payload, status_code=500)

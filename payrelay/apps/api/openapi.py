from __future__ import annotations

from typing import Any

from payrelay.apps.api.response import ErrorEnvelope


def _error_example(*, code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "error": {"code": code, "message": message},
        "meta": {"request_id": "req_example", "api_version": "v1"},
    }
    if details:
        payload["error"]["details"] = details
    return payload


def _response(description: str, code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    return {
        "model": ErrorEnvelope,
        "description": description,
        "content": {"application/json": {"example": _error_example(code=code, message=message, details=details)}},
    }


DEFAULT_ERROR_RESPONSES: dict[int, dict[str, Any]] = {
    401: _response("Unauthorized", "AUTH_UNAUTHORIZED", "Missing X-Client-Id header"),
    404: _response("Not found or owned by another client", "OPERATION_NOT_FOUND", "Operation not found"),
    422: _response(
        "Validation error",
        "INVALID_WEBHOOK_CONFIG",
        "webhook endpoint urls must start with http:// or https://",
    ),
    500: _response("Internal server error", "INTERNAL_ERROR", "Internal server error"),
}

CALLBACK_ACK_EXAMPLE: dict[str, Any] = {"ResultCode": 0, "ResultDesc": "Accepted"}
VALIDATION_REJECT_EXAMPLE: dict[str, Any] = {"ResultCode": 1, "ResultDesc": "Rejected: Unknown recipient"}

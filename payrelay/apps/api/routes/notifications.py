from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from payrelay.apps.api.deps import get_db, require_client_id
from payrelay.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from payrelay.apps.api.response import SuccessEnvelope, success_response
from payrelay.domain.models import Notification
from payrelay.services import operations as operations_service


router = APIRouter(prefix="/notifications", tags=["notifications"], responses=DEFAULT_ERROR_RESPONSES)


class NotificationResponse(BaseModel):
    id: str
    operation_id: str | None
    kind: str
    status: str
    destination: str
    attempts: int
    last_attempt_at: str | None
    last_response_status: int | None
    last_error: str | None
    delivered_at: str | None
    payload: dict[str, Any]
    created_at: str | None
    updated_at: str | None


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def to_notification_response(row: Notification) -> NotificationResponse:
    return NotificationResponse(
        id=row.id,
        operation_id=row.operation_id,
        kind=row.kind,
        status=row.status,
        destination=row.destination,
        attempts=int(row.attempts or 0),
        last_attempt_at=_iso(row.last_attempt_at),
        last_response_status=row.last_response_status,
        last_error=row.last_error,
        delivered_at=_iso(row.delivered_at),
        payload=dict(row.payload or {}),
        created_at=_iso(row.created_at),
        updated_at=_iso(row.updated_at),
    )


@router.get("/{notification_id}", response_model=SuccessEnvelope[NotificationResponse])
async def get_notification(
    notification_id: str,
    request: Request,
    client_id: str = Depends(require_client_id),
    db: AsyncSession = Depends(get_db),
) -> dict:
    row = await operations_service.get_notification_status(db, client_id=client_id, notification_id=notification_id)
    if row is None:
        # 404 for other clients' notifications too.
        raise HTTPException(status_code=404, detail={"code": "NOTIFICATION_NOT_FOUND", "message": "Notification not found"})
    return success_response(request=request, data=to_notification_response(row))

from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from payrelay.apps.api.deps import get_db, require_client_id
from payrelay.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from payrelay.apps.api.response import SuccessEnvelope, success_response
from payrelay.apps.api.routes.notifications import NotificationResponse, to_notification_response
from payrelay.domain.models import Operation
from payrelay.services import operations as operations_service


router = APIRouter(prefix="/operations", tags=["operations"], responses=DEFAULT_ERROR_RESPONSES)


class OperationResponse(BaseModel):
    id: str
    kind: str
    status: str
    amount: str
    phone_number: str
    account_reference: str | None
    description: str | None
    result_code: int | None
    result_desc: str | None
    network_reference: str | None
    network_completed_at: str | None
    correlation_ids: dict[str, str]
    metadata: dict[str, Any]
    created_at: str | None
    updated_at: str | None


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _to_response(row: Operation) -> OperationResponse:
    return OperationResponse(
        id=row.id,
        kind=row.kind,
        status=row.status,
        amount=f"{row.amount:.2f}",
        phone_number=row.phone_number,
        account_reference=row.account_reference,
        description=row.description,
        result_code=row.result_code,
        result_desc=row.result_desc,
        network_reference=row.network_reference,
        network_completed_at=_iso(row.network_completed_at),
        correlation_ids={item.id_kind: item.value for item in row.correlations},
        metadata=dict(row.metadata_json or {}),
        created_at=_iso(row.created_at),
        updated_at=_iso(row.updated_at),
    )


def _not_found() -> HTTPException:
    return HTTPException(status_code=404, detail={"code": "OPERATION_NOT_FOUND", "message": "Operation not found"})


@router.get("/{operation_id}", response_model=SuccessEnvelope[OperationResponse])
async def get_operation(
    operation_id: str,
    request: Request,
    client_id: str = Depends(require_client_id),
    db: AsyncSession = Depends(get_db),
) -> dict:
    row = await operations_service.get_operation(db, client_id=client_id, operation_id=operation_id)
    if row is None:
        raise _not_found()
    return success_response(request=request, data=_to_response(row))


@router.get("/{operation_id}/notifications", response_model=SuccessEnvelope[list[NotificationResponse]])
async def list_operation_notifications(
    operation_id: str,
    request: Request,
    client_id: str = Depends(require_client_id),
    db: AsyncSession = Depends(get_db),
) -> dict:
    rows = await operations_service.list_notifications_for_operation(
        db, client_id=client_id, operation_id=operation_id
    )
    if rows is None:
        raise _not_found()
    return success_response(request=request, data=[to_notification_response(row) for row in rows])

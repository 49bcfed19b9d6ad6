from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from payrelay.apps.api.deps import get_db, require_client_id
from payrelay.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from payrelay.apps.api.response import SuccessEnvelope, success_response
from payrelay.services import subscriptions


logger = logging.getLogger(__name__)
router = APIRouter(prefix="/clients", tags=["clients"], responses=DEFAULT_ERROR_RESPONSES)


class WebhookConfigRequest(BaseModel):
    endpoints: dict[str, str | None]
    secret: str | None = None
    enabled: bool = True

    model_config = {
        "extra": "forbid",
        "json_schema_extra": {
            "examples": [
                {
                    "endpoints": {
                        "push_payment": "https://merchant.example.com/hooks/stk",
                        "disbursement": "https://merchant.example.com/hooks/b2c",
                    },
                    "secret": "whsec_example",
                    "enabled": True,
                }
            ]
        },
    }


class WebhookConfigResponse(BaseModel):
    client_id: str
    enabled: bool
    has_secret: bool
    endpoints: dict[str, str]


@router.put("/{client_id}/webhooks", response_model=SuccessEnvelope[WebhookConfigResponse])
async def configure_webhooks(
    client_id: str,
    payload: WebhookConfigRequest,
    request: Request,
    caller_client_id: str = Depends(require_client_id),
    db: AsyncSession = Depends(get_db),
) -> dict:
    not_found = HTTPException(status_code=404, detail={"code": "CLIENT_NOT_FOUND", "message": "Client not found"})
    if caller_client_id != client_id:
        raise not_found
    view = await subscriptions.configure_webhooks(
        db,
        client_id=client_id,
        endpoints=payload.endpoints,
        secret=payload.secret,
        enabled=payload.enabled,
    )
    if view is None:
        raise not_found
    return success_response(
        request=request,
        data=WebhookConfigResponse(
            client_id=view.client_id,
            enabled=view.enabled,
            has_secret=view.has_secret,
            endpoints=view.endpoints,
        ),
    )

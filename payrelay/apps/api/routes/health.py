from __future__ import annotations

from fastapi import APIRouter, Request
from pydantic import BaseModel

from payrelay.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from payrelay.apps.api.response import SuccessEnvelope, success_response
from payrelay.core.config import get_settings

router = APIRouter(tags=["health"], responses=DEFAULT_ERROR_RESPONSES)


class HealthResponse(BaseModel):
    status: str
    dispatch_mode: str


@router.get("/health", response_model=SuccessEnvelope[HealthResponse])
async def health(request: Request) -> dict:
    payload = HealthResponse(status="ok", dispatch_mode=get_settings().notify_dispatch_mode)
    return success_response(request=request, data=payload)

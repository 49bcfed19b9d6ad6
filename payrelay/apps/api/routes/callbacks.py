from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from payrelay.apps.api.deps import get_callback_adapter, get_db, get_merchant_validator
from payrelay.apps.api.openapi import CALLBACK_ACK_EXAMPLE, VALIDATION_REJECT_EXAMPLE
from payrelay.apps.api.response import network_ack_response
from payrelay.services.callbacks import CallbackAdapter, MerchantValidator


logger = logging.getLogger(__name__)
router = APIRouter(prefix="/callbacks", tags=["callbacks"])

_ACK_RESPONSES: dict[int | str, dict[str, Any]] = {
    200: {
        "description": "Network acknowledgement, returned for every callback",
        "content": {"application/json": {"example": CALLBACK_ACK_EXAMPLE}},
    }
}


async def _read_body(request: Request) -> Any:
    try:
        return await request.json()
    except ValueError:
        logger.warning("callback_body_unparseable path=%s", request.url.path)
        return None


async def _acknowledge(request: Request, session: AsyncSession, adapter: CallbackAdapter, kind: str) -> Response:
    raw = await _read_body(request)
    if raw is not None:
        await adapter.handle(session, kind, raw)
    return network_ack_response()


@router.post("/stk", responses=_ACK_RESPONSES)
async def push_payment_callback(
    request: Request,
    db: AsyncSession = Depends(get_db),
    adapter: CallbackAdapter = Depends(get_callback_adapter),
) -> Response:
    return await _acknowledge(request, db, adapter, "push_payment")


@router.post("/b2c/result", responses=_ACK_RESPONSES)
async def disbursement_result_callback(
    request: Request,
    db: AsyncSession = Depends(get_db),
    adapter: CallbackAdapter = Depends(get_callback_adapter),
) -> Response:
    return await _acknowledge(request, db, adapter, "disbursement_result")


@router.post("/b2c/timeout", responses=_ACK_RESPONSES)
async def disbursement_timeout_callback(
    request: Request,
    db: AsyncSession = Depends(get_db),
    adapter: CallbackAdapter = Depends(get_callback_adapter),
) -> Response:
    return await _acknowledge(request, db, adapter, "disbursement_timeout")


@router.post("/c2b/confirmation", responses=_ACK_RESPONSES)
async def merchant_collection_callback(
    request: Request,
    db: AsyncSession = Depends(get_db),
    adapter: CallbackAdapter = Depends(get_callback_adapter),
) -> Response:
    return await _acknowledge(request, db, adapter, "merchant_collection")


@router.post(
    "/c2b/validation",
    responses={
        200: {
            "description": "Accept or reject answer for the network; relayed from the client when it validates",
            "content": {"application/json": {"example": VALIDATION_REJECT_EXAMPLE}},
        }
    },
)
async def merchant_collection_validation(
    request: Request,
    db: AsyncSession = Depends(get_db),
    validator: MerchantValidator = Depends(get_merchant_validator),
) -> Response:
    raw = await _read_body(request)
    return JSONResponse(content=await validator.validate(db, raw))

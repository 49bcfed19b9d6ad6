from __future__ import annotations

from typing import AsyncGenerator

from fastapi import Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from payrelay.persistence.db import get_session
from payrelay.services.callbacks import CallbackAdapter, MerchantValidator
from payrelay.services.notifications.dispatch import NotificationDispatcher, get_dispatcher


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    # One AsyncSession per request; context manager ensures close on success/error.
    async with get_session() as session:
        yield session


async def require_client_id(x_client_id: str | None = Header(default=None, alias="X-Client-Id")) -> str:
    # Authentication happens upstream; this header only scopes reads to one client.
    client_id = (x_client_id or "").strip()
    if not client_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"code": "AUTH_UNAUTHORIZED", "message": "Missing X-Client-Id header"},
        )
    return client_id


def get_notification_dispatcher(request: Request) -> NotificationDispatcher:
    dispatcher = getattr(request.app.state, "dispatcher", None)
    return dispatcher if dispatcher is not None else get_dispatcher()


def get_callback_adapter(request: Request) -> CallbackAdapter:
    return CallbackAdapter(get_notification_dispatcher(request))


def get_merchant_validator() -> MerchantValidator:
    return MerchantValidator()

from __future__ import annotations

from datetime import datetime
import os
from pathlib import Path
import tempfile
from typing import Any, Callable

# Point settings at a throwaway sqlite file before any payrelay module builds the engine.
_DB_DIR = Path(tempfile.mkdtemp(prefix="payrelay-tests-"))
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_DB_DIR / 'payrelay.db'}"
os.environ["NOTIFY_DISPATCH_MODE"] = "inline"

import pytest

from payrelay.core.config import DeliveryConfig
from payrelay.domain.models import Base, Client, ClientWebhookEndpoint, Notification
from payrelay.persistence.db import SessionLocal, engine
from payrelay.services import operations
from payrelay.services.notifications.delivery import DeliveryEngine
from payrelay.services.notifications.dispatch import set_dispatcher
from payrelay.tests.utils.webhooks import (
    CLIENT_ID,
    CLIENT_SECRET,
    CLIENT_SHORT_CODE,
    HOOK_BASE,
    FakeClock,
    ReceiverStub,
    RecordingDispatcher,
)


@pytest.fixture(autouse=True)
async def database() -> None:
    # Fresh schema per test; dispose so pooled connections never cross event loops.
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield
    set_dispatcher(None)
    await engine.dispose()


@pytest.fixture
async def session():
    async with SessionLocal() as db:
        yield db


@pytest.fixture
def session_factory():
    return SessionLocal


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def receiver() -> ReceiverStub:
    return ReceiverStub()


@pytest.fixture
def delivery_config() -> DeliveryConfig:
    return DeliveryConfig(max_attempts=5, backoff_floor_s=300, timeout_s=1.0, sweep_concurrency=1)


@pytest.fixture
def delivery_engine(delivery_config: DeliveryConfig, receiver: ReceiverStub, clock: FakeClock) -> DeliveryEngine:
    return DeliveryEngine(delivery_config, transport=receiver.transport, clock=clock)


@pytest.fixture
def recording_dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture
def make_client(session) -> Callable[..., Any]:
    async def _make(
        client_id: str = CLIENT_ID,
        *,
        secret: str | None = CLIENT_SECRET,
        short_code: str | None = CLIENT_SHORT_CODE,
        endpoints: dict[str, str] | None = None,
        enabled: bool = True,
    ) -> Client:
        if endpoints is None:
            endpoints = {
                "push_payment": f"{HOOK_BASE}/stk",
                "disbursement": f"{HOOK_BASE}/b2c",
                "disbursement_timeout": f"{HOOK_BASE}/b2c-timeout",
                "merchant_collection": f"{HOOK_BASE}/c2b",
            }
        client = Client(
            id=client_id,
            name=f"{client_id} ltd",
            short_code=short_code,
            webhook_secret=secret,
            webhooks_enabled=enabled,
            endpoints=[ClientWebhookEndpoint(kind=kind, url=url) for kind, url in endpoints.items()],
        )
        session.add(client)
        await session.commit()
        return client

    return _make


@pytest.fixture
def make_submitted_operation(session) -> Callable[..., Any]:
    async def _make(
        *,
        client_id: str = CLIENT_ID,
        kind: str = "push_payment",
        correlation_ids: dict[str, str] | None = None,
        amount: str = "150.00",
        metadata: dict[str, Any] | None = None,
    ):
        operation = await operations.create_operation(
            session,
            client_id=client_id,
            kind=kind,
            amount=amount,
            phone_number="0712345678",
            account_reference="INV-1001",
            metadata=metadata or {"order_id": "ord_1"},
        )
        if correlation_ids is None:
            if kind == "push_payment":
                correlation_ids = {
                    "checkout_request_id": "ws_CO_191220191020363925",
                    "merchant_request_id": "29115-34620561-1",
                }
            else:
                correlation_ids = {
                    "conversation_id": "AG_20191219_00005797af5d7d75f652",
                    "originator_conversation_id": "16740-34861180-1",
                }
        await operations.record_submission(
            session,
            operation_id=operation.id,
            correlation_ids=correlation_ids,
            raw_response={"ResponseCode": "0"},
        )
        return operation

    return _make


@pytest.fixture
def make_notification(session) -> Callable[..., Any]:
    async def _make(
        notification_id: str = "ntf_1",
        *,
        client_id: str = CLIENT_ID,
        status: str = "pending",
        attempts: int = 0,
        last_attempt_at: datetime | None = None,
        destination: str = f"{HOOK_BASE}/stk",
        payload: dict[str, Any] | None = None,
    ) -> Notification:
        row = Notification(
            id=notification_id,
            client_id=client_id,
            operation_id=None,
            kind="push_payment",
            status=status,
            payload=payload or {"event_type": "push_payment", "operation_id": "op_1", "status": "completed"},
            destination=destination,
            attempts=attempts,
            last_attempt_at=last_attempt_at,
        )
        session.add(row)
        await session.commit()
        return row

    return _make

from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest

from payrelay.apps.api.main import create_app, lifespan
from payrelay.persistence.db import SessionLocal
from payrelay.persistence.repos import notifications as notifications_repo
from payrelay.services.notifications.dispatch import LocalNotificationDispatcher, set_dispatcher


async def _status(notification_id: str) -> tuple[str, int]:
    async with SessionLocal() as fresh:
        stored = await notifications_repo.get_notification(fresh, notification_id)
        return stored.status, stored.attempts


@pytest.mark.asyncio
async def test_inline_mode_runs_retry_sweep_without_requests(
    session_factory, delivery_engine, make_client, make_notification, clock, receiver
) -> None:
    await make_client()
    await make_notification(status="failed", attempts=1, last_attempt_at=clock() - timedelta(minutes=10))
    dispatcher = LocalNotificationDispatcher(session_factory, delivery_engine, workers=1)
    set_dispatcher(dispatcher)
    app = create_app()

    async with lifespan(app):
        task = app.state.scheduler_task
        assert dispatcher.running
        assert task is not None and not task.done()
        for _ in range(100):
            if (await _status("ntf_1"))[0] == "sent":
                break
            await asyncio.sleep(0.05)

    assert task.done()
    assert not dispatcher.running
    assert await _status("ntf_1") == ("sent", 2)
    assert len(receiver.requests) == 1


@pytest.mark.asyncio
async def test_queue_mode_leaves_the_sweep_to_the_worker(recording_dispatcher) -> None:
    set_dispatcher(recording_dispatcher)
    app = create_app()

    async with lifespan(app):
        assert app.state.dispatcher is recording_dispatcher
        assert app.state.scheduler_task is None

from __future__ import annotations

import pytest

from payrelay.persistence.db import SessionLocal
from payrelay.persistence.repos import notifications as notifications_repo
from payrelay.services.notifications.dispatch import (
    ArqNotificationDispatcher,
    LocalNotificationDispatcher,
    build_dispatcher,
    get_dispatcher,
    set_dispatcher,
)


@pytest.mark.asyncio
async def test_local_dispatcher_delivers_enqueued_notifications(
    session_factory, make_client, make_notification, delivery_engine, receiver
) -> None:
    await make_client()
    await make_notification("ntf_a")
    await make_notification("ntf_b")
    dispatcher = LocalNotificationDispatcher(session_factory, delivery_engine, workers=1)
    dispatcher.start()
    try:
        assert dispatcher.running
        assert await dispatcher.enqueue("ntf_a")
        assert await dispatcher.enqueue("ntf_b")
        # Duplicate hand-offs are harmless: the second finds a terminal row.
        assert await dispatcher.enqueue("ntf_a")
        await dispatcher.join()
    finally:
        await dispatcher.stop()

    assert not dispatcher.running
    assert sorted(request.headers["X-PayRelay-Notification-Id"] for request in receiver.requests) == [
        "ntf_a",
        "ntf_b",
    ]
    async with SessionLocal() as fresh:
        for notification_id in ("ntf_a", "ntf_b"):
            stored = await notifications_repo.get_notification(fresh, notification_id)
            assert stored.status == "sent"
            assert stored.attempts == 1


def test_build_dispatcher_modes() -> None:
    assert isinstance(build_dispatcher("queue"), ArqNotificationDispatcher)
    assert isinstance(build_dispatcher(" Inline ", session_factory=SessionLocal), LocalNotificationDispatcher)
    with pytest.raises(ValueError):
        build_dispatcher("carrier-pigeon")


def test_get_dispatcher_follows_settings_and_can_be_replaced(recording_dispatcher) -> None:
    set_dispatcher(None)
    assert isinstance(get_dispatcher(), LocalNotificationDispatcher)
    assert get_dispatcher() is get_dispatcher()
    set_dispatcher(recording_dispatcher)
    assert get_dispatcher() is recording_dispatcher


@pytest.mark.asyncio
async def test_worker_job_runs_one_claimed_attempt(make_client, make_notification, delivery_engine, receiver) -> None:
    from payrelay.workers.notification_worker import deliver_notification

    await make_client()
    await make_notification()
    ctx = {"delivery_engine": delivery_engine}

    assert await deliver_notification(ctx, "ntf_1") == "sent"
    # A replayed job finds the row terminal and skips it.
    assert await deliver_notification(ctx, "ntf_1") == "skipped"
    assert len(receiver.requests) == 1

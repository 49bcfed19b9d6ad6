from __future__ import annotations

import asyncio
import logging
from typing import Protocol

from arq import create_pool
from arq.connections import RedisSettings
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from payrelay.core.config import DeliveryConfig, get_settings
from payrelay.services.notifications.delivery import DeliveryEngine, process_notification


logger = logging.getLogger(__name__)

DELIVER_JOB_NAME = "deliver_notification"

_notification_queue_pool = None
_notification_queue_pool_loop = None
_notification_queue_lock: asyncio.Lock | None = None


class NotificationDispatcher(Protocol):
    async def enqueue(self, notification_id: str) -> bool: ...


async def get_notification_queue_pool():
    # One arq pool per event loop; tests and workers may run several loops per process.
    global _notification_queue_pool, _notification_queue_pool_loop, _notification_queue_lock
    current_loop = asyncio.get_running_loop()
    if _notification_queue_pool is not None and _notification_queue_pool_loop == current_loop:
        return _notification_queue_pool
    if _notification_queue_pool_loop != current_loop:
        _notification_queue_pool = None
        _notification_queue_lock = asyncio.Lock()
        _notification_queue_pool_loop = current_loop
    async with _notification_queue_lock:
        if _notification_queue_pool is None:
            settings = get_settings()
            _notification_queue_pool = await create_pool(
                RedisSettings.from_dsn(settings.redis_url),
                default_queue_name=settings.notify_queue_name,
            )
    return _notification_queue_pool


class ArqNotificationDispatcher:
    """Hands notification ids to the arq worker through Redis."""

    def __init__(self, queue_name: str | None = None) -> None:
        self.queue_name = queue_name or get_settings().notify_queue_name

    async def enqueue(self, notification_id: str) -> bool:
        try:
            redis = await get_notification_queue_pool()
            await redis.enqueue_job(DELIVER_JOB_NAME, notification_id, _queue_name=self.queue_name)
        except Exception:  # noqa: BLE001 - the stale-pending requeue picks up anything not enqueued.
            logger.exception("notification_enqueue_failed notification_id=%s", notification_id)
            return False
        return True


class LocalNotificationDispatcher:
    """In-process queue consumed by a few asyncio tasks.

    Used when the API runs without a separate worker. Consumers go through the
    same claim as the arq worker, so the two modes never race on one row.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        engine: DeliveryEngine,
        *,
        workers: int = 2,
    ) -> None:
        self.session_factory = session_factory
        self.engine = engine
        self.workers = max(1, int(workers))
        self._queue: asyncio.Queue[str] = asyncio.Queue()
        self._tasks: list[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    def start(self) -> None:
        if self._tasks:
            return
        self._tasks = [asyncio.create_task(self._consume()) for _ in range(self.workers)]

    async def enqueue(self, notification_id: str) -> bool:
        self._queue.put_nowait(notification_id)
        return True

    async def join(self) -> None:
        await self._queue.join()

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []

    async def _consume(self) -> None:
        while True:
            notification_id = await self._queue.get()
            try:
                await process_notification(self.session_factory, notification_id, self.engine)
            except Exception:  # noqa: BLE001 - keep the consumer alive; the row stays visible for retry.
                logger.exception("notification_local_delivery_failed notification_id=%s", notification_id)
            finally:
                self._queue.task_done()


_dispatcher: NotificationDispatcher | None = None


def build_dispatcher(
    mode: str | None = None,
    *,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    engine: DeliveryEngine | None = None,
) -> NotificationDispatcher:
    settings = get_settings()
    selected = (mode or settings.notify_dispatch_mode).strip().lower()
    if selected == "inline":
        if session_factory is None:
            from payrelay.persistence.db import SessionLocal

            session_factory = SessionLocal
        return LocalNotificationDispatcher(
            session_factory,
            engine or DeliveryEngine(DeliveryConfig.from_settings(settings)),
            workers=settings.notify_inline_workers,
        )
    if selected != "queue":
        raise ValueError(f"unsupported dispatch mode: {selected}")
    return ArqNotificationDispatcher(settings.notify_queue_name)


def get_dispatcher() -> NotificationDispatcher:
    # Process-wide dispatcher chosen by notify_dispatch_mode.
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = build_dispatcher()
    return _dispatcher


def set_dispatcher(dispatcher: NotificationDispatcher | None) -> None:
    global _dispatcher
    _dispatcher = dispatcher

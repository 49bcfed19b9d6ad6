from __future__ import annotations

import asyncio
import logging

from arq.connections import RedisSettings

from payrelay.core.config import DeliveryConfig, get_settings
from payrelay.core.logging import configure_logging
from payrelay.persistence.db import SessionLocal
from payrelay.services.notifications.delivery import DeliveryEngine, process_notification
from payrelay.services.notifications.dispatch import ArqNotificationDispatcher
from payrelay.services.notifications.retry import RetryScheduler

logger = logging.getLogger(__name__)


def _engine(ctx) -> DeliveryEngine:
    engine = ctx.get("delivery_engine")
    if engine is None:
        engine = DeliveryEngine(DeliveryConfig.from_settings())
        ctx["delivery_engine"] = engine
    return engine


async def deliver_notification(ctx, notification_id: str) -> str:
    # One claimed attempt per job; a lost claim means another worker owns it.
    outcome = await process_notification(SessionLocal, notification_id, _engine(ctx))
    return outcome.result if outcome is not None else "skipped"


async def _startup(ctx) -> None:
    # The retry sweep runs with the worker so failed notifications recover without API traffic.
    configure_logging()
    settings = get_settings()
    engine = _engine(ctx)
    scheduler = RetryScheduler(engine.config, engine, SessionLocal)
    ctx["scheduler_task"] = asyncio.create_task(
        scheduler.run_forever(
            settings.notify_sweep_interval_s,
            settings.notify_sweep_batch_size,
            dispatcher=ArqNotificationDispatcher(settings.notify_queue_name),
        )
    )


async def _shutdown(ctx) -> None:
    task = ctx.get("scheduler_task")
    if task:
        task.cancel()


class WorkerSettings:
    # Keep worker settings as class attributes for ARQ CLI compatibility.
    settings = get_settings()
    redis_settings = RedisSettings.from_dsn(settings.redis_url)
    queue_name = settings.notify_queue_name
    # Attempts are counted on the notification row, never by arq job retries.
    max_tries = 1
    functions = [deliver_notification]
    on_startup = _startup
    on_shutdown = _shutdown

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta
import logging
from typing import TYPE_CHECKING, Protocol

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from payrelay.core.config import DeliveryConfig
from payrelay.persistence.repos import notifications as notifications_repo
from payrelay.services.notifications.delivery import DeliveryEngine, DeliveryOutcome, process_notification

if TYPE_CHECKING:
    from payrelay.services.notifications.dispatch import NotificationDispatcher


logger = logging.getLogger(__name__)


class BackoffPolicy(Protocol):
    def delay_for(self, attempts: int) -> timedelta: ...


@dataclass(frozen=True)
class FixedBackoff:
    # Same cool-down after every failed attempt.
    floor_s: int = 300

    def delay_for(self, attempts: int) -> timedelta:
        return timedelta(seconds=max(0, int(self.floor_s)))


@dataclass(frozen=True)
class ExponentialBackoff:
    # base, 2*base, 4*base ... capped.
    base_s: int = 300
    cap_s: int = 3600

    def delay_for(self, attempts: int) -> timedelta:
        base = max(0, int(self.base_s))
        cap = max(base, int(self.cap_s))
        exponent = max(0, int(attempts) - 1)
        return timedelta(seconds=min(cap, base * (2**exponent)))


def backoff_from_config(config: DeliveryConfig) -> BackoffPolicy:
    if config.backoff_mode == "exponential":
        return ExponentialBackoff(base_s=config.backoff_floor_s, cap_s=config.backoff_max_s)
    if config.backoff_mode != "fixed":
        logger.warning("unknown_backoff_mode mode=%s falling back to fixed", config.backoff_mode)
    return FixedBackoff(floor_s=config.backoff_floor_s)


@dataclass(frozen=True)
class SweepResult:
    selected: int = 0
    processed: int = 0
    skipped: int = 0
    errors: int = 0
    outcomes: tuple[DeliveryOutcome, ...] = field(default_factory=tuple)


_SWEEP_ERROR = object()


class RetryScheduler:
    """Periodic resubmission of failed notifications.

    Eligible rows are ``failed``, below the attempt ceiling, and idle for at
    least ``backoff.delay_for(attempts)``. The predicate is evaluated in SQL
    with one cutoff per attempt count, so a notification is never selected
    before its own cool-down has elapsed. ``failed_permanent`` rows are never
    selected.
    """

    def __init__(
        self,
        config: DeliveryConfig,
        engine: DeliveryEngine,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        backoff: BackoffPolicy | None = None,
    ) -> None:
        self.config = config
        self.engine = engine
        self.session_factory = session_factory
        self.backoff = backoff or backoff_from_config(config)

    def due_before_by_attempts(self, now: datetime) -> dict[int, datetime]:
        return {
            attempts: now - self.backoff.delay_for(attempts)
            for attempts in range(1, self.config.max_attempts)
        }

    async def sweep(self, batch_size: int) -> SweepResult:
        now = self.engine.now()
        # Selection failures propagate: a sweep without storage is a reported error.
        async with self.session_factory() as session:
            notification_ids = await notifications_repo.select_retry_candidates(
                session,
                due_before_by_attempts=self.due_before_by_attempts(now),
                limit=batch_size,
            )
        if not notification_ids:
            return SweepResult()

        semaphore = asyncio.Semaphore(max(1, self.config.sweep_concurrency))

        async def _deliver_one(notification_id: str):
            async with semaphore:
                try:
                    return await process_notification(self.session_factory, notification_id, self.engine)
                except Exception:  # noqa: BLE001 - one notification must not abort the rest of the sweep.
                    logger.exception("notification_sweep_item_failed notification_id=%s", notification_id)
                    return _SWEEP_ERROR

        results = await asyncio.gather(*(_deliver_one(notification_id) for notification_id in notification_ids))
        outcomes = tuple(item for item in results if isinstance(item, DeliveryOutcome))
        errors = sum(1 for item in results if item is _SWEEP_ERROR)
        result = SweepResult(
            selected=len(notification_ids),
            processed=len(outcomes),
            skipped=len(notification_ids) - len(outcomes) - errors,
            errors=errors,
            outcomes=outcomes,
        )
        logger.info(
            "notification_sweep_completed selected=%s processed=%s skipped=%s errors=%s",
            result.selected,
            result.processed,
            result.skipped,
            result.errors,
        )
        return result

    async def requeue_stale_pending(self, dispatcher: "NotificationDispatcher", batch_size: int) -> int:
        # Pending rows nobody is working on: never enqueued, or their worker died mid-attempt.
        stale_before = self.engine.now() - timedelta(seconds=self.config.claim_lease_s)
        async with self.session_factory() as session:
            notification_ids = await notifications_repo.select_stale_pending(
                session, stale_before=stale_before, limit=batch_size
            )
        queued = 0
        for notification_id in notification_ids:
            if await dispatcher.enqueue(notification_id):
                queued += 1
        if notification_ids:
            logger.info("notification_stale_pending_requeued found=%s queued=%s", len(notification_ids), queued)
        return queued

    async def run_forever(
        self,
        interval_s: float,
        batch_size: int,
        *,
        dispatcher: "NotificationDispatcher | None" = None,
    ) -> None:
        while True:
            try:
                await self.sweep(batch_size)
                if dispatcher is not None:
                    await self.requeue_stale_pending(dispatcher, batch_size)
            except Exception:  # noqa: BLE001 - keep the scheduler alive and surface the failure in logs.
                logger.exception("notification_sweep_failed")
            await asyncio.sleep(max(0.1, float(interval_s)))

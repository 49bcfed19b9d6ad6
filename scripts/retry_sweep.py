from __future__ import annotations

import argparse
import asyncio

from payrelay.core.config import DeliveryConfig, get_settings
from payrelay.core.logging import configure_logging
from payrelay.persistence.db import SessionLocal, engine
from payrelay.services.notifications.delivery import DeliveryEngine
from payrelay.services.notifications.dispatch import ArqNotificationDispatcher
from payrelay.services.notifications.retry import RetryScheduler


async def _run_sweep(batch_size: int, requeue_pending: bool) -> None:
    config = DeliveryConfig.from_settings()
    scheduler = RetryScheduler(config, DeliveryEngine(config), SessionLocal)
    try:
        result = await scheduler.sweep(batch_size)
        print(f"selected={result.selected}")
        print(f"processed={result.processed}")
        print(f"skipped={result.skipped}")
        print(f"errors={result.errors}")
        if requeue_pending:
            queued = await scheduler.requeue_stale_pending(ArqNotificationDispatcher(), batch_size)
            print(f"requeued_pending={queued}")
    finally:
        await engine.dispose()


def main() -> None:
    # One sweep cycle for cron-style deployments without a long-running worker.
    parser = argparse.ArgumentParser(description="Retry failed notification deliveries once")
    parser.add_argument("--batch-size", type=int, default=None)
    parser.add_argument("--requeue-pending", action="store_true")
    args = parser.parse_args()

    configure_logging()
    batch_size = args.batch_size or get_settings().notify_sweep_batch_size
    asyncio.run(_run_sweep(max(1, batch_size), args.requeue_pending))


if __name__ == "__main__":
    main()

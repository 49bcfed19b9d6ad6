from __future__ import annotations

from arq import run_worker

from payrelay.core.logging import configure_logging
from payrelay.workers.notification_worker import WorkerSettings


def main() -> None:
    # Same as `arq payrelay.workers.notification_worker.WorkerSettings`.
    configure_logging()
    run_worker(WorkerSettings)


if __name__ == "__main__":
    main()

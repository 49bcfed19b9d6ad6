from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
import logging
from typing import AsyncIterator
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from payrelay.apps.api.errors import (
    http_exception_handler,
    payrelay_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from payrelay.apps.api.response import API_VERSION
from payrelay.apps.api.routes.callbacks import router as callbacks_router
from payrelay.apps.api.routes.clients import router as clients_router
from payrelay.apps.api.routes.health import router as health_router
from payrelay.apps.api.routes.notifications import router as notifications_router
from payrelay.apps.api.routes.operations import router as operations_router
from payrelay.core.config import get_settings
from payrelay.core.errors import PayRelayError
from payrelay.core.logging import configure_logging
from payrelay.services.notifications.dispatch import LocalNotificationDispatcher, get_dispatcher
from payrelay.services.notifications.retry import RetryScheduler


logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    dispatcher = get_dispatcher()
    app.state.dispatcher = dispatcher
    app.state.scheduler_task = None
    # Inline mode consumes deliveries and runs the retry sweep inside the API process.
    if isinstance(dispatcher, LocalNotificationDispatcher):
        dispatcher.start()
        settings = get_settings()
        scheduler = RetryScheduler(dispatcher.engine.config, dispatcher.engine, dispatcher.session_factory)
        app.state.scheduler_task = asyncio.create_task(
            scheduler.run_forever(
                settings.notify_sweep_interval_s,
                settings.notify_sweep_batch_size,
                dispatcher=dispatcher,
            )
        )
        logger.info(
            "inline_dispatcher_started workers=%s sweep_interval_s=%s",
            dispatcher.workers,
            settings.notify_sweep_interval_s,
        )
    try:
        yield
    finally:
        task = app.state.scheduler_task
        if task is not None:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        if isinstance(dispatcher, LocalNotificationDispatcher):
            await dispatcher.stop()


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(title="PayRelay API", version=API_VERSION, lifespan=lifespan)
    app.state.dispatcher = None

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):  # type: ignore[override]
        # Preserve incoming request IDs or assign a new one for traceability.
        request_id = request.headers.get("X-Request-Id") or str(uuid4())
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers.setdefault("X-Request-Id", request_id)
        return response

    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(PayRelayError, payrelay_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    app.include_router(health_router, prefix=f"/{API_VERSION}")
    app.include_router(callbacks_router, prefix=f"/{API_VERSION}")
    app.include_router(notifications_router, prefix=f"/{API_VERSION}")
    app.include_router(operations_router, prefix=f"/{API_VERSION}")
    app.include_router(clients_router, prefix=f"/{API_VERSION}")
    return app


app = create_app()

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import logging
from typing import Callable
from uuid import uuid4

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from payrelay.core.config import DeliveryConfig
from payrelay.core.errors import NoSigningSecretError
from payrelay.domain.models import Notification
from payrelay.domain.state import (
    NOTIFICATION_FAILED,
    NOTIFICATION_FAILED_PERMANENT,
    NOTIFICATION_PENDING,
    NOTIFICATION_SENT,
    NOTIFICATION_TERMINAL_STATUSES,
)
from payrelay.persistence.repos import notifications as notifications_repo
from payrelay.services import subscriptions
from payrelay.services.notifications.signing import serialize_payload, sign, signed_headers


logger = logging.getLogger(__name__)

RESULT_SENT = "sent"
RESULT_FAILED = "failed"
RESULT_FAILED_PERMANENT = "failed_permanent"
RESULT_ALREADY_TERMINAL = "already_terminal"
RESULT_NO_SIGNING_SECRET = "no_signing_secret"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class DeliveryOutcome:
    notification_id: str
    result: str
    status: str
    attempts: int
    status_code: int | None = None
    error: str | None = None

    @property
    def delivered(self) -> bool:
        return self.result == RESULT_SENT


class DeliveryEngine:
    """Performs exactly one delivery attempt per ``deliver`` call.

    The engine never locks; callers serialize attempts per notification through
    ``process_notification``. Every status transition is committed before
    ``deliver`` returns, so readers see either the pre-attempt row or the fully
    updated one.
    """

    def __init__(
        self,
        config: DeliveryConfig,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.config = config
        self._transport = transport
        self._clock = clock or _utc_now

    def now(self) -> datetime:
        return self._clock()

    def _outcome(self, notification: Notification, result: str, **extra) -> DeliveryOutcome:
        return DeliveryOutcome(
            notification_id=notification.id,
            result=result,
            status=notification.status,
            attempts=int(notification.attempts or 0),
            **extra,
        )

    async def _post(self, destination: str, payload_bytes: bytes, headers: dict[str, str]) -> httpx.Response:
        async with httpx.AsyncClient(timeout=self.config.timeout_s, transport=self._transport) as client:
            return await client.post(destination, content=payload_bytes, headers=headers)

    async def deliver(self, session: AsyncSession, notification: Notification) -> DeliveryOutcome:
        if notification.status in NOTIFICATION_TERMINAL_STATUSES:
            return self._outcome(notification, RESULT_ALREADY_TERMINAL)
        if int(notification.attempts or 0) >= self.config.max_attempts:
            # A crash during the final attempt leaves the row pending at the ceiling.
            notification.status = NOTIFICATION_FAILED_PERMANENT
            await session.commit()
            logger.warning(
                "notification_failed_permanent notification_id=%s attempts=%s error=%s",
                notification.id,
                notification.attempts,
                notification.last_error,
            )
            return self._outcome(notification, RESULT_FAILED_PERMANENT, error=notification.last_error)

        payload_bytes = serialize_payload(notification.payload or {})
        secret = await subscriptions.get_signing_secret(session, notification.client_id)
        try:
            signature = sign(secret, payload_bytes)
        except NoSigningSecretError:
            # Unverifiable webhooks are never sent; the attempt counter stays untouched.
            notification.status = NOTIFICATION_FAILED_PERMANENT
            notification.last_error = RESULT_NO_SIGNING_SECRET
            await session.commit()
            logger.warning(
                "notification_no_signing_secret notification_id=%s client_id=%s",
                notification.id,
                notification.client_id,
            )
            return self._outcome(notification, RESULT_NO_SIGNING_SECRET, error=RESULT_NO_SIGNING_SECRET)

        # Record the attempt before touching the network so a crash leaves it visible.
        started_at = self.now()
        notification.attempts = int(notification.attempts or 0) + 1
        notification.last_attempt_at = started_at
        notification.status = NOTIFICATION_PENDING
        await session.commit()

        attempt = int(notification.attempts)
        headers = signed_headers(
            signature=signature,
            timestamp=started_at.isoformat(),
            notification_id=notification.id,
            event_type=notification.kind,
            attempt=attempt,
        )
        try:
            response = await self._post(notification.destination, payload_bytes, headers)
        except Exception as exc:  # noqa: BLE001 - transport failures become a recorded failed attempt.
            error = f"{type(exc).__name__}: {exc}" if str(exc) else type(exc).__name__
            return await self._record_failure(session, notification, error=error)

        body = self._truncate(response.text)
        notification.last_response_status = int(response.status_code)
        notification.last_response_body = body
        if 200 <= response.status_code < 300:
            notification.status = NOTIFICATION_SENT
            notification.delivered_at = self.now()
            notification.last_error = None
            await session.commit()
            logger.info(
                "notification_delivered notification_id=%s attempt=%s status_code=%s",
                notification.id,
                attempt,
                response.status_code,
            )
            return self._outcome(notification, RESULT_SENT, status_code=int(response.status_code))
        return await self._record_failure(
            session,
            notification,
            error=f"http_{int(response.status_code)}",
            status_code=int(response.status_code),
        )

    async def _record_failure(
        self,
        session: AsyncSession,
        notification: Notification,
        *,
        error: str,
        status_code: int | None = None,
    ) -> DeliveryOutcome:
        notification.last_error = error
        if int(notification.attempts) >= self.config.max_attempts:
            notification.status = NOTIFICATION_FAILED_PERMANENT
            result = RESULT_FAILED_PERMANENT
            logger.warning(
                "notification_failed_permanent notification_id=%s attempts=%s error=%s",
                notification.id,
                notification.attempts,
                error,
            )
        else:
            notification.status = NOTIFICATION_FAILED
            result = RESULT_FAILED
            logger.info(
                "notification_delivery_failed notification_id=%s attempt=%s error=%s",
                notification.id,
                notification.attempts,
                error,
            )
        await session.commit()
        return self._outcome(notification, result, status_code=status_code, error=error)

    def _truncate(self, text: str | None) -> str | None:
        if not text:
            return None
        return text[: self.config.response_body_max_chars]


async def process_notification(
    session_factory: async_sessionmaker[AsyncSession],
    notification_id: str,
    engine: DeliveryEngine,
) -> DeliveryOutcome | None:
    """Claim, deliver and release one notification.

    Returns None when another worker holds the claim or the notification is
    already terminal; losing the claim is not an error.
    """
    token = uuid4().hex
    now = engine.now()
    lease_expired_before = now - timedelta(seconds=engine.config.claim_lease_s)
    async with session_factory() as session:
        claimed = await notifications_repo.try_claim(
            session,
            notification_id=notification_id,
            token=token,
            now=now,
            lease_expired_before=lease_expired_before,
        )
        if not claimed:
            logger.debug("notification_claim_skipped notification_id=%s", notification_id)
            return None
        try:
            notification = await notifications_repo.get_notification(session, notification_id)
            if notification is None:
                return None
            return await engine.deliver(session, notification)
        finally:
            await session.rollback()
            await notifications_repo.release_claim(session, notification_id=notification_id, token=token)

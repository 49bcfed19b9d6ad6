from __future__ import annotations

from datetime import datetime, timezone
import logging
from typing import Any, Callable
from uuid import uuid4

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from payrelay.core.config import get_settings
from payrelay.core.errors import NoSigningSecretError
from payrelay.services import subscriptions
from payrelay.services.notifications.signing import serialize_payload, sign, signed_headers


logger = logging.getLogger(__name__)

VALIDATION_KIND = "merchant_collection_validation"
VALIDATION_ACCEPT: dict[str, Any] = {"ResultCode": 0, "ResultDesc": "Accepted"}
VALIDATION_REJECT_UNKNOWN: dict[str, Any] = {"ResultCode": 1, "ResultDesc": "Rejected: Unknown recipient"}


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class MerchantValidator:
    """Answers the network's pre-payment validation request for a till.

    Unknown short codes are rejected. A client with a
    ``merchant_collection_validation`` endpoint gets the raw request, signed
    like any notification, and its JSON answer is relayed to the network.
    Everything else accepts: no endpoint, no signing secret, a timeout, a
    non-2xx reply or a reply without ``ResultCode``. Relays are synchronous
    and never stored or retried.
    """

    def __init__(
        self,
        *,
        timeout_s: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        if timeout_s is None:
            timeout_s = get_settings().notify_validation_timeout_s
        self.timeout_s = max(0.2, float(timeout_s))
        self._transport = transport
        self._clock = clock or _utc_now

    async def validate(self, session: AsyncSession, raw: Any) -> dict[str, Any]:
        try:
            return await self._answer(session, raw)
        except Exception:  # noqa: BLE001 - the network must get an answer inside its validation window.
            trans_id = raw.get("TransID") if isinstance(raw, dict) else None
            logger.exception("merchant_validation_failed trans_id=%s", trans_id)
            return dict(VALIDATION_ACCEPT)

    async def _answer(self, session: AsyncSession, raw: Any) -> dict[str, Any]:
        short_code = raw.get("BusinessShortCode") if isinstance(raw, dict) else None
        client = await subscriptions.get_client_by_short_code(session, str(short_code) if short_code else None)
        if client is None:
            logger.warning("merchant_validation_rejected reason=unknown_short_code short_code=%s", short_code)
            return dict(VALIDATION_REJECT_UNKNOWN)

        destination = await subscriptions.resolve_endpoint(session, client.id, VALIDATION_KIND)
        if destination is None:
            return dict(VALIDATION_ACCEPT)
        return await self._relay(session, client.id, destination, raw)

    async def _relay(
        self, session: AsyncSession, client_id: str, destination: str, raw: dict[str, Any]
    ) -> dict[str, Any]:
        payload_bytes = serialize_payload(raw)
        try:
            signature = sign(await subscriptions.get_signing_secret(session, client_id), payload_bytes)
        except NoSigningSecretError:
            logger.warning("merchant_validation_unsigned client_id=%s relay skipped", client_id)
            return dict(VALIDATION_ACCEPT)

        relay_id = uuid4().hex
        headers = signed_headers(
            signature=signature,
            timestamp=self._clock().isoformat(),
            notification_id=relay_id,
            event_type=VALIDATION_KIND,
            attempt=1,
        )
        async with httpx.AsyncClient(timeout=self.timeout_s, transport=self._transport) as client:
            response = await client.post(destination, content=payload_bytes, headers=headers)

        if not 200 <= response.status_code < 300:
            logger.info(
                "merchant_validation_relay_rejected client_id=%s relay_id=%s status_code=%s",
                client_id,
                relay_id,
                response.status_code,
            )
            return dict(VALIDATION_ACCEPT)
        try:
            answer = response.json()
        except ValueError:
            answer = None
        if not isinstance(answer, dict) or "ResultCode" not in answer:
            logger.info("merchant_validation_answer_invalid client_id=%s relay_id=%s", client_id, relay_id)
            return dict(VALIDATION_ACCEPT)
        logger.info(
            "merchant_validation_relayed client_id=%s relay_id=%s result_code=%s",
            client_id,
            relay_id,
            answer.get("ResultCode"),
        )
        return answer

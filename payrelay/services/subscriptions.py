from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Mapping

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from payrelay.core.errors import InvalidWebhookConfigError
from payrelay.domain.models import Client, ClientWebhookEndpoint
from payrelay.domain.state import NOTIFICATION_KINDS


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WebhookConfigView:
    # Never echo the signing secret back to callers.
    client_id: str
    enabled: bool
    has_secret: bool
    endpoints: dict[str, str]


def _validate_endpoint_url(url: str) -> str:
    # Accept only explicit web schemes so deliveries never target ambiguous destinations.
    normalized = url.strip()
    if normalized.startswith(("http://", "https://")):
        return normalized
    raise InvalidWebhookConfigError("webhook endpoint urls must start with http:// or https://")


async def get_client(session: AsyncSession, client_id: str) -> Client | None:
    return await session.get(Client, client_id)


async def get_client_by_short_code(session: AsyncSession, short_code: str | None) -> Client | None:
    if not short_code:
        return None
    result = await session.execute(select(Client).where(Client.short_code == str(short_code).strip()))
    return result.scalar_one_or_none()


async def get_signing_secret(session: AsyncSession, client_id: str) -> str | None:
    client = await get_client(session, client_id)
    if client is None or not client.webhook_secret:
        return None
    return client.webhook_secret


async def resolve_endpoint(session: AsyncSession, client_id: str, kind: str) -> str | None:
    # None means "not subscribed": unknown client, disabled webhooks, or no url for this kind.
    client = await get_client(session, client_id)
    if client is None or not client.webhooks_enabled:
        return None
    result = await session.execute(
        select(ClientWebhookEndpoint.url).where(
            ClientWebhookEndpoint.client_id == client_id,
            ClientWebhookEndpoint.kind == kind,
        )
    )
    url = result.scalar_one_or_none()
    return url or None


async def configure_webhooks(
    session: AsyncSession,
    *,
    client_id: str,
    endpoints: Mapping[str, str | None],
    secret: str | None = None,
    enabled: bool = True,
) -> WebhookConfigView | None:
    # Replace the endpoint set wholesale; a None url removes that kind.
    client = await get_client(session, client_id)
    if client is None:
        return None
    desired: dict[str, str] = {}
    for kind, url in endpoints.items():
        if kind not in NOTIFICATION_KINDS:
            raise InvalidWebhookConfigError(f"unsupported notification kind: {kind}")
        if url is None or not url.strip():
            continue
        desired[kind] = _validate_endpoint_url(url)

    current = {row.kind: row for row in client.endpoints}
    for kind, row in current.items():
        if kind not in desired:
            client.endpoints.remove(row)
    for kind, url in desired.items():
        if kind in current:
            current[kind].url = url
        else:
            client.endpoints.append(ClientWebhookEndpoint(kind=kind, url=url))
    if secret is not None:
        client.webhook_secret = secret.strip() or None
    client.webhooks_enabled = bool(enabled)
    await session.commit()
    logger.info("webhooks_configured client_id=%s kinds=%s", client_id, ",".join(sorted(desired)))
    return WebhookConfigView(
        client_id=client.id,
        enabled=client.webhooks_enabled,
        has_secret=bool(client.webhook_secret),
        endpoints=dict(sorted(desired.items())),
    )

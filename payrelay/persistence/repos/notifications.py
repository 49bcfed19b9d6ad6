from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import and_, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from payrelay.domain.models import Notification
from payrelay.domain.state import NOTIFICATION_FAILED, NOTIFICATION_PENDING, NOTIFICATION_TERMINAL_STATUSES


async def create_notification(
    session: AsyncSession,
    *,
    notification_id: str,
    client_id: str,
    operation_id: str | None,
    kind: str,
    payload: dict[str, Any],
    destination: str,
) -> Notification:
    row = Notification(
        id=notification_id,
        client_id=client_id,
        operation_id=operation_id,
        kind=kind,
        status=NOTIFICATION_PENDING,
        payload=payload,
        destination=destination,
        attempts=0,
    )
    session.add(row)
    return row


async def get_notification(session: AsyncSession, notification_id: str) -> Notification | None:
    return await session.get(Notification, notification_id)


async def get_client_notification(
    session: AsyncSession, client_id: str, notification_id: str
) -> Notification | None:
    result = await session.execute(
        select(Notification).where(Notification.id == notification_id, Notification.client_id == client_id)
    )
    return result.scalar_one_or_none()


async def list_for_operation(session: AsyncSession, operation_id: str) -> list[Notification]:
    result = await session.execute(
        select(Notification)
        .where(Notification.operation_id == operation_id)
        .order_by(Notification.created_at, Notification.id)
    )
    return list(result.scalars().all())


async def select_retry_candidates(
    session: AsyncSession,
    *,
    due_before_by_attempts: dict[int, datetime],
    limit: int,
) -> list[str]:
    # One predicate per attempt count keeps per-attempt backoff exact in SQL.
    if not due_before_by_attempts or limit <= 0:
        return []
    per_attempt = [
        and_(Notification.attempts == attempts, Notification.last_attempt_at <= due_before)
        for attempts, due_before in sorted(due_before_by_attempts.items())
    ]
    result = await session.execute(
        select(Notification.id)
        .where(Notification.status == NOTIFICATION_FAILED, or_(*per_attempt))
        .order_by(Notification.last_attempt_at.asc(), Notification.id.asc())
        .limit(limit)
    )
    return [str(row) for row in result.scalars().all()]


async def select_stale_pending(
    session: AsyncSession,
    *,
    stale_before: datetime,
    limit: int,
) -> list[str]:
    # Pending rows that nobody holds and nobody touched within the lease window.
    if limit <= 0:
        return []
    result = await session.execute(
        select(Notification.id)
        .where(
            Notification.status == NOTIFICATION_PENDING,
            Notification.claim_token.is_(None),
            Notification.updated_at <= stale_before,
        )
        .order_by(Notification.updated_at.asc(), Notification.id.asc())
        .limit(limit)
    )
    return [str(row) for row in result.scalars().all()]


async def try_claim(
    session: AsyncSession,
    *,
    notification_id: str,
    token: str,
    now: datetime,
    lease_expired_before: datetime,
) -> bool:
    # Conditional update: exactly one concurrent caller sees rowcount == 1.
    result = await session.execute(
        update(Notification)
        .where(
            Notification.id == notification_id,
            Notification.status.not_in(sorted(NOTIFICATION_TERMINAL_STATUSES)),
            or_(Notification.claim_token.is_(None), Notification.claimed_at <= lease_expired_before),
        )
        .values(claim_token=token, claimed_at=now)
        .execution_options(synchronize_session=False)
    )
    await session.commit()
    return int(result.rowcount or 0) == 1


async def release_claim(session: AsyncSession, *, notification_id: str, token: str) -> None:
    # Only the holder releases; a reclaimed lease belongs to someone else.
    await session.execute(
        update(Notification)
        .where(Notification.id == notification_id, Notification.claim_token == token)
        .values(claim_token=None, claimed_at=None)
        .execution_options(synchronize_session=False)
    )
    await session.commit()

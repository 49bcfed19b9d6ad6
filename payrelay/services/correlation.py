from __future__ import annotations

from datetime import datetime, timezone
import logging
from typing import Iterable, Mapping

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from payrelay.core.errors import AlreadyBoundError, OperationNotFoundError
from payrelay.domain.models import Operation, OperationCorrelation
from payrelay.domain.state import CORRELATION_KINDS
from payrelay.persistence.repos import operations as operations_repo


logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _normalize_correlation_ids(correlation_ids: Mapping[str, str | None]) -> dict[str, str]:
    # Drop empty values and reject kinds the store does not index.
    normalized: dict[str, str] = {}
    for kind, raw_value in correlation_ids.items():
        if kind not in CORRELATION_KINDS:
            raise ValueError(f"unsupported correlation kind: {kind}")
        if raw_value is None:
            continue
        value = str(raw_value).strip()
        if value:
            normalized[kind] = value
    if not normalized:
        raise ValueError("at least one correlation identifier is required")
    return normalized


async def resolve(
    session: AsyncSession,
    correlation_id: str | None,
    *,
    kinds: Iterable[str] | None = None,
) -> Operation | None:
    """Return the operation carrying ``correlation_id``, or None.

    Matching is exact on the identifier value across every indexed kind, so the
    caller does not need to know which identifier the network chose to echo.
    """
    if correlation_id is None:
        return None
    value = str(correlation_id).strip()
    if not value:
        return None
    return await operations_repo.find_by_correlation(session, value, set(kinds) if kinds else None)


async def resolve_any(
    session: AsyncSession,
    correlation_ids: Iterable[str | None],
) -> Operation | None:
    # Try every identifier a callback carries; the first hit wins.
    for correlation_id in correlation_ids:
        operation = await resolve(session, correlation_id)
        if operation is not None:
            return operation
    return None


async def bind(
    session: AsyncSession,
    operation_id: str,
    correlation_ids: Mapping[str, str | None],
    *,
    commit: bool = True,
) -> dict[str, str]:
    """Attach network correlation identifiers to an operation exactly once.

    Raises AlreadyBoundError when the operation was bound before; the existing
    binding is left untouched.
    """
    normalized = _normalize_correlation_ids(correlation_ids)
    operation = await operations_repo.get_operation(session, operation_id)
    if operation is None:
        raise OperationNotFoundError(operation_id)
    existing = await operations_repo.list_correlations(session, operation_id)
    if operation.correlated_at is not None or existing:
        raise AlreadyBoundError(operation_id)
    for kind, value in normalized.items():
        session.add(OperationCorrelation(operation_id=operation_id, id_kind=kind, value=value))
    operation.correlated_at = _utc_now()
    try:
        if commit:
            await session.commit()
        else:
            await session.flush()
    except IntegrityError as exc:
        # A concurrent duplicate submission won the race on the unique value index.
        await session.rollback()
        raise AlreadyBoundError(operation_id) from exc
    logger.info("operation_bound operation_id=%s kinds=%s", operation_id, ",".join(sorted(normalized)))
    return normalized


async def correlation_ids(session: AsyncSession, operation_id: str) -> dict[str, str]:
    rows = await operations_repo.list_correlations(session, operation_id)
    return {row.id_kind: row.value for row in rows}

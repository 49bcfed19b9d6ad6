from __future__ import annotations

from decimal import Decimal
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from payrelay.domain.models import Operation, OperationCorrelation


async def create_operation(
    session: AsyncSession,
    *,
    operation_id: str,
    client_id: str,
    kind: str,
    amount: Decimal,
    phone_number: str,
    account_reference: str | None,
    description: str | None,
    raw_request: dict[str, Any] | None,
    metadata_json: dict[str, Any],
    status: str = "pending",
) -> Operation:
    # Rows start pending; terminal statuses only arrive through callbacks.
    row = Operation(
        id=operation_id,
        client_id=client_id,
        kind=kind,
        amount=amount,
        phone_number=phone_number,
        account_reference=account_reference,
        description=description,
        raw_request=raw_request,
        metadata_json=metadata_json,
        status=status,
    )
    session.add(row)
    return row


async def get_operation(session: AsyncSession, operation_id: str) -> Operation | None:
    return await session.get(Operation, operation_id)


async def get_client_operation(session: AsyncSession, client_id: str, operation_id: str) -> Operation | None:
    # Return None for client mismatch to keep 404 semantics.
    result = await session.execute(
        select(Operation).where(Operation.id == operation_id, Operation.client_id == client_id)
    )
    return result.scalar_one_or_none()


async def find_by_correlation(
    session: AsyncSession,
    value: str,
    kinds: frozenset[str] | set[str] | None = None,
) -> Operation | None:
    stmt = (
        select(Operation)
        .join(OperationCorrelation, OperationCorrelation.operation_id == Operation.id)
        .where(OperationCorrelation.value == value)
    )
    if kinds:
        stmt = stmt.where(OperationCorrelation.id_kind.in_(sorted(kinds)))
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def list_correlations(session: AsyncSession, operation_id: str) -> list[OperationCorrelation]:
    result = await session.execute(
        select(OperationCorrelation)
        .where(OperationCorrelation.operation_id == operation_id)
        .order_by(OperationCorrelation.id)
    )
    return list(result.scalars().all())

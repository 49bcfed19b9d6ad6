from __future__ import annotations

from datetime import datetime
from decimal import Decimal, InvalidOperation
import logging
from typing import Any, Mapping
from uuid import uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from payrelay.core.errors import InvalidStatusTransitionError, OperationNotFoundError
from payrelay.domain.models import Notification, Operation
from payrelay.domain.state import OPERATION_KINDS, can_transition_operation
from payrelay.persistence.repos import notifications as notifications_repo
from payrelay.persistence.repos import operations as operations_repo
from payrelay.services import correlation


logger = logging.getLogger(__name__)


def normalize_phone_number(raw: str | int) -> str:
    # Store numbers in international form without a leading plus sign.
    value = str(raw).strip().replace(" ", "")
    if value.startswith("+"):
        value = value[1:]
    if value.startswith("0"):
        value = "254" + value[1:]
    return value


def parse_amount(raw: Any) -> Decimal:
    try:
        amount = Decimal(str(raw))
    except (InvalidOperation, ValueError) as exc:
        raise ValueError(f"invalid amount: {raw!r}") from exc
    if amount <= 0:
        raise ValueError("amount must be positive")
    return amount.quantize(Decimal("0.01"))


async def create_operation(
    session: AsyncSession,
    *,
    client_id: str,
    kind: str,
    amount: Any,
    phone_number: str | int,
    account_reference: str | None = None,
    description: str | None = None,
    raw_request: dict[str, Any] | None = None,
    metadata: dict[str, Any] | None = None,
    commit: bool = True,
) -> Operation:
    """Create the pending operation record that a submission will bind to."""
    if kind not in OPERATION_KINDS:
        raise ValueError(f"unsupported operation kind: {kind}")
    row = await operations_repo.create_operation(
        session,
        operation_id=uuid4().hex,
        client_id=client_id,
        kind=kind,
        amount=parse_amount(amount),
        phone_number=normalize_phone_number(phone_number),
        account_reference=account_reference,
        description=description,
        raw_request=raw_request,
        metadata_json=dict(metadata or {}),
    )
    if commit:
        await session.commit()
    else:
        await session.flush()
    return row


async def record_submission(
    session: AsyncSession,
    *,
    operation_id: str,
    correlation_ids: Mapping[str, str | None],
    raw_response: dict[str, Any] | None = None,
) -> Operation:
    """Store the network acknowledgement and bind its correlation ids once."""
    operation = await operations_repo.get_operation(session, operation_id)
    if operation is None:
        raise OperationNotFoundError(operation_id)
    await correlation.bind(session, operation_id, correlation_ids, commit=False)
    operation.raw_response = raw_response
    await session.commit()
    return operation


def apply_terminal_status(
    operation: Operation,
    status: str,
    *,
    result_code: int | None = None,
    result_desc: str | None = None,
    network_reference: str | None = None,
    network_completed_at: datetime | None = None,
    callback_data: dict[str, Any] | None = None,
) -> Operation:
    # Enforce pending -> terminal only; callers persist the row.
    if not can_transition_operation(operation.status, status):
        raise InvalidStatusTransitionError(operation.status, status)
    operation.status = status
    operation.result_code = result_code
    operation.result_desc = result_desc
    if network_reference:
        operation.network_reference = network_reference
    if network_completed_at is not None:
        operation.network_completed_at = network_completed_at
    if callback_data is not None:
        operation.callback_data = callback_data
    return operation


async def get_operation(session: AsyncSession, *, client_id: str, operation_id: str) -> Operation | None:
    return await operations_repo.get_client_operation(session, client_id, operation_id)


async def list_notifications_for_operation(
    session: AsyncSession, *, client_id: str, operation_id: str
) -> list[Notification] | None:
    operation = await operations_repo.get_client_operation(session, client_id, operation_id)
    if operation is None:
        return None
    return await notifications_repo.list_for_operation(session, operation_id)


async def get_notification_status(
    session: AsyncSession, *, client_id: str, notification_id: str
) -> Notification | None:
    return await notifications_repo.get_client_notification(session, client_id, notification_id)

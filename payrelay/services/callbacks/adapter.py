from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
import logging
from typing import Any, Awaitable, Callable, Iterable
from uuid import uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from payrelay.core.config import get_settings
from payrelay.core.errors import AlreadyBoundError
from payrelay.domain.models import Operation
from payrelay.domain.state import OPERATION_TERMINAL_STATUSES
from payrelay.persistence.repos import notifications as notifications_repo
from payrelay.services import correlation, operations, subscriptions
from payrelay.services.callbacks.items import CallbackItems, parse_compact_timestamp, parse_network_datetime
from payrelay.services.notifications.dispatch import NotificationDispatcher


logger = logging.getLogger(__name__)

NETWORK_ACK: dict[str, Any] = {"ResultCode": 0, "ResultDesc": "Accepted"}

CALLBACK_PUSH_PAYMENT = "push_payment"
CALLBACK_DISBURSEMENT_RESULT = "disbursement_result"
CALLBACK_DISBURSEMENT_TIMEOUT = "disbursement_timeout"
CALLBACK_MERCHANT_COLLECTION = "merchant_collection"
CALLBACK_KINDS = frozenset(
    {
        CALLBACK_PUSH_PAYMENT,
        CALLBACK_DISBURSEMENT_RESULT,
        CALLBACK_DISBURSEMENT_TIMEOUT,
        CALLBACK_MERCHANT_COLLECTION,
    }
)

ACK_PROCESSED = "processed"
ACK_UNRESOLVED = "unresolved"
ACK_DUPLICATE = "duplicate"
ACK_IGNORED = "ignored"
ACK_ERROR = "error"


@dataclass(frozen=True)
class CallbackAck:
    # The network only ever sees NETWORK_ACK; the rest is for logs and tests.
    result: str
    operation_id: str | None = None
    notification_id: str | None = None
    enqueued: bool = False


def _section(raw: Any, *path: str) -> dict[str, Any]:
    current = raw
    for key in path:
        if not isinstance(current, dict):
            return {}
        current = current.get(key)
    return current if isinstance(current, dict) else {}


def _as_int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(str(value).strip())
    except ValueError:
        return None


def _as_text(value: Any) -> str | None:
    if value is None:
        return None
    rendered = str(value).strip()
    return rendered or None


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _amount(value: Decimal | None) -> str | None:
    if value is None:
        return None
    return str(Decimal(value).quantize(Decimal("0.01")))


def status_for_result_code(result_code: int | None, cancel_codes: Iterable[int] = ()) -> str:
    if result_code == 0:
        return "completed"
    if result_code is not None and result_code in set(cancel_codes):
        return "cancelled"
    return "failed"


class CallbackAdapter:
    """Turns raw network callbacks into operation updates and notifications.

    ``handle`` always produces an acknowledgement. Unknown correlation ids,
    duplicate callbacks for finished operations and internal failures are
    logged and acknowledged; the network never sees an error. Deliveries are
    handed to the dispatcher after the transaction commits and are never
    awaited here.
    """

    def __init__(
        self,
        dispatcher: NotificationDispatcher,
        *,
        cancel_result_codes: Iterable[int] | None = None,
    ) -> None:
        self.dispatcher = dispatcher
        if cancel_result_codes is None:
            cancel_result_codes = get_settings().network_cancel_result_codes
        self.cancel_result_codes = frozenset(int(code) for code in cancel_result_codes)
        self._handlers: dict[str, Callable[[AsyncSession, dict[str, Any]], Awaitable[CallbackAck]]] = {
            CALLBACK_PUSH_PAYMENT: self._handle_push_payment,
            CALLBACK_DISBURSEMENT_RESULT: self._handle_disbursement_result,
            CALLBACK_DISBURSEMENT_TIMEOUT: self._handle_disbursement_timeout,
            CALLBACK_MERCHANT_COLLECTION: self._handle_merchant_collection,
        }

    async def handle(self, session: AsyncSession, kind: str, raw: Any) -> CallbackAck:
        handler = self._handlers.get(kind)
        if handler is None:
            logger.warning("callback_kind_unknown kind=%s", kind)
            return CallbackAck(ACK_IGNORED)
        if not isinstance(raw, dict):
            logger.warning("callback_payload_invalid kind=%s type=%s", kind, type(raw).__name__)
            return CallbackAck(ACK_IGNORED)
        try:
            ack = await handler(session, raw)
            if ack.notification_id is not None:
                enqueued = await self.dispatcher.enqueue(ack.notification_id)
                ack = CallbackAck(ack.result, ack.operation_id, ack.notification_id, enqueued=enqueued)
        except Exception:  # noqa: BLE001 - the network must always receive an acknowledgement.
            logger.exception("callback_processing_failed kind=%s", kind)
            try:
                await session.rollback()
            except Exception:  # noqa: BLE001 - a lost connection must not turn into a failed acknowledgement.
                logger.exception("callback_rollback_failed kind=%s", kind)
            return CallbackAck(ACK_ERROR)
        logger.info(
            "callback_handled kind=%s result=%s operation_id=%s notification_id=%s",
            kind,
            ack.result,
            ack.operation_id,
            ack.notification_id,
        )
        return ack

    async def _resolve(self, session: AsyncSession, kind: str, ids: list[Any]) -> Operation | None:
        operation = await correlation.resolve_any(session, [_as_text(value) for value in ids])
        if operation is None:
            logger.warning("callback_unresolved kind=%s correlation_ids=%s", kind, [_as_text(v) for v in ids])
            return None
        if operation.kind != kind:
            logger.warning(
                "callback_kind_mismatch operation_id=%s expected=%s actual=%s", operation.id, kind, operation.kind
            )
            return None
        return operation

    def _is_duplicate(self, operation: Operation, callback_kind: str) -> bool:
        if operation.status in OPERATION_TERMINAL_STATUSES:
            logger.info(
                "callback_duplicate kind=%s operation_id=%s status=%s", callback_kind, operation.id, operation.status
            )
            return True
        return False

    async def _handle_push_payment(self, session: AsyncSession, raw: dict[str, Any]) -> CallbackAck:
        callback = _section(raw, "Body", "stkCallback")
        operation = await self._resolve(
            session, "push_payment", [callback.get("CheckoutRequestID"), callback.get("MerchantRequestID")]
        )
        if operation is None:
            return CallbackAck(ACK_UNRESOLVED)
        if self._is_duplicate(operation, CALLBACK_PUSH_PAYMENT):
            return CallbackAck(ACK_DUPLICATE, operation.id)

        result_code = _as_int(callback.get("ResultCode"))
        status = status_for_result_code(result_code, self.cancel_result_codes)
        reference = None
        completed_at = None
        if status == "completed":
            items = CallbackItems.from_pairs(_section(callback, "CallbackMetadata").get("Item"), name_key="Name")
            reference = items.text("MpesaReceiptNumber")
            completed_at = parse_compact_timestamp(items.get("TransactionDate"))
        operations.apply_terminal_status(
            operation,
            status,
            result_code=result_code,
            result_desc=_as_text(callback.get("ResultDesc")),
            network_reference=reference,
            network_completed_at=completed_at,
            callback_data=raw,
        )
        payload = await self._payload(session, operation, "push_payment")
        notification_id = await self._create_notification(session, operation, "push_payment", payload)
        await session.commit()
        return CallbackAck(ACK_PROCESSED, operation.id, notification_id)

    async def _handle_disbursement_result(self, session: AsyncSession, raw: dict[str, Any]) -> CallbackAck:
        result = _section(raw, "Result")
        operation = await self._resolve(
            session, "disbursement", [result.get("ConversationID"), result.get("OriginatorConversationID")]
        )
        if operation is None:
            return CallbackAck(ACK_UNRESOLVED)
        if self._is_duplicate(operation, CALLBACK_DISBURSEMENT_RESULT):
            return CallbackAck(ACK_DUPLICATE, operation.id)

        result_code = _as_int(result.get("ResultCode"))
        # Cancellation codes describe a dismissed customer prompt; disbursements have none.
        status = status_for_result_code(result_code)
        reference = None
        completed_at = None
        if status == "completed":
            items = CallbackItems.from_pairs(
                _section(result, "ResultParameters").get("ResultParameter"), name_key="Key"
            )
            reference = (
                items.text("TransactionReceipt")
                or items.text("TransactionID")
                or _as_text(result.get("TransactionID"))
            )
            completed_at = parse_network_datetime(items.get("TransactionCompletedDateTime"))
        operations.apply_terminal_status(
            operation,
            status,
            result_code=result_code,
            result_desc=_as_text(result.get("ResultDesc")),
            network_reference=reference,
            network_completed_at=completed_at,
            callback_data=raw,
        )
        payload = await self._payload(session, operation, "disbursement")
        notification_id = await self._create_notification(session, operation, "disbursement", payload)
        await session.commit()
        return CallbackAck(ACK_PROCESSED, operation.id, notification_id)

    async def _handle_disbursement_timeout(self, session: AsyncSession, raw: dict[str, Any]) -> CallbackAck:
        result = _section(raw, "Result")
        operation = await self._resolve(
            session, "disbursement", [result.get("ConversationID"), result.get("OriginatorConversationID")]
        )
        if operation is None:
            return CallbackAck(ACK_UNRESOLVED)
        if self._is_duplicate(operation, CALLBACK_DISBURSEMENT_TIMEOUT):
            return CallbackAck(ACK_DUPLICATE, operation.id)

        operations.apply_terminal_status(
            operation,
            "timed_out",
            result_code=_as_int(result.get("ResultCode")),
            result_desc=_as_text(result.get("ResultDesc")),
            callback_data=raw,
        )
        payload = await self._payload(session, operation, "disbursement_timeout")
        notification_id = await self._create_notification(session, operation, "disbursement_timeout", payload)
        await session.commit()
        return CallbackAck(ACK_PROCESSED, operation.id, notification_id)

    async def _handle_merchant_collection(self, session: AsyncSession, raw: dict[str, Any]) -> CallbackAck:
        trans_id = _as_text(raw.get("TransID"))
        if trans_id is None:
            logger.warning("callback_unresolved kind=merchant_collection reason=missing_trans_id")
            return CallbackAck(ACK_UNRESOLVED)
        completed_at = parse_compact_timestamp(raw.get("TransTime"))

        operation = await correlation.resolve(session, trans_id)
        if operation is not None:
            if operation.kind != "merchant_collection":
                logger.warning(
                    "callback_kind_mismatch operation_id=%s expected=merchant_collection actual=%s",
                    operation.id,
                    operation.kind,
                )
                return CallbackAck(ACK_UNRESOLVED)
            if self._is_duplicate(operation, CALLBACK_MERCHANT_COLLECTION):
                return CallbackAck(ACK_DUPLICATE, operation.id)
        else:
            # Unsolicited payment into a client's till: record it as a completed collection.
            client = await subscriptions.get_client_by_short_code(session, _as_text(raw.get("BusinessShortCode")))
            if client is None:
                logger.warning(
                    "callback_unresolved kind=merchant_collection trans_id=%s short_code=%s",
                    trans_id,
                    raw.get("BusinessShortCode"),
                )
                return CallbackAck(ACK_UNRESOLVED)
            operation = await operations.create_operation(
                session,
                client_id=client.id,
                kind="merchant_collection",
                amount=raw.get("TransAmount"),
                phone_number=_as_text(raw.get("MSISDN")) or "",
                account_reference=_as_text(raw.get("BillRefNumber")),
                commit=False,
            )
            try:
                await correlation.bind(session, operation.id, {"network_transaction_id": trans_id}, commit=False)
            except AlreadyBoundError:
                # A concurrent confirmation for the same TransID recorded it first.
                logger.info("callback_duplicate kind=merchant_collection trans_id=%s", trans_id)
                return CallbackAck(ACK_DUPLICATE)

        operations.apply_terminal_status(
            operation,
            "completed",
            result_code=0,
            result_desc=_as_text(raw.get("TransactionType")) or "Completed",
            network_reference=trans_id,
            network_completed_at=completed_at,
            callback_data=raw,
        )
        payload = await self._payload(session, operation, "merchant_collection")
        payload["raw_callback"] = raw
        notification_id = await self._create_notification(session, operation, "merchant_collection", payload)
        await session.commit()
        return CallbackAck(ACK_PROCESSED, operation.id, notification_id)

    async def _payload(self, session: AsyncSession, operation: Operation, notification_kind: str) -> dict[str, Any]:
        # Snapshot taken once; JSON-safe so the stored payload is the signed body.
        return {
            "event_type": notification_kind,
            "operation_id": operation.id,
            "operation_kind": operation.kind,
            "status": operation.status,
            "result_code": operation.result_code,
            "result_desc": operation.result_desc,
            "network_reference": operation.network_reference,
            "network_completed_at": _iso(operation.network_completed_at),
            "amount": _amount(operation.amount),
            "phone_number": operation.phone_number,
            "account_reference": operation.account_reference,
            "correlation_ids": await correlation.correlation_ids(session, operation.id),
            "metadata": dict(operation.metadata_json or {}),
        }

    async def _create_notification(
        self,
        session: AsyncSession,
        operation: Operation,
        notification_kind: str,
        payload: dict[str, Any],
    ) -> str | None:
        destination = await subscriptions.resolve_endpoint(session, operation.client_id, notification_kind)
        if destination is None:
            logger.info(
                "notification_not_subscribed client_id=%s kind=%s operation_id=%s",
                operation.client_id,
                notification_kind,
                operation.id,
            )
            return None
        row = await notifications_repo.create_notification(
            session,
            notification_id=uuid4().hex,
            client_id=operation.client_id,
            operation_id=operation.id,
            kind=notification_kind,
            payload=payload,
            destination=destination,
        )
        return row.id

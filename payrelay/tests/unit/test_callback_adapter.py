from __future__ import annotations

import pytest

from payrelay.services.callbacks import CallbackAdapter


def _stk(result_code: int, checkout_id: str = "ws_CO_191220191020363925") -> dict:
    return {
        "Body": {
            "stkCallback": {
                "MerchantRequestID": "29115-34620561-1",
                "CheckoutRequestID": checkout_id,
                "ResultCode": result_code,
                "ResultDesc": "The balance is insufficient for the transaction.",
            }
        }
    }


class BrokenDispatcher:
    async def enqueue(self, notification_id: str) -> bool:
        raise RuntimeError("queue unavailable")


@pytest.mark.asyncio
async def test_unknown_kind_and_non_object_payloads_are_ignored(session, recording_dispatcher) -> None:
    adapter = CallbackAdapter(recording_dispatcher)
    assert (await adapter.handle(session, "refund", {"any": "thing"})).result == "ignored"
    assert (await adapter.handle(session, "push_payment", ["not", "an", "object"])).result == "ignored"


@pytest.mark.asyncio
async def test_processed_then_duplicate(session, make_client, make_submitted_operation, recording_dispatcher) -> None:
    await make_client()
    operation = await make_submitted_operation()
    adapter = CallbackAdapter(recording_dispatcher)

    first = await adapter.handle(session, "push_payment", _stk(1))
    assert first.result == "processed"
    assert first.operation_id == operation.id
    assert first.enqueued
    assert recording_dispatcher.enqueued == [first.notification_id]
    # 1 is a cancel code for push payments.
    assert operation.status == "cancelled"

    second = await adapter.handle(session, "push_payment", _stk(0))
    assert second.result == "duplicate"
    assert second.notification_id is None
    assert operation.status == "cancelled"


@pytest.mark.asyncio
async def test_custom_cancel_codes(session, make_client, make_submitted_operation, recording_dispatcher) -> None:
    await make_client()
    operation = await make_submitted_operation()
    adapter = CallbackAdapter(recording_dispatcher, cancel_result_codes=[1032])

    await adapter.handle(session, "push_payment", _stk(1))

    assert operation.status == "failed"
    assert operation.result_desc == "The balance is insufficient for the transaction."


@pytest.mark.asyncio
async def test_unresolved_callback(session, make_client, recording_dispatcher) -> None:
    await make_client()
    ack = await CallbackAdapter(recording_dispatcher).handle(session, "push_payment", _stk(0, "ws_CO_unknown"))
    assert ack.result == "unresolved"
    assert recording_dispatcher.enqueued == []


@pytest.mark.asyncio
async def test_internal_failure_is_reported_as_error_ack(session, make_client, make_submitted_operation) -> None:
    await make_client()
    await make_submitted_operation()

    ack = await CallbackAdapter(BrokenDispatcher()).handle(session, "push_payment", _stk(0))

    assert ack.result == "error"


@pytest.mark.asyncio
async def test_failed_rollback_still_produces_error_ack(
    session, make_client, make_submitted_operation, monkeypatch
) -> None:
    await make_client()
    await make_submitted_operation()

    async def lost_connection() -> None:
        raise ConnectionError("storage went away")

    monkeypatch.setattr(session, "rollback", lost_connection)
    ack = await CallbackAdapter(BrokenDispatcher()).handle(session, "push_payment", _stk(0))

    assert ack.result == "error"

from __future__ import annotations

import pytest
from sqlalchemy import func, select

from payrelay.core.errors import AlreadyBoundError, OperationNotFoundError
from payrelay.domain.models import OperationCorrelation
from payrelay.persistence.db import SessionLocal
from payrelay.services import correlation, operations


async def _create(session, client_id: str = "client_a"):
    return await operations.create_operation(
        session, client_id=client_id, kind="push_payment", amount="10", phone_number="0712345678"
    )


@pytest.mark.asyncio
async def test_resolve_matches_every_indexed_kind(session, make_client) -> None:
    await make_client()
    operation = await _create(session)
    await correlation.bind(
        session,
        operation.id,
        {"checkout_request_id": "ws_CO_1", "merchant_request_id": "29115-1", "conversation_id": None},
    )

    by_checkout = await correlation.resolve(session, "ws_CO_1")
    by_merchant = await correlation.resolve(session, " 29115-1 ")
    assert by_checkout is not None and by_checkout.id == operation.id
    assert by_merchant is not None and by_merchant.id == operation.id
    assert await correlation.resolve(session, "ws_CO_unknown") is None
    assert await correlation.resolve(session, "") is None
    assert await correlation.resolve(session, "ws_CO_1", kinds={"conversation_id"}) is None
    assert await correlation.correlation_ids(session, operation.id) == {
        "checkout_request_id": "ws_CO_1",
        "merchant_request_id": "29115-1",
    }


@pytest.mark.asyncio
async def test_bind_twice_raises_and_keeps_first_binding(session, make_client) -> None:
    await make_client()
    operation = await _create(session)
    await correlation.bind(session, operation.id, {"checkout_request_id": "ws_CO_first"})
    before = await correlation.correlation_ids(session, operation.id)

    with pytest.raises(AlreadyBoundError) as excinfo:
        await correlation.bind(session, operation.id, {"checkout_request_id": "ws_CO_second"})
    assert excinfo.value.operation_id == operation.id

    async with SessionLocal() as fresh:
        assert await correlation.correlation_ids(fresh, operation.id) == before
        assert await correlation.resolve(fresh, "ws_CO_second") is None
        reloaded = await correlation.resolve(fresh, "ws_CO_first")
        assert reloaded is not None
        assert reloaded.status == "pending"
        assert reloaded.correlated_at is not None


@pytest.mark.asyncio
async def test_bind_rejects_value_owned_by_another_operation(session, make_client) -> None:
    await make_client()
    first = await _create(session)
    second = await _create(session)
    second_id = second.id
    await correlation.bind(session, first.id, {"conversation_id": "AG_1"})

    with pytest.raises(AlreadyBoundError):
        await correlation.bind(session, second_id, {"conversation_id": "AG_1"})

    async with SessionLocal() as fresh:
        count = await fresh.scalar(select(func.count()).select_from(OperationCorrelation))
        assert count == 1
        assert await correlation.correlation_ids(fresh, second_id) == {}


@pytest.mark.asyncio
async def test_bind_unknown_operation(session) -> None:
    with pytest.raises(OperationNotFoundError):
        await correlation.bind(session, "op_missing", {"checkout_request_id": "ws_CO_1"})


@pytest.mark.asyncio
async def test_bind_validates_identifiers(session, make_client) -> None:
    await make_client()
    operation = await _create(session)
    with pytest.raises(ValueError):
        await correlation.bind(session, operation.id, {"receipt": "NLJ7RT61SV"})
    with pytest.raises(ValueError):
        await correlation.bind(session, operation.id, {"checkout_request_id": "  "})

from __future__ import annotations

import json

import httpx
import pytest

from payrelay.services.callbacks import MerchantValidator
from payrelay.services.notifications.signing import (
    HEADER_EVENT_TYPE,
    HEADER_SIGNATURE,
    serialize_payload,
    verify_signature,
)
from payrelay.tests.utils.webhooks import CLIENT_SECRET, CLIENT_SHORT_CODE, HOOK_BASE


VALIDATE_URL = f"{HOOK_BASE}/c2b-validate"
ACCEPT = {"ResultCode": 0, "ResultDesc": "Accepted"}


def _request(short_code: str = CLIENT_SHORT_CODE) -> dict:
    return {
        "TransactionType": "Pay Bill",
        "TransID": "RKTQDM7W6S",
        "TransAmount": "10",
        "BusinessShortCode": short_code,
        "BillRefNumber": "invoice008",
        "MSISDN": "254708374149",
    }


@pytest.fixture
def validator(receiver, clock) -> MerchantValidator:
    return MerchantValidator(timeout_s=1.0, transport=receiver.transport, clock=clock)


@pytest.mark.asyncio
async def test_unknown_short_code_is_rejected(session, validator, make_client, receiver) -> None:
    await make_client()

    assert await validator.validate(session, _request("999999")) == {
        "ResultCode": 1,
        "ResultDesc": "Rejected: Unknown recipient",
    }
    assert (await validator.validate(session, ["not", "an", "object"]))["ResultCode"] == 1
    assert receiver.requests == []


@pytest.mark.asyncio
async def test_client_without_validation_endpoint_is_accepted(session, validator, make_client, receiver) -> None:
    await make_client()

    assert await validator.validate(session, _request()) == ACCEPT
    assert receiver.requests == []


@pytest.mark.asyncio
async def test_client_answer_is_relayed(session, validator, make_client, receiver) -> None:
    await make_client(endpoints={"merchant_collection_validation": VALIDATE_URL})
    answer = {"ResultCode": "C2B00012", "ResultDesc": "Rejected: invalid account"}
    receiver.body = json.dumps(answer)

    assert await validator.validate(session, _request()) == answer

    (request,) = receiver.requests
    assert str(request.url) == VALIDATE_URL
    assert request.content == serialize_payload(_request())
    assert verify_signature(CLIENT_SECRET, request.content, request.headers[HEADER_SIGNATURE])
    assert request.headers[HEADER_EVENT_TYPE] == "merchant_collection_validation"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("status_code", "body", "error"),
    [
        (500, json.dumps({"ResultCode": 1}), None),
        (200, "not json", None),
        (200, json.dumps({"accepted": False}), None),
        (200, "", httpx.ReadTimeout("timed out")),
    ],
)
async def test_unusable_client_answer_accepts(
    session, validator, make_client, receiver, status_code, body, error
) -> None:
    await make_client(endpoints={"merchant_collection_validation": VALIDATE_URL})
    receiver.status_code = status_code
    receiver.body = body
    receiver.error = error

    assert await validator.validate(session, _request()) == ACCEPT
    assert len(receiver.requests) == 1


@pytest.mark.asyncio
async def test_unsigned_relay_is_skipped(session, validator, make_client, receiver) -> None:
    await make_client(secret=None, endpoints={"merchant_collection_validation": VALIDATE_URL})

    assert await validator.validate(session, _request()) == ACCEPT
    assert receiver.requests == []

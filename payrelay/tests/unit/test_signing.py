from __future__ import annotations

import hashlib
import hmac

import pytest

from payrelay.core.errors import NoSigningSecretError
from payrelay.services.notifications.signing import serialize_payload, sign, verify_signature


def test_serialize_payload_is_canonical() -> None:
    # Key order and whitespace never leak into the transmitted bytes.
    first = serialize_payload({"b": 1, "a": {"y": 2, "x": "Kes"}})
    second = serialize_payload({"a": {"x": "Kes", "y": 2}, "b": 1})
    assert first == second == b'{"a":{"x":"Kes","y":2},"b":1}'


def test_serialize_payload_keeps_utf8() -> None:
    assert serialize_payload({"name": "Wanjiků"}) == '{"name":"Wanjiků"}'.encode("utf-8")


def test_sign_is_deterministic_hmac_sha256() -> None:
    body = serialize_payload({"operation_id": "op_1", "status": "completed"})
    expected = hmac.new(b"secret", body, hashlib.sha256).hexdigest()
    assert sign("secret", body) == expected
    assert sign("secret", body) == sign("secret", body)


def test_single_byte_change_changes_signature() -> None:
    body = bytearray(serialize_payload({"amount": "100.00"}))
    original = sign("secret", bytes(body))
    body[-3] = ord("1")
    assert sign("secret", bytes(body)) != original


@pytest.mark.parametrize("secret", [None, "", "   "])
def test_sign_requires_secret(secret) -> None:
    with pytest.raises(NoSigningSecretError):
        sign(secret, b"{}")


def test_verify_signature_round_trip_and_tamper() -> None:
    body = serialize_payload({"operation_id": "op_1"})
    signature = sign("secret", body)
    assert verify_signature("secret", body, signature)
    assert verify_signature("secret", body, signature.upper())
    assert not verify_signature("other", body, signature)
    assert not verify_signature("secret", body + b" ", signature)
    assert not verify_signature("secret", body, None)
    assert not verify_signature(None, body, signature)

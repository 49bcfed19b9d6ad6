from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from payrelay.services.callbacks import ABSENT, CallbackItems, status_for_result_code
from payrelay.services.callbacks.items import parse_compact_timestamp, parse_network_datetime


STK_ITEMS = [
    {"Name": "Amount", "Value": 1.0},
    {"Name": "MpesaReceiptNumber", "Value": "NLJ7RT61SV"},
    {"Name": "Balance"},
    {"Name": "TransactionDate", "Value": 20191219102115},
    {"Name": "PhoneNumber", "Value": 254708374149},
]


def test_lookup_by_name() -> None:
    items = CallbackItems.from_pairs(STK_ITEMS)
    assert items.get("MpesaReceiptNumber") == "NLJ7RT61SV"
    assert items.text("PhoneNumber") == "254708374149"
    assert "Amount" in items
    assert len(items) == 5


def test_missing_key_is_absent_not_error() -> None:
    items = CallbackItems.from_pairs(STK_ITEMS)
    assert items.get("TransactionID") is ABSENT
    assert items.text("TransactionID") is None
    # Present name without a value is absent too.
    assert items.get("Balance") is ABSENT
    assert not ABSENT


def test_key_value_pairs_and_single_object() -> None:
    items = CallbackItems.from_pairs({"Key": "TransactionID", "Value": "NLJ41HAY6Q"}, name_key="Key")
    assert items.names() == ["TransactionID"]
    assert items.text("TransactionID") == "NLJ41HAY6Q"


@pytest.mark.parametrize("raw", [None, "junk", 42, [None, "x", {"Value": 1}]])
def test_malformed_lists_yield_empty_lookup(raw) -> None:
    items = CallbackItems.from_pairs(raw)
    assert len(items) == 0
    assert items.get("anything") is ABSENT


def test_parse_compact_timestamp() -> None:
    parsed = parse_compact_timestamp(20191219102115)
    assert parsed == datetime(2019, 12, 19, 10, 21, 15, tzinfo=timezone(timedelta(hours=3)))
    assert parsed.astimezone(timezone.utc).hour == 7
    assert parse_compact_timestamp("2019121910") is None
    assert parse_compact_timestamp(ABSENT) is None
    assert parse_compact_timestamp("20191340102115") is None


def test_parse_network_datetime_formats() -> None:
    eat = timezone(timedelta(hours=3))
    assert parse_network_datetime("19.12.2019 11:45:50") == datetime(2019, 12, 19, 11, 45, 50, tzinfo=eat)
    assert parse_network_datetime("2019-12-19T08:45:50Z") == datetime(2019, 12, 19, 8, 45, 50, tzinfo=timezone.utc)
    assert parse_network_datetime("20191219114550") == datetime(2019, 12, 19, 11, 45, 50, tzinfo=eat)
    assert parse_network_datetime("not a date") is None
    assert parse_network_datetime(ABSENT) is None


@pytest.mark.parametrize(
    ("code", "expected"),
    [(0, "completed"), (1032, "cancelled"), (1, "cancelled"), (2001, "failed"), (None, "failed")],
)
def test_result_code_mapping(code, expected) -> None:
    assert status_for_result_code(code, {1, 1032}) == expected


def test_result_code_mapping_without_cancel_codes() -> None:
    assert status_for_result_code(1) == "failed"

"""Event decoder tests — notification payload → ChangeEvent | DecodeFailure.

Learn: decode_notification() is the boundary where untrusted trigger
output enters the relay. It must never raise: anything it can't parse
becomes a DecodeFailure holding the exact raw payload.
"""

import json

import pytest
from pydantic import ValidationError

from orderrelay.realtime.events import (
    ChangeEvent,
    DecodeFailure,
    Operation,
    decode_notification,
)


@pytest.mark.parametrize(
    "payload",
    [
        {"operation": "insert", "table": "orders", "row": {"id": 7, "customer_name": "Ann", "product_name": "Lamp", "status": "pending"}},
        {"operation": "update", "table": "orders", "row": {"id": 7, "status": "shipped", "updated_at": "2026-10-19T09:30:00+00:00"}},
        {"operation": "delete", "table": "orders", "row": {"id": 7}},
    ],
)
def test_valid_payload_reserializes_unchanged(payload):
    """operation/table/row survive decode → to_wire byte-for-value."""
    result = decode_notification(json.dumps(payload))
    assert isinstance(result, ChangeEvent)

    wire = json.loads(result.to_wire())
    assert wire["operation"] == payload["operation"]
    assert wire["table"] == payload["table"]
    assert wire["row"] == payload["row"]


def test_uppercase_operation_is_normalized():
    """TG_OP spells operations in upper case."""
    result = decode_notification('{"operation": "INSERT", "table": "orders", "row": {"id": 1}}')
    assert isinstance(result, ChangeEvent)
    assert result.operation is Operation.INSERT


def test_extra_payload_keys_are_relayed():
    payload = {"operation": "insert", "table": "orders", "row": {"id": 1}, "txid": 991}
    result = decode_notification(json.dumps(payload))
    assert isinstance(result, ChangeEvent)
    assert json.loads(result.to_wire())["txid"] == 991


@pytest.mark.parametrize(
    "raw",
    [
        "",
        "not json at all",
        '{"operation": "insert", "table": "orders", "row": ',
        "[1, 2, 3]",
        '"just a string"',
        '{"operation": "insert", "table": "orders"}',
        '{"table": "orders", "row": {"id": 1}}',
        '{"operation": "truncate", "table": "orders", "row": {"id": 1}}',
        '{"operation": "insert", "table": "orders", "row": null}',
        '{"operation": "insert", "table": "orders", "row": [1]}',
        '{"operation": "insert", "table": "orders", "row": {"id": ' + "1" * 5000 + '}}',
        "[" * 7000,
    ],
)
def test_malformed_payload_becomes_decode_failure(raw):
    result = decode_notification(raw)
    assert isinstance(result, DecodeFailure)
    assert result.raw_payload == raw


def test_decode_failure_wire_format():
    failure = decode_notification("{broken")
    wire = json.loads(failure.to_wire())
    assert wire["error"] == "Parse failed"
    assert wire["raw_payload"] == "{broken"
    assert wire["when"].endswith("Z")
    assert set(wire) == {"error", "raw_payload", "when"}


def test_change_event_is_immutable():
    event = decode_notification('{"operation": "delete", "table": "orders", "row": {"id": 3}}')
    with pytest.raises(ValidationError):
        event.table = "customers"

"""Change events — decoding pg_notify payloads into typed results.

Learn: The orders trigger publishes JSON like
    {"operation": "insert", "table": "orders", "row": {...}}
Decoding never raises. A payload that is not valid JSON, or that lacks
operation/table/row, becomes a DecodeFailure value. Failures are a
normal outcome: they get logged and broadcast like any other event so
observers can see malformed notifications.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Union

import structlog
from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

logger = structlog.get_logger()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def iso_timestamp(when: datetime) -> str:
    """ISO-8601 in UTC with millisecond precision and a Z suffix."""
    return (
        when.astimezone(timezone.utc)
        .isoformat(timespec="milliseconds")
        .replace("+00:00", "Z")
    )


class Operation(str, Enum):
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


class ChangeEvent(BaseModel):
    """A committed insert/update/delete on a monitored table.

    Extra top-level keys in the payload are kept and re-serialized,
    so a trigger can add fields without a relay change.
    """

    operation: Operation
    table: str
    row: dict[str, Any]

    model_config = ConfigDict(frozen=True, extra="allow")

    @field_validator("operation", mode="before")
    @classmethod
    def _normalize_operation(cls, value: Any) -> Any:
        # TG_OP is upper-case; accept either spelling
        if isinstance(value, str):
            return value.lower()
        return value

    def to_wire(self) -> str:
        return self.model_dump_json()


@dataclass(frozen=True)
class DecodeFailure:
    """A notification payload that could not be decoded."""

    raw_payload: str
    observed_at: datetime = field(default_factory=utcnow)

    def to_wire(self) -> str:
        return json.dumps({
            "error": "Parse failed",
            "raw_payload": self.raw_payload,
            "when": iso_timestamp(self.observed_at),
        })


DecodeResult = Union[ChangeEvent, DecodeFailure]


def decode_notification(payload: str) -> DecodeResult:
    """Parse a raw notification payload. Never raises."""
    try:
        data = json.loads(payload)
        event = ChangeEvent.model_validate(data)
    except (ValueError, TypeError, RecursionError, ValidationError) as e:
        logger.warning(
            "relay.decode_failed",
            error=str(e).splitlines()[0] if str(e) else type(e).__name__,
            raw_payload=payload,
        )
        return DecodeFailure(raw_payload=payload if isinstance(payload, str) else repr(payload))

    logger.info(
        "relay.event_decoded",
        operation=event.operation.value,
        table=event.table,
        row_id=event.row.get("id"),
    )
    return event

"""
Pair events and the payload decoder.

Payloads are raw bytes holding one JSON object. Decoding is two-phase:
1. Read only the "type" tag
2. Decode the full object into the record registered for that tag

Records are ephemeral: they are handed to a store handler and dropped.
"""

import json
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Union

import structlog

from soroswap_pairs.errors import (
    EventDecodeError,
    PayloadTypeError,
    UnknownEventTypeError,
)

logger = structlog.get_logger(__name__)

_FRACTION_RE = re.compile(r"\.(\d+)")

INT64_MIN = -2**63
INT64_MAX = 2**63 - 1


class EventType(Enum):
    """Event tags understood by the consumer."""
    NEW_PAIR = "new_pair"
    SYNC = "sync"


def parse_timestamp(value: Any) -> datetime:
    """
    Parse an RFC 3339 timestamp into an aware UTC datetime.

    Naive values are taken to be UTC.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        # Fractions are normalized to exactly microseconds
        text = _FRACTION_RE.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text)
        parsed = datetime.fromisoformat(text)
    else:
        raise TypeError(f"timestamp must be a string, got {type(value).__name__}")

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _string_field(d: dict[str, Any], key: str) -> str:
    # Absent fields decode to the zero value; validation happens at write time.
    value = d.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise TypeError(f"field {key!r} must be a string, got {type(value).__name__}")
    return value


def _int_field(d: dict[str, Any], key: str) -> int:
    value = d.get(key)
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"field {key!r} must be an integer, got {type(value).__name__}")
    if not INT64_MIN <= value <= INT64_MAX:
        raise ValueError(f"field {key!r} out of int64 range: {value}")
    return value


@dataclass(frozen=True)
class NewPairEvent:
    """A pair was created on the exchange."""
    pair_address: str
    token_0: str
    token_1: str
    timestamp: datetime
    type: str = EventType.NEW_PAIR.value

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "NewPairEvent":
        return cls(
            type=_string_field(d, "type"),
            pair_address=_string_field(d, "pair_address"),
            token_0=_string_field(d, "token_0"),
            token_1=_string_field(d, "token_1"),
            timestamp=parse_timestamp(d.get("timestamp")),
        )


@dataclass(frozen=True)
class SyncEvent:
    """
    A pair's reserves changed.

    Reserves are decimal strings and are passed through untouched.
    """
    contract_id: str
    new_reserve_0: str
    new_reserve_1: str
    timestamp: datetime
    ledger_sequence: int
    type: str = EventType.SYNC.value

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "SyncEvent":
        return cls(
            type=_string_field(d, "type"),
            contract_id=_string_field(d, "contract_id"),
            new_reserve_0=_string_field(d, "new_reserve_0"),
            new_reserve_1=_string_field(d, "new_reserve_1"),
            timestamp=parse_timestamp(d.get("timestamp")),
            ledger_sequence=_int_field(d, "ledger_sequence"),
        )


PairEvent = Union[NewPairEvent, SyncEvent]

EVENT_RECORDS = {
    EventType.NEW_PAIR.value: NewPairEvent,
    EventType.SYNC.value: SyncEvent,
}


def _load_object(payload: bytes) -> dict[str, Any]:
    obj = json.loads(bytes(payload).decode("utf-8"))
    if not isinstance(obj, dict):
        raise ValueError(f"expected a JSON object, got {type(obj).__name__}")
    return obj


def decode_event(payload: Any) -> PairEvent:
    """
    Decode a raw payload into a NewPairEvent or SyncEvent.

    Raises:
        PayloadTypeError: payload is not bytes
        EventDecodeError: malformed JSON or malformed fields
        UnknownEventTypeError: type tag has no registered record
    """
    if not isinstance(payload, (bytes, bytearray, memoryview)):
        raise PayloadTypeError(f"expected bytes, got {type(payload).__name__}")

    try:
        obj = _load_object(payload)
        event_type = _string_field(obj, "type")
    except (ValueError, TypeError) as e:
        raise EventDecodeError(f"error decoding event type: {e}") from e

    logger.debug("decoding_event", event_type=event_type)

    record_cls = EVENT_RECORDS.get(event_type)
    if record_cls is None:
        raise UnknownEventTypeError(event_type)

    try:
        return record_cls.from_dict(obj)
    except (ValueError, TypeError) as e:
        kind = event_type.replace("_", " ")
        raise EventDecodeError(f"error decoding {kind} event: {e}") from e

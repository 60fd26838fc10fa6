"""Test lifecycle events and their JSON encoding.

The JSON form is externally tagged:

    {"BeginGroup": {"name": "suite", "count": 2}}
    {"EndGroup": "suite"}
    {"Result": {"name": "a", "status": "Success", "failure": ""}}
    {"End": {"count": 2}}
"""

from __future__ import annotations

import enum
import json
from dataclasses import dataclass
from typing import Any, Dict, Union

from jsonschema import Draft202012Validator

from xt_harness.errors import ProtocolError


class TestStatus(str, enum.Enum):
    __test__ = False

    SUCCESS = "Success"
    FAILED = "Failed"
    IGNORED = "Ignored"


@dataclass(frozen=True)
class BeginGroup:
    name: str
    count: int


@dataclass(frozen=True)
class EndGroup:
    name: str


@dataclass(frozen=True)
class TestResult:
    __test__ = False

    name: str
    status: TestStatus
    failure: str = ""


@dataclass(frozen=True)
class End:
    count: int


TestEvent = Union[BeginGroup, EndGroup, TestResult, End]

_NAME = {"type": "string"}
_COUNT = {"type": "integer", "minimum": 0}

EVENT_SCHEMA: Dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "minProperties": 1,
    "maxProperties": 1,
    "properties": {
        "BeginGroup": {
            "type": "object",
            "required": ["name", "count"],
            "properties": {"name": _NAME, "count": _COUNT},
        },
        "EndGroup": _NAME,
        "Result": {
            "type": "object",
            "required": ["name", "status", "failure"],
            "properties": {
                "name": _NAME,
                "status": {"enum": [s.value for s in TestStatus]},
                "failure": {"type": "string"},
            },
        },
        "End": {
            "type": "object",
            "required": ["count"],
            "properties": {"count": _COUNT},
        },
    },
    "additionalProperties": False,
}

_VALIDATOR = Draft202012Validator(EVENT_SCHEMA)


def event_to_dict(event: TestEvent) -> Dict[str, Any]:
    if isinstance(event, BeginGroup):
        return {"BeginGroup": {"name": event.name, "count": event.count}}
    if isinstance(event, EndGroup):
        return {"EndGroup": event.name}
    if isinstance(event, TestResult):
        return {
            "Result": {
                "name": event.name,
                "status": TestStatus(event.status).value,
                "failure": event.failure,
            }
        }
    if isinstance(event, End):
        return {"End": {"count": event.count}}
    raise TypeError(f"not a test event: {event!r}")


def event_from_dict(data: Any) -> TestEvent:
    errors = sorted(_VALIDATOR.iter_errors(data), key=lambda e: list(e.path))
    if errors:
        e = errors[0]
        loc = "/".join(str(p) for p in e.path) or "<root>"
        raise ProtocolError(f"invalid test event at {loc}: {e.message}")

    (tag, body), = data.items()
    if tag == "BeginGroup":
        return BeginGroup(name=body["name"], count=int(body["count"]))
    if tag == "EndGroup":
        return EndGroup(name=body)
    if tag == "Result":
        return TestResult(
            name=body["name"],
            status=TestStatus(body["status"]),
            failure=body["failure"],
        )
    return End(count=int(body["count"]))


def encode_event(event: TestEvent) -> bytes:
    """Compact UTF-8 JSON for one event."""

    return json.dumps(event_to_dict(event), separators=(",", ":"), ensure_ascii=False).encode(
        "utf-8"
    )


def decode_event(payload: Union[bytes, str]) -> TestEvent:
    try:
        if isinstance(payload, bytes):
            payload = payload.decode("utf-8")
        data = json.loads(payload)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ProtocolError(f"undecodable test event payload: {e}") from e
    return event_from_dict(data)

from __future__ import annotations

import asyncio
import io
import json

import pytest

from xt_harness.errors import ProtocolError
from xt_harness.harness.events import (
    BeginGroup,
    End,
    EndGroup,
    TestResult,
    TestStatus,
    decode_event,
    encode_event,
    event_to_dict,
)
from xt_harness.harness.protocol import (
    FRAME_HEADER,
    encode_frame,
    format_dump_line,
    parse_dump_line,
    read_frame,
)
from xt_harness.harness.reporter import DumpReporter

ALL_EVENTS = [
    BeginGroup(name="suite", count=2),
    EndGroup(name="suite"),
    TestResult(name="a", status=TestStatus.SUCCESS, failure=""),
    TestResult(name="b", status=TestStatus.FAILED, failure="boom"),
    TestResult(name="c", status=TestStatus.IGNORED, failure=""),
    TestResult(name="ünïcødé ✓", status=TestStatus.FAILED, failure="断言失败: 💥"),
    End(count=2),
]


def _reader_with(data: bytes) -> asyncio.StreamReader:
    reader = asyncio.StreamReader()
    reader.feed_data(data)
    reader.feed_eof()
    return reader


def test_externally_tagged_json_shape() -> None:
    assert event_to_dict(BeginGroup(name="suite", count=2)) == {
        "BeginGroup": {"name": "suite", "count": 2}
    }
    assert event_to_dict(EndGroup(name="suite")) == {"EndGroup": "suite"}
    assert event_to_dict(TestResult(name="b", status=TestStatus.FAILED, failure="boom")) == {
        "Result": {"name": "b", "status": "Failed", "failure": "boom"}
    }
    assert event_to_dict(End(count=2)) == {"End": {"count": 2}}


def test_encoding_is_compact_utf8() -> None:
    raw = encode_event(TestResult(name="ü", status=TestStatus.SUCCESS, failure=""))
    assert raw == '{"Result":{"name":"ü","status":"Success","failure":""}}'.encode("utf-8")


def test_frames_round_trip_every_variant() -> None:
    async def main() -> list:
        reader = _reader_with(b"".join(encode_frame(e) for e in ALL_EVENTS))
        out = []
        while True:
            event = await read_frame(reader)
            if event is None:
                return out
            out.append(event)

    assert asyncio.run(main()) == ALL_EVENTS


def test_frame_header_is_little_endian_length() -> None:
    frame = encode_frame(End(count=0))
    (length,) = FRAME_HEADER.unpack(frame[:8])
    assert length == len(frame) - 8
    assert frame[:8] == length.to_bytes(8, "little")


@pytest.mark.parametrize(
    "data",
    [
        b"\x05\x00\x00",
        FRAME_HEADER.pack(40) + b'{"End":',
    ],
)
def test_truncated_frames_are_protocol_errors(data: bytes) -> None:
    async def main() -> None:
        await read_frame(_reader_with(data))

    with pytest.raises(ProtocolError):
        asyncio.run(main())


def test_oversized_frame_is_rejected() -> None:
    async def main() -> None:
        await read_frame(_reader_with(FRAME_HEADER.pack(1 << 40)))

    with pytest.raises(ProtocolError):
        asyncio.run(main())


@pytest.mark.parametrize(
    "payload",
    [
        b"\xff\xfe",
        b"not json",
        json.dumps({"Result": {"name": "x", "status": "Exploded", "failure": ""}}).encode(),
        json.dumps({"End": {"count": -1}}).encode(),
        json.dumps({"EndGroup": "a", "End": {"count": 1}}).encode(),
        json.dumps(["End", 1]).encode(),
    ],
)
def test_malformed_payloads_raise_protocol_error(payload: bytes) -> None:
    with pytest.raises(ProtocolError):
        decode_event(payload)


def test_dump_marker_round_trip_and_noise() -> None:
    event = TestResult(name="b", status=TestStatus.FAILED, failure="boom")
    line = format_dump_line(event)
    assert line.startswith("TEST_DUMP(") and line.endswith(")TEST_DUMP")
    assert parse_dump_line(f"I/RustStdoutStderr( 1234): {line}") == event
    assert parse_dump_line("plain log line") is None


def test_dump_reporter_writes_marker_lines() -> None:
    buf = io.StringIO()
    reporter = DumpReporter(buf)

    async def main() -> None:
        await reporter.report(TestResult(name="b", status=TestStatus.FAILED, failure="boom"))
        await reporter.report(End(count=1))

    asyncio.run(main())
    lines = buf.getvalue().splitlines()
    assert [parse_dump_line(line) for line in lines] == [
        TestResult(name="b", status=TestStatus.FAILED, failure="boom"),
        End(count=1),
    ]
    assert reporter.finish() == 1

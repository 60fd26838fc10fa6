"""Wire formats used to carry test events out of a target process.

Two transports exist:

* stream frames (TCP / Unix socket): an 8-byte little-endian unsigned length
  followed by that many bytes of compact JSON;
* dump markers, for targets without a reachable socket: one event per output
  line embedded as ``TEST_DUMP(<json>)TEST_DUMP``.
"""

from __future__ import annotations

import asyncio
import re
import struct
from typing import Optional

from xt_harness.errors import ProtocolError
from xt_harness.harness.events import TestEvent, decode_event, encode_event

FRAME_HEADER = struct.Struct("<Q")

# Frames larger than this are treated as corrupt rather than allocated.
MAX_FRAME_BYTES = 16 * 1024 * 1024

DUMP_MARKER = "TEST_DUMP"
DUMP_PATTERN = re.compile(rf"{DUMP_MARKER}\((.*)\){DUMP_MARKER}")


def encode_frame(event: TestEvent) -> bytes:
    payload = encode_event(event)
    return FRAME_HEADER.pack(len(payload)) + payload


async def read_frame(reader: asyncio.StreamReader) -> Optional[TestEvent]:
    """Read one frame; returns None on a clean EOF between frames."""

    try:
        header = await reader.readexactly(FRAME_HEADER.size)
    except asyncio.IncompleteReadError as e:
        if not e.partial:
            return None
        raise ProtocolError(
            f"truncated frame header ({len(e.partial)} of {FRAME_HEADER.size} bytes)"
        ) from e

    (length,) = FRAME_HEADER.unpack(header)
    if length > MAX_FRAME_BYTES:
        raise ProtocolError(f"frame length {length} exceeds {MAX_FRAME_BYTES} bytes")

    try:
        payload = await reader.readexactly(length)
    except asyncio.IncompleteReadError as e:
        raise ProtocolError(
            f"truncated frame payload ({len(e.partial)} of {length} bytes)"
        ) from e
    return decode_event(payload)


def format_dump_line(event: TestEvent) -> str:
    return f"{DUMP_MARKER}({encode_event(event).decode('utf-8')}){DUMP_MARKER}"


def parse_dump_line(line: str) -> Optional[TestEvent]:
    """Decode the marker payload in `line`, or None if the line has none."""

    m = DUMP_PATTERN.search(line)
    if not m:
        return None
    return decode_event(m.group(1))

from __future__ import annotations

import asyncio
import sys
from typing import Awaitable, Tuple

from xt_harness.harness.events import TestEvent
from xt_harness.harness.protocol import encode_frame
from xt_harness.harness.reporter.base import Reporter

DEFAULT_CONNECT_TIMEOUT_S = 15.0


class StreamReporter(Reporter):
    """Forward events as length-prefixed frames over a socket."""

    def __init__(self, writer: asyncio.StreamWriter) -> None:
        super().__init__()
        self._writer = writer

    @classmethod
    async def _connect(
        cls,
        opening: Awaitable[Tuple[asyncio.StreamReader, asyncio.StreamWriter]],
        timeout_s: float,
    ) -> "StreamReporter":
        try:
            _, writer = await asyncio.wait_for(opening, timeout=timeout_s)
        except asyncio.TimeoutError as e:
            raise TimeoutError(
                f"connecting to the event listener timed out after {timeout_s}s"
            ) from e
        return cls(writer)

    @classmethod
    async def connect_tcp(
        cls, address: str, *, timeout_s: float = DEFAULT_CONNECT_TIMEOUT_S
    ) -> "StreamReporter":
        """Connect to a `host:port` address."""

        host, sep, port = address.rpartition(":")
        if not sep or not port.isdigit():
            raise ValueError(f"expected host:port, got {address!r}")
        host = host.strip("[]") or "127.0.0.1"
        return await cls._connect(asyncio.open_connection(host, int(port)), timeout_s)

    @classmethod
    async def connect_unix(
        cls, path: str, *, timeout_s: float = DEFAULT_CONNECT_TIMEOUT_S
    ) -> "StreamReporter":
        if sys.platform == "win32":
            raise OSError("Unix domain sockets are not available on this platform")
        return await cls._connect(asyncio.open_unix_connection(path), timeout_s)

    async def report(self, event: TestEvent) -> None:
        self._track(event)
        self._writer.write(encode_frame(event))
        await self._writer.drain()

    async def aclose(self) -> None:
        self._writer.close()
        try:
            await self._writer.wait_closed()
        except ConnectionError:
            pass

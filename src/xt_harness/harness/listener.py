"""Receiving side of the stream protocol.

The one-shot listeners accept exactly one client (the harness inside the
target), then relay every frame it reads into a local reporter, so remote
results render exactly like local ones. `serve_unix_clients` keeps a single
socket open for the lifetime of a container.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Any, Callable, Optional, Set, Tuple

from xt_harness.errors import HarnessError
from xt_harness.harness.events import End
from xt_harness.harness.protocol import read_frame
from xt_harness.harness.reporter.base import Reporter

logger = logging.getLogger(__name__)

ACCEPT_TIMEOUT_S = 5 * 60.0

_Conn = Tuple[asyncio.StreamReader, asyncio.StreamWriter]


async def run_over_stream(reader: asyncio.StreamReader, reporter: Reporter) -> int:
    """Relay frames into `reporter` until EOF or an End event.

    Returns the number of events relayed.
    """

    relayed = 0
    while True:
        event = await read_frame(reader)
        if event is None:
            break
        await reporter.report(event)
        relayed += 1
        if isinstance(event, End):
            break
    return relayed


async def _accept_one(
    server_factory: Any,
    *,
    ready: Optional["asyncio.Future[Any]"],
    accept_timeout_s: float,
) -> _Conn:
    loop = asyncio.get_running_loop()
    accepted: "asyncio.Future[_Conn]" = loop.create_future()

    def on_client(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        if accepted.done():
            # Only one client per listener.
            writer.close()
            return
        accepted.set_result((reader, writer))

    server = await server_factory(on_client)
    try:
        sockname = server.sockets[0].getsockname() if server.sockets else None
        logger.info("listening at %r, waiting for connection...", sockname)
        if ready is not None and not ready.done():
            ready.set_result(sockname)
        try:
            conn = await asyncio.wait_for(accepted, timeout=accept_timeout_s)
        except asyncio.TimeoutError as e:
            raise TimeoutError(
                f"no client connected to the event listener within {accept_timeout_s}s"
            ) from e
    finally:
        server.close()
        await server.wait_closed()

    peer = conn[1].get_extra_info("peername")
    logger.info("got connection at address %r", peer)
    return conn


async def _serve(conn: _Conn, reporter: Reporter) -> int:
    reader, writer = conn
    try:
        return await run_over_stream(reader, reporter)
    finally:
        writer.close()
        with contextlib.suppress(ConnectionError):
            await writer.wait_closed()


async def run_tcp_listener(
    port: int,
    reporter: Reporter,
    *,
    host: str = "0.0.0.0",
    ready: Optional["asyncio.Future[Any]"] = None,
    accept_timeout_s: float = ACCEPT_TIMEOUT_S,
) -> int:
    """Listen on `host:port` for one harness client.

    `ready` (if given) is resolved with the bound socket address once the
    listener accepts connections; pass port 0 to pick a free port.
    """

    conn = await _accept_one(
        lambda cb: asyncio.start_server(cb, host=host, port=port),
        ready=ready,
        accept_timeout_s=accept_timeout_s,
    )
    return await _serve(conn, reporter)


async def run_unix_listener(
    path: str,
    reporter: Reporter,
    *,
    ready: Optional["asyncio.Future[Any]"] = None,
    accept_timeout_s: float = ACCEPT_TIMEOUT_S,
) -> int:
    conn = await _accept_one(
        lambda cb: asyncio.start_unix_server(cb, path=path),
        ready=ready,
        accept_timeout_s=accept_timeout_s,
    )
    return await _serve(conn, reporter)


async def serve_unix_clients(
    path: str,
    reporter_factory: Callable[[], Reporter],
    *,
    ready: Optional["asyncio.Future[Any]"] = None,
) -> None:
    """Keep one Unix socket open at `path` until cancelled.

    Clients are relayed one at a time, each into a fresh reporter, so every
    harness run in a container reports through the same mounted socket.
    """

    turn = asyncio.Lock()
    sessions: Set["asyncio.Task[Any]"] = set()

    async def on_client(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        task = asyncio.current_task()
        if task is not None:
            sessions.add(task)
        try:
            async with turn:
                logger.info("got connection at %s", path)
                relayed = await _serve((reader, writer), reporter_factory())
                logger.debug("relayed %d events from %s", relayed, path)
        except (HarnessError, OSError) as e:
            logger.error("harness client at %s failed: %s", path, e)
        finally:
            sessions.discard(task)

    server = await asyncio.start_unix_server(on_client, path=path)
    try:
        logger.info("listening at %r, waiting for connections...", path)
        if ready is not None and not ready.done():
            ready.set_result(path)
        await server.serve_forever()
    finally:
        for task in list(sessions):
            task.cancel()
        server.close()
        await server.wait_closed()

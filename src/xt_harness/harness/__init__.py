"""In-process test harness.

Test programs (e.g. cargo examples built for a target, or Python programs
driven the same way) call `run_tests` with a body that receives a
`TestHarness`. Every `test` call emits exactly one Result event; exceptions
raised by test bodies are converted into Failed results and never abort the
run.

Example::

    async def body(harness):
        async with harness.grouped("suite", 2):
            await harness.test("a", lambda: None)
            await harness.test("b", check_b)

    run_tests(body)
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
import os
import sys
from typing import Any, AsyncIterator, Awaitable, Callable, Mapping, NoReturn, Optional, Union

from xt_harness.harness.events import (
    BeginGroup,
    End,
    EndGroup,
    TestEvent,
    TestResult,
    TestStatus,
)
from xt_harness.harness.reporter import ConsoleReporter, DumpReporter, Reporter, StreamReporter
from xt_harness.harness.reporter.stream import DEFAULT_CONNECT_TIMEOUT_S

logger = logging.getLogger(__name__)

UNINTELLIGIBLE_PANIC = "<unintelligible panic>"

TCP_ADDRESS_ENV = "XT_HARNESS_TCP_ADDRESS"
TCP_TIMEOUT_ENV = "XT_HARNESS_TCP_TIMEOUT"
UDS_SOCKET_ENV = "XT_HARNESS_UDS_SOCKET"
UDS_TIMEOUT_ENV = "XT_HARNESS_UDS_TIMEOUT"

Body = Union[Callable[[], Any], Awaitable[Any]]


def failure_text(exc: BaseException) -> str:
    """Message carried by a failed test: the exception's string payload."""

    if len(exc.args) == 1 and isinstance(exc.args[0], str):
        return exc.args[0]
    return UNINTELLIGIBLE_PANIC


async def _call(body: Any, *args: Any) -> Any:
    if inspect.isawaitable(body):
        return await body
    result = body(*args)
    if inspect.isawaitable(result):
        return await result
    return result


class TestHarness:
    """Runs test bodies and reports their lifecycle events."""

    __test__ = False

    def __init__(self, reporter: Reporter) -> None:
        self._reporter = reporter
        self._lock = asyncio.Lock()
        self._count = 0

    @property
    def reporter(self) -> Reporter:
        return self._reporter

    @property
    def count(self) -> int:
        return self._count

    async def _emit(self, event: TestEvent) -> None:
        async with self._lock:
            await self._reporter.report(event)

    @contextlib.asynccontextmanager
    async def grouped(self, name: str, count: int) -> AsyncIterator["TestHarness"]:
        await self._emit(BeginGroup(name=name, count=count))
        try:
            yield self
        finally:
            await self._emit(EndGroup(name=name))

    async def group(self, name: str, count: int, body: Body) -> None:
        """Run `body` inside a BeginGroup/EndGroup pair."""

        async with self.grouped(name, count):
            await _call(body)

    async def test(self, name: str, body: Body) -> TestStatus:
        self._count += 1
        try:
            await _call(body)
        except (asyncio.CancelledError, KeyboardInterrupt):
            raise
        except BaseException as e:
            logger.debug("test %r failed", name, exc_info=True)
            result = TestResult(name=name, status=TestStatus.FAILED, failure=failure_text(e))
        else:
            result = TestResult(name=name, status=TestStatus.SUCCESS, failure="")
        await self._emit(result)
        return result.status

    async def ignore(self, name: str) -> None:
        """Report `name` as ignored without running anything."""

        self._count += 1
        await self._emit(TestResult(name=name, status=TestStatus.IGNORED, failure=""))

    async def finish(self) -> int:
        """Emit the End event and return the reporter's exit code."""

        await self._emit(End(count=self._count))
        return self._reporter.finish()


def _timeout_from(environ: Mapping[str, str], key: str) -> float:
    raw = environ.get(key)
    try:
        return float(raw) if raw else DEFAULT_CONNECT_TIMEOUT_S
    except ValueError:
        return DEFAULT_CONNECT_TIMEOUT_S


def is_mobile_os() -> bool:
    return sys.platform in ("android", "ios") or hasattr(sys, "getandroidapilevel")


async def select_reporter(environ: Optional[Mapping[str, str]] = None) -> Reporter:
    """Pick the reporter for this process.

    Priority: TCP address, Unix socket path (Unix only), marker dump on a
    mobile OS, interactive console.
    """

    environ = os.environ if environ is None else environ

    address = environ.get(TCP_ADDRESS_ENV)
    if address:
        return await StreamReporter.connect_tcp(
            address, timeout_s=_timeout_from(environ, TCP_TIMEOUT_ENV)
        )

    path = environ.get(UDS_SOCKET_ENV)
    if path and os.name == "posix":
        return await StreamReporter.connect_unix(
            path, timeout_s=_timeout_from(environ, UDS_TIMEOUT_ENV)
        )

    if is_mobile_os():
        return DumpReporter()

    return ConsoleReporter()


async def run_harness(
    body: Callable[[TestHarness], Any], reporter: Optional[Reporter] = None
) -> int:
    """Run `body` with a fresh harness and return the final exit code."""

    if reporter is None:
        reporter = await select_reporter()
    harness = TestHarness(reporter)
    try:
        await _call(body, harness)
        return await harness.finish()
    finally:
        if isinstance(reporter, StreamReporter):
            await reporter.aclose()


def run_tests(body: Callable[[TestHarness], Any]) -> NoReturn:
    """Run `body` and exit the process with the harness's exit code."""

    code = asyncio.run(run_harness(body))
    sys.exit(code)


__all__ = [
    "UNINTELLIGIBLE_PANIC",
    "TestHarness",
    "failure_text",
    "is_mobile_os",
    "run_harness",
    "run_tests",
    "select_reporter",
]

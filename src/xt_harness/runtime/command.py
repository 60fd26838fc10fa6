"""Running external commands: tool resolution, spawned-process handles, and
the command runner that streams output into the log and enforces timeouts.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import shlex
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Iterable, List, Optional, Sequence, Union

from xt_harness.errors import CommandIOError, CommandTimeout, DoubleCompletion, NonZeroExit
from xt_harness.log import TRACE
from xt_harness.runtime.scheduler import Scheduler, TaskHandle

if TYPE_CHECKING:
    from xt_harness.runtime.environment.base import Environment
    from xt_harness.spec.config import Check, Crate

logger = logging.getLogger(__name__)

# Default program per tool, overridable through the named environment variable.
TOOLS = {
    "cargo": ("CARGO", "cargo"),
    "rustc": ("RUSTC", "rustc"),
    "rustfmt": ("RUSTFMT", "rustfmt"),
    "git": ("GIT", "git"),
    "docker": ("DOCKER", "docker"),
    "adb": ("ADB", "adb"),
    "xbuild": ("XBUILD", "x"),
}

# asyncio's 64 KiB default is too small for some compiler diagnostics.
STREAM_LIMIT = 1 << 20

Arg = Union[str, bytes, "os.PathLike[str]"]


class RunningCommand(ABC):
    """A spawned command.

    The stdio accessors hand their stream out once; later calls return None.
    `exit()` may be awaited until it resolves exactly once; awaiting it again
    afterwards raises `DoubleCompletion`.
    """

    def __init__(self, display: str) -> None:
        self.display = display
        self._resolved = False
        self._stdin: Optional[asyncio.StreamWriter] = None
        self._stdout: Optional[asyncio.StreamReader] = None
        self._stderr: Optional[asyncio.StreamReader] = None

    def stdin(self) -> Optional[asyncio.StreamWriter]:
        stream, self._stdin = self._stdin, None
        return stream

    def stdout(self) -> Optional[asyncio.StreamReader]:
        stream, self._stdout = self._stdout, None
        return stream

    def stderr(self) -> Optional[asyncio.StreamReader]:
        stream, self._stderr = self._stderr, None
        return stream

    @abstractmethod
    async def _wait(self) -> None: ...

    async def exit(self) -> None:
        if self._resolved:
            raise DoubleCompletion(f"exit of {self.display!r} awaited after it already resolved")
        cancelled = False
        try:
            await self._wait()
        except asyncio.CancelledError:
            cancelled = True
            raise
        finally:
            if not cancelled:
                self._resolved = True


class ProcessCommand(RunningCommand):
    """An OS child process spawned with piped stdio."""

    def __init__(self, display: str, process: asyncio.subprocess.Process) -> None:
        super().__init__(display)
        self.process = process
        self._stdin = process.stdin
        self._stdout = process.stdout
        self._stderr = process.stderr

    @property
    def pid(self) -> int:
        return self.process.pid

    async def _wait(self) -> None:
        returncode = await self.process.wait()
        if returncode != 0:
            raise NonZeroExit(self.display, returncode)


class NoOpCommand(RunningCommand):
    """A command that was deliberately skipped; it exits successfully at once."""

    async def _wait(self) -> None:
        return None


class TaskCommand(RunningCommand):
    """A command whose completion is a scheduler task rather than one process."""

    def __init__(self, display: str, handle: TaskHandle[Any]) -> None:
        super().__init__(display)
        self._handle = handle

    async def _wait(self) -> None:
        await self._handle


@dataclass
class Command:
    """Builder for a command line, spawned inside an environment."""

    program: str
    arguments: List[Arg] = field(default_factory=list)
    workdir: Optional[str] = None

    def arg(self, value: Arg) -> "Command":
        self.arguments.append(value if isinstance(value, (str, bytes)) else os.fspath(value))
        return self

    def args(self, values: Iterable[Arg]) -> "Command":
        for value in values:
            self.arg(value)
        return self

    def cwd(self, path: Union[str, "os.PathLike[str]"]) -> "Command":
        self.workdir = os.fspath(path)
        return self

    async def spawn(self, env: "Environment") -> RunningCommand:
        return await env.run_command(self.program, list(self.arguments), self.workdir)

    def __str__(self) -> str:
        return display_command(self.program, self.arguments)


def display_command(program: str, args: Sequence[Arg]) -> str:
    parts = [program] + [os.fsdecode(a) if isinstance(a, bytes) else str(a) for a in args]
    return shlex.join(parts)


def tool(name: str) -> Command:
    """Command for a known tool, honouring its override variable."""

    env_name, default = TOOLS[name]
    return Command(os.environ.get(env_name) or default)


def cargo() -> Command:
    return tool("cargo")


def rustc() -> Command:
    return tool("rustc")


def rustfmt() -> Command:
    return tool("rustfmt")


def git() -> Command:
    return tool("git")


def docker() -> Command:
    return tool("docker")


def adb() -> Command:
    return tool("adb")


def xbuild() -> Command:
    return tool("xbuild")


def cargo_for_check(args: Sequence[str], crate: "Crate", check: "Check") -> Command:
    """`cargo <args>` scoped to one crate and check."""

    cmd = cargo().args(args).args(["-p", crate.name, "--target", check.target_triple])
    if check.no_default_features:
        cmd.arg("--no-default-features")
    if check.features:
        cmd.args(["--features", ",".join(check.features)])
    return cmd


async def _drain(name: str, stream: asyncio.StreamReader, level: int) -> None:
    while True:
        try:
            line = await stream.readline()
        except ValueError:
            logger.warning("%s: output line exceeds %d bytes, skipped", name, STREAM_LIMIT)
            continue
        if not line:
            break
        logger.log(level, "%s: %s", name, line.decode("utf-8", errors="replace").rstrip("\r\n"))


async def _stop_drains(name: str, drains: Sequence[TaskHandle[None]]) -> Optional[OSError]:
    first: Optional[OSError] = None
    for handle in drains:
        try:
            await handle.cancel()
        except OSError as e:
            logger.debug("%s: reading output failed: %r", name, e)
            first = first or e
    return first


async def run(
    name: str,
    command: RunningCommand,
    timeout: Optional[float] = None,
    *,
    scheduler: Scheduler,
) -> None:
    """Wait for `command` to exit successfully, logging its output.

    stdout lines go to the TRACE level and stderr lines to INFO, tagged with
    `name`. Raises `NonZeroExit`, `CommandTimeout` or `CommandIOError`. On
    timeout the child is left running.
    """

    stdin = command.stdin()
    if stdin is not None:
        stdin.close()

    drains: list[TaskHandle[None]] = []
    for stream, level in ((command.stdout(), TRACE), (command.stderr(), logging.INFO)):
        if stream is not None:
            drains.append(scheduler.spawn(_drain(name, stream, level), name=f"{name}:drain"))

    try:
        if timeout is None:
            await command.exit()
        else:
            try:
                await asyncio.wait_for(command.exit(), timeout=timeout)
            except asyncio.TimeoutError:
                raise CommandTimeout(name, timeout) from None
    finally:
        io_error = await _stop_drains(name, drains)

    if io_error is not None:
        raise CommandIOError(f"{name}: failed reading output: {io_error}") from io_error


async def capture_stdout(
    name: str,
    command: RunningCommand,
    timeout: Optional[float] = None,
    *,
    scheduler: Scheduler,
) -> str:
    """Run `command` like `run`, returning its stdout instead of logging it."""

    stdout = command.stdout()
    if stdout is None:
        await run(name, command, timeout, scheduler=scheduler)
        return ""

    reader = scheduler.spawn(stdout.read(), name=f"{name}:stdout")
    try:
        await run(name, command, timeout, scheduler=scheduler)
    except BaseException:
        with contextlib.suppress(Exception):
            await reader.cancel()
        raise
    try:
        data = await reader
    except OSError as e:
        raise CommandIOError(f"{name}: failed reading output: {e}") from e
    return data.decode("utf-8", errors="replace")

"""Run tests on an Android emulator hosted in Docker, driven through adb and xbuild.

Only works on Linux hosts with KVM. The emulator is started lazily, the first
time a command actually needs the device.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Union

from xt_harness.errors import EnvironmentUnavailable, HarnessError, NonZeroExit, SpawnError
from xt_harness.harness.events import End
from xt_harness.harness.protocol import parse_dump_line
from xt_harness.harness.reporter import ConsoleReporter, Reporter
from xt_harness.log import TRACE
from xt_harness.runtime.command import (
    Arg,
    NoOpCommand,
    RunningCommand,
    TaskCommand,
    adb,
    capture_stdout,
    display_command,
    docker,
    run,
    xbuild,
)
from xt_harness.runtime.environment.base import Environment
from xt_harness.runtime.environment.host import HostEnvironment
from xt_harness.runtime.scheduler import Scheduler, TaskHandle

logger = logging.getLogger(__name__)

ANDROID_DOCKER_IMAGE = "us-docker.pkg.dev/android-emulator-268719/images/30-google-x64:30.1.2"
ADB_DEVICE = "localhost:15555"

SHORT_COMMAND_TIMEOUT_S = 10.0
WAIT_TIMEOUT_S = 5 * 60.0

ADB_CONNECT_ATTEMPTS = 5
ADB_CONNECT_BACKOFF_S = 2.0
BOOT_POLL_ATTEMPTS = 240
BOOT_POLL_INTERVAL_S = 2.0
CONTAINER_SETTLE_S = 0.1


def _subcommand(cmd: str, args: Sequence[Arg]) -> Optional[str]:
    if not Path(cmd).name.endswith("cargo") or not args:
        return None
    first = args[0]
    return first if isinstance(first, str) else None


async def _pump_lines(
    label: str, stream: asyncio.StreamReader, queue: "asyncio.Queue[Optional[str]]"
) -> None:
    try:
        while True:
            line = await stream.readline()
            if not line:
                break
            text = line.decode("utf-8", errors="replace").rstrip("\r\n")
            logger.log(TRACE, "xbuild %s: %s", label, text)
            await queue.put(text)
    finally:
        queue.put_nowait(None)


class AndroidEnvironment(Environment):
    def __init__(
        self,
        root: Union[str, Path],
        *,
        scheduler: Scheduler,
        reporter_factory: Callable[[], Reporter] = ConsoleReporter,
        adbkey_path: Optional[Path] = None,
    ) -> None:
        self._host = HostEnvironment(root)
        self._scheduler = scheduler
        self._reporter_factory = reporter_factory
        self._adbkey_path = adbkey_path or Path.home() / ".android" / "adbkey"
        self._setup_lock = asyncio.Lock()
        self._container_id: Optional[str] = None

    @property
    def container_id(self) -> Optional[str]:
        return self._container_id

    async def _short(self, name: str, cmd_args: List[str]) -> str:
        return await capture_stdout(
            name,
            await adb().args(cmd_args).spawn(self._host),
            SHORT_COMMAND_TIMEOUT_S,
            scheduler=self._scheduler,
        )

    async def ensure_emulator(self) -> str:
        """Start the emulator once and return its container id."""

        async with self._setup_lock:
            if self._container_id is None:
                self._container_id = await self._start_container()
                await self._wait_for_boot()
            return self._container_id

    async def _start_container(self) -> str:
        try:
            adbkey = await self._scheduler.unblock(self._adbkey_path.read_text)
        except OSError as e:
            raise EnvironmentUnavailable(f"unable to read adb key {self._adbkey_path}: {e}") from e

        cmd = docker().args(
            [
                "run",
                "--detach",
                "-e",
                f"ADBKEY={adbkey}",
                "--device",
                "/dev/kvm",
                "--publish",
                "8554:8554/tcp",
                "--publish",
                "15555:5555/tcp",
                ANDROID_DOCKER_IMAGE,
            ]
        )
        output = await capture_stdout(
            "android docker container spawn",
            await cmd.spawn(self._host),
            SHORT_COMMAND_TIMEOUT_S,
            scheduler=self._scheduler,
        )
        container_id = output.strip()
        if not container_id:
            raise EnvironmentUnavailable("docker run printed no container id for the emulator")
        logger.info("android emulator container: %s", container_id)

        await asyncio.sleep(CONTAINER_SETTLE_S)
        return container_id

    async def _wait_for_boot(self) -> None:
        for attempt in range(1, ADB_CONNECT_ATTEMPTS + 1):
            try:
                await self._short(f"adb connect {ADB_DEVICE}", ["connect", ADB_DEVICE])
                break
            except HarnessError as e:
                if attempt == ADB_CONNECT_ATTEMPTS:
                    raise EnvironmentUnavailable(
                        f"adb connect failed after {attempt} attempts: {e}"
                    ) from e
                logger.error("adb connect failed, retrying in two seconds...")
                await asyncio.sleep(ADB_CONNECT_BACKOFF_S)

        await run(
            "adb wait-for-device",
            await adb().arg("wait-for-device").spawn(self._host),
            WAIT_TIMEOUT_S,
            scheduler=self._scheduler,
        )

        for _ in range(BOOT_POLL_ATTEMPTS):
            status = await self._short(
                "adb shell getprop sys.boot_completed", ["shell", "getprop", "sys.boot_completed"]
            )
            if status.startswith("1"):
                return
            await asyncio.sleep(BOOT_POLL_INTERVAL_S)
        raise EnvironmentUnavailable(
            f"failed to get boot status after {BOOT_POLL_ATTEMPTS} tries"
        )

    async def run_command(
        self, cmd: str, args: Sequence[Arg], cwd: Optional[str] = None
    ) -> RunningCommand:
        display = display_command(cmd, args)
        sub = _subcommand(cmd, args)

        if sub == "test":
            logger.warning("cannot run `cargo test` on Android, ignoring %s", display)
            return NoOpCommand(display)

        if sub == "run":
            handle = self._scheduler.spawn(
                self._xbuild_run(list(args[1:]), cwd), name="android-xbuild"
            )
            return TaskCommand(display, handle)

        raise SpawnError(f"unable to run Android command: {display}")

    async def _xbuild_run(self, args: List[Arg], cwd: Optional[str]) -> None:
        await self.ensure_emulator()

        cmd = xbuild().args(["run", "--device", f"adb:{ADB_DEVICE}", "--arch", "arm64"]).args(args)
        if cwd is not None:
            cmd.cwd(cwd)
        process = await cmd.spawn(self._host)

        lines: "asyncio.Queue[Optional[str]]" = asyncio.Queue()
        readers: List[TaskHandle[None]] = []
        for label, stream in (("stdout", process.stdout()), ("stderr", process.stderr())):
            if stream is not None:
                readers.append(
                    self._scheduler.spawn(_pump_lines(label, stream, lines), name=f"xbuild:{label}")
                )
        runner = self._scheduler.spawn(run("xbuild", process, scheduler=self._scheduler))

        reporter = self._reporter_factory()
        open_streams = len(readers)
        try:
            while open_streams:
                line = await lines.get()
                if line is None:
                    open_streams -= 1
                    continue
                event = parse_dump_line(line)
                if event is None:
                    continue
                await reporter.report(event)
                if isinstance(event, End):
                    break
        finally:
            for reader in readers:
                await reader.cancel()
            try:
                await runner.cancel()
            finally:
                proc = getattr(process, "process", None)
                if proc is not None and proc.returncode is None:
                    with contextlib.suppress(ProcessLookupError):
                        proc.terminate()

        code = reporter.finish()
        if code != 0:
            raise NonZeroExit("android test run", code)

    async def cleanup(self) -> None:
        container_id, self._container_id = self._container_id, None
        if container_id is None:
            return
        for step in ("stop", "rm"):
            await run(
                f"docker {step}",
                await docker().args([step, container_id]).spawn(self._host),
                scheduler=self._scheduler,
            )

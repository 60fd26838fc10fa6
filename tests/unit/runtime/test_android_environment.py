from __future__ import annotations

import asyncio
import logging
import os
import stat
from pathlib import Path

import pytest

from xt_harness.errors import EnvironmentUnavailable, NonZeroExit, SpawnError
from xt_harness.harness.events import End, TestResult, TestStatus
from xt_harness.harness.protocol import format_dump_line
from xt_harness.harness.reporter.base import Reporter
from xt_harness.runtime.command import NoOpCommand, TaskCommand, run
from xt_harness.runtime.environment import android as android_mod
from xt_harness.runtime.environment.android import AndroidEnvironment
from xt_harness.runtime.scheduler import Scheduler


class ListReporter(Reporter):
    def __init__(self) -> None:
        super().__init__()
        self.events: list = []

    async def report(self, event) -> None:
        self._track(event)
        self.events.append(event)


def test_cargo_test_is_skipped_with_warning(tmp_path: Path, caplog) -> None:
    env = AndroidEnvironment(tmp_path, scheduler=Scheduler())
    caplog.set_level(logging.WARNING, logger="xt_harness.runtime.environment.android")

    async def main():
        cmd = await env.run_command("/home/ci/.cargo/bin/cargo", ["test", "--tests"])
        await cmd.exit()
        return cmd

    cmd = asyncio.run(main())
    assert isinstance(cmd, NoOpCommand)
    assert any("cannot run `cargo test`" in r.getMessage() for r in caplog.records)
    assert env.container_id is None


def test_other_commands_are_rejected(tmp_path: Path) -> None:
    env = AndroidEnvironment(tmp_path, scheduler=Scheduler())

    async def main() -> None:
        await env.run_command("rustfmt", ["--check", "src/lib.rs"])

    with pytest.raises(SpawnError):
        asyncio.run(main())


def _fast(monkeypatch) -> None:
    monkeypatch.setattr(android_mod, "ADB_CONNECT_BACKOFF_S", 0)
    monkeypatch.setattr(android_mod, "BOOT_POLL_INTERVAL_S", 0)


def test_adb_connect_is_retried_then_boot_is_polled(tmp_path: Path, monkeypatch) -> None:
    _fast(monkeypatch)
    env = AndroidEnvironment(tmp_path, scheduler=Scheduler())
    calls: list = []
    connect_failures = [2]
    boot_status = iter(["0\n", "\n", "1\n"])

    async def fake_short(self, name, cmd_args):
        calls.append(cmd_args[0])
        if cmd_args[0] == "connect":
            if connect_failures[0]:
                connect_failures[0] -= 1
                raise SpawnError("device offline")
            return "connected to localhost:15555\n"
        return next(boot_status)

    async def fake_start(self):
        return "emulator-cid"

    async def fake_run(name, command, timeout=None, *, scheduler):
        calls.append(name)

    monkeypatch.setattr(AndroidEnvironment, "_short", fake_short)
    monkeypatch.setattr(AndroidEnvironment, "_start_container", fake_start)
    monkeypatch.setattr(android_mod, "run", fake_run)
    monkeypatch.setattr(android_mod, "adb", lambda: _NullCommand())

    async def main() -> str:
        first = await env.ensure_emulator()
        second = await env.ensure_emulator()
        assert first == second
        return first

    assert asyncio.run(main()) == "emulator-cid"
    assert calls == [
        "connect",
        "connect",
        "connect",
        "adb wait-for-device",
        "shell",
        "shell",
        "shell",
    ]


class _NullCommand:
    def arg(self, value):
        return self

    def args(self, values):
        return self

    async def spawn(self, env):
        return NoOpCommand("adb")


def test_adb_connect_exhaustion_is_unavailable(tmp_path: Path, monkeypatch) -> None:
    _fast(monkeypatch)
    env = AndroidEnvironment(tmp_path, scheduler=Scheduler())
    attempts: list = []

    async def always_fails(self, name, cmd_args):
        attempts.append(name)
        raise SpawnError("no adb")

    async def fake_start(self):
        return "emulator-cid"

    monkeypatch.setattr(AndroidEnvironment, "_short", always_fails)
    monkeypatch.setattr(AndroidEnvironment, "_start_container", fake_start)

    with pytest.raises(EnvironmentUnavailable):
        asyncio.run(env.ensure_emulator())
    assert len(attempts) == android_mod.ADB_CONNECT_ATTEMPTS


def test_boot_poll_exhaustion_is_unavailable(tmp_path: Path, monkeypatch) -> None:
    _fast(monkeypatch)
    monkeypatch.setattr(android_mod, "BOOT_POLL_ATTEMPTS", 3)
    env = AndroidEnvironment(tmp_path, scheduler=Scheduler())
    polls: list = []

    async def never_boots(self, name, cmd_args):
        if cmd_args[0] == "connect":
            return "connected to localhost:15555\n"
        polls.append(cmd_args)
        return "0\n"

    async def fake_start(self):
        return "emulator-cid"

    async def fake_run(name, command, timeout=None, *, scheduler):
        return None

    monkeypatch.setattr(AndroidEnvironment, "_short", never_boots)
    monkeypatch.setattr(AndroidEnvironment, "_start_container", fake_start)
    monkeypatch.setattr(android_mod, "run", fake_run)
    monkeypatch.setattr(android_mod, "adb", lambda: _NullCommand())

    with pytest.raises(EnvironmentUnavailable):
        asyncio.run(env.ensure_emulator())
    assert len(polls) == 3
    assert all(p[0] == "shell" for p in polls)


def test_missing_adb_key_is_unavailable(tmp_path: Path) -> None:
    sched = Scheduler()
    env = AndroidEnvironment(tmp_path, scheduler=sched, adbkey_path=tmp_path / "nope")

    with pytest.raises(EnvironmentUnavailable):
        sched.run(env.ensure_emulator())
    sched.shutdown()


def test_cleanup_without_emulator_does_nothing(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setenv("DOCKER", str(tmp_path / "must-not-run"))
    env = AndroidEnvironment(tmp_path, scheduler=Scheduler())
    asyncio.run(env.cleanup())


def _write_fake_xbuild(tmp_path: Path, failing: bool) -> Path:
    lines = [
        format_dump_line(TestResult(name="a", status=TestStatus.SUCCESS)),
        format_dump_line(
            TestResult(
                name="b",
                status=TestStatus.FAILED if failing else TestStatus.SUCCESS,
                failure="boom" if failing else "",
            )
        ),
        format_dump_line(End(count=2)),
    ]
    script = ["#!/bin/sh", "echo 'Compiling example'", "echo 'warning: unused' 1>&2"]
    script.append(f"echo 'I/RustStdoutStderr: {lines[0]}'")
    script.append(f"echo 'I/RustStdoutStderr: {lines[1]}'")
    script.append(f"echo '{lines[2]}'")
    path = tmp_path / "fake-x"
    path.write_text("\n".join(script) + "\n", encoding="utf-8")
    path.chmod(path.stat().st_mode | stat.S_IEXEC)
    return path


@pytest.mark.skipif(os.name != "posix", reason="uses a shell script as the xbuild binary")
@pytest.mark.parametrize("failing", [False, True])
def test_cargo_run_relays_dump_markers(tmp_path: Path, monkeypatch, failing: bool) -> None:
    monkeypatch.setenv("XBUILD", str(_write_fake_xbuild(tmp_path, failing)))
    reporters: list = []

    def factory() -> ListReporter:
        reporters.append(ListReporter())
        return reporters[-1]

    sched = Scheduler()
    env = AndroidEnvironment(tmp_path, scheduler=sched, reporter_factory=factory)

    async def no_emulator(self):
        return "emulator-cid"

    monkeypatch.setattr(AndroidEnvironment, "ensure_emulator", no_emulator)

    async def main() -> None:
        cmd = await env.run_command("cargo", ["run", "--example", "smoke"])
        assert isinstance(cmd, TaskCommand)
        await run("example smoke", cmd, 30, scheduler=sched)

    if failing:
        with pytest.raises(NonZeroExit):
            sched.run(main())
    else:
        sched.run(main())
    sched.shutdown()

    events = reporters[0].events
    assert events[-1] == End(count=2)
    assert {e.name for e in events if isinstance(e, TestResult)} == {"a", "b"}

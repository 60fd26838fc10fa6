"""Error types shared by the runner, the environments and the harness."""

from __future__ import annotations

from typing import Optional


class HarnessError(RuntimeError):
    """Base class for every failure raised by xt-harness."""


class SpawnError(HarnessError):
    """Raised when an external tool could not be launched."""


class NonZeroExit(HarnessError):
    """Raised when a process ran to completion with a failing status."""

    def __init__(self, name: str, returncode: Optional[int]) -> None:
        super().__init__(f"{name}: child exited with error code {returncode}")
        self.name = name
        self.returncode = returncode


class CommandTimeout(HarnessError):
    """Raised when a process did not exit within its allotted time.

    The child itself is left running; only `Environment.cleanup()` stops
    processes it manages.
    """

    def __init__(self, name: str, timeout_s: float) -> None:
        super().__init__(f"{name}: timed out after {timeout_s}s")
        self.name = name
        self.timeout_s = timeout_s


class CommandIOError(HarnessError):
    """Raised when reading a child's stdout/stderr pipe failed."""


class ProtocolError(HarnessError):
    """Raised for malformed event frames/payloads or non-text command arguments."""


class EnvironmentUnavailable(HarnessError):
    """Raised when no execution environment can be matched or provisioned."""


class DoubleCompletion(HarnessError):
    """Raised when a command's exit is awaited after it already resolved."""


class CheckFailed(HarnessError):
    """Wraps a per-check failure with the crate/target/step it belongs to."""

    def __init__(self, crate: str, target: str, step: str, cause: BaseException) -> None:
        super().__init__(f"{crate} ({target}): while {step}: {cause}")
        self.crate = crate
        self.target = target
        self.step = step
        self.cause = cause

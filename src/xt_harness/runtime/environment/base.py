from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional, Sequence

from xt_harness.runtime.command import Arg, RunningCommand


class Environment(ABC):
    """An execution context that can run commands.

    `run_command` spawns without waiting for exit; completion is observed
    through the command runner. Environments may be shared by concurrent
    checks.
    """

    @abstractmethod
    async def run_command(
        self, cmd: str, args: Sequence[Arg], cwd: Optional[str] = None
    ) -> RunningCommand: ...

    @abstractmethod
    async def cleanup(self) -> None:
        """Tear down whatever the environment started; a no-op if nothing was."""

"""Run commands directly on the current host."""

from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path
from typing import Optional, Sequence, Union

from xt_harness.errors import SpawnError
from xt_harness.runtime.command import STREAM_LIMIT, Arg, ProcessCommand, display_command
from xt_harness.runtime.environment.base import Environment

logger = logging.getLogger(__name__)


class HostEnvironment(Environment):
    def __init__(self, root: Union[str, Path]) -> None:
        self._root = Path(root)

    @property
    def root(self) -> Path:
        return self._root

    async def run_command(
        self, cmd: str, args: Sequence[Arg], cwd: Optional[str] = None
    ) -> ProcessCommand:
        display = display_command(cmd, args)
        workdir = cwd if cwd is not None else os.fspath(self._root)
        logger.info("running command %s (cwd=%s)", display, workdir)
        try:
            process = await asyncio.create_subprocess_exec(
                cmd,
                *args,
                cwd=workdir,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                limit=STREAM_LIMIT,
            )
        except OSError as e:
            raise SpawnError(f"failed to spawn {display!r} in {workdir}: {e}") from e
        return ProcessCommand(display, process)

    async def cleanup(self) -> None:
        return None

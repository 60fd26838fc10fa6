"""Dump events to stdout as marker lines.

Used on targets (e.g. the Android emulator) where no socket back to the
runner is reachable; the runner scrapes the captured output instead.
"""

from __future__ import annotations

import sys
from typing import Optional, TextIO

from xt_harness.harness.events import TestEvent
from xt_harness.harness.protocol import format_dump_line
from xt_harness.harness.reporter.base import Reporter


class DumpReporter(Reporter):
    def __init__(self, stream: Optional[TextIO] = None) -> None:
        super().__init__()
        self._stream = stream

    async def report(self, event: TestEvent) -> None:
        self._track(event)
        stream = self._stream or sys.stdout
        stream.write(format_dump_line(event) + "\n")
        stream.flush()

"""Reporters: sinks that render or forward test events."""

from __future__ import annotations

from xt_harness.harness.reporter.base import Reporter
from xt_harness.harness.reporter.console import ConsoleReporter
from xt_harness.harness.reporter.dump import DumpReporter
from xt_harness.harness.reporter.stream import StreamReporter

__all__ = [
    "ConsoleReporter",
    "DumpReporter",
    "Reporter",
    "StreamReporter",
]

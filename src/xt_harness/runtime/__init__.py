"""Orchestration runtime: scheduler, command runner, environments."""

from xt_harness.runtime.context import RunContext
from xt_harness.runtime.scheduler import Scheduler, TaskHandle

__all__ = ["RunContext", "Scheduler", "TaskHandle"]

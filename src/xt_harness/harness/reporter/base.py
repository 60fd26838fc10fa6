from __future__ import annotations

from abc import ABC, abstractmethod

from xt_harness.harness.events import TestEvent, TestResult, TestStatus


class Reporter(ABC):
    """Sink for test events.

    A reporter lives for exactly one harness run. It tracks the exit code
    the run should end with: 0, or 1 once any result has failed.
    """

    def __init__(self) -> None:
        self.exit_code = 0

    def _track(self, event: TestEvent) -> None:
        if isinstance(event, TestResult) and event.status == TestStatus.FAILED:
            self.exit_code = 1

    @abstractmethod
    async def report(self, event: TestEvent) -> None: ...

    def finish(self) -> int:
        """Finish the report and return the exit code."""

        return self.exit_code

from __future__ import annotations

from typing import Optional

from rich.console import Console
from rich.markup import escape

from xt_harness.harness.events import BeginGroup, End, EndGroup, TestEvent, TestResult, TestStatus
from xt_harness.harness.reporter.base import Reporter

SPACES_PER_INDENT = 2

_STATUS_MARKUP = {
    TestStatus.SUCCESS: "[bold green]ok[/]",
    TestStatus.FAILED: "[bold red]FAILED[/]",
    TestStatus.IGNORED: "[bold yellow]ignored[/]",
}


class ConsoleReporter(Reporter):
    """Render test events to the terminal, indented by group depth."""

    def __init__(self, console: Optional[Console] = None) -> None:
        super().__init__()
        self._console = console or Console(highlight=False)
        self.indent = 0
        self.failures: list[tuple[str, str]] = []

    def _pad(self) -> str:
        return " " * (self.indent * SPACES_PER_INDENT)

    async def report(self, event: TestEvent) -> None:
        self._track(event)
        out = self._console

        if isinstance(event, BeginGroup):
            out.print(
                f"{self._pad()}[italic]running test group '[/][bold cyan]{escape(event.name)}[/]"
                f"[italic]' with [/][bold cyan]{event.count}[/][italic] tests...[/]"
            )
            self.indent += 1
        elif isinstance(event, EndGroup):
            self.indent = max(0, self.indent - 1)
        elif isinstance(event, TestResult):
            if event.status == TestStatus.FAILED:
                self.failures.append((event.name, event.failure))
            out.print(
                f"{self._pad()}test [bold]{escape(event.name)}[/] ... "
                f"{_STATUS_MARKUP[TestStatus(event.status)]}"
            )
        elif isinstance(event, End):
            if self.failures:
                out.print()
                out.print("failures:")
                for name, failure in self.failures:
                    out.print(f"---- [bold]{escape(name)}[/] ----")
                    out.print(escape(failure) or "<no message>")
                out.print()
            verdict = "[green]ok[/]" if self.exit_code == 0 else "[red]FAILED[/]"
            out.print(f"test result: {verdict}. {event.count} tests run")

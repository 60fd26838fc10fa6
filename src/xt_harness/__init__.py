"""xt-harness: cross-environment test orchestration.

Provides:
- a check runner (`xt-runner`) that drives cargo/rustfmt/clippy across the
  host, Docker containers and an Android emulator
- an in-process test harness that streams structured results back to it
"""

__version__ = "0.1.0"

__all__ = [
    "cli",
    "drivers",
    "errors",
    "harness",
    "log",
    "runtime",
    "spec",
]

"""Host introspection and target triple helpers."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from xt_harness.errors import EnvironmentUnavailable
from xt_harness.runtime.command import capture_stdout, rustc
from xt_harness.runtime.scheduler import Scheduler

if TYPE_CHECKING:
    from xt_harness.runtime.environment.base import Environment

logger = logging.getLogger(__name__)

RUSTC_TIMEOUT_S = 60.0


def parse_host_triple(rustc_version: str) -> str:
    """Extract the triple from the `host: ` line of `rustc -vV` output."""

    for line in rustc_version.splitlines():
        if line.startswith("host: "):
            return line[len("host: ") :].strip()
    raise EnvironmentUnavailable("unable to find 'host:' line in rustc output")


async def target_triple(host: "Environment", *, scheduler: Scheduler) -> str:
    """Target triple of the machine we are running on, as rustc sees it."""

    output = await capture_stdout(
        "rustc -vV",
        await rustc().arg("-vV").spawn(host),
        RUSTC_TIMEOUT_S,
        scheduler=scheduler,
    )
    triple = parse_host_triple(output)
    logger.debug("host target triple: %s", triple)
    return triple


def triple_arch(triple: str) -> str:
    return triple.split("-", 1)[0]


def is_android(triple: str) -> bool:
    return "android" in triple


def is_linux(triple: str) -> bool:
    return "linux" in triple and not is_android(triple)

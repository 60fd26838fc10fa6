"""Functionality checks: `cargo test` in each check's environment."""

from __future__ import annotations

import logging
from typing import Sequence

from xt_harness.drivers.base import for_each_check, run_in, step
from xt_harness.runtime.command import cargo_for_check
from xt_harness.runtime.context import RunContext
from xt_harness.spec.config import Check, Crate

logger = logging.getLogger(__name__)

FUNCTEST_TIMEOUT_S = 5 * 60.0
TEST_MODES = ("--tests", "--doc")


async def check_functionality(ctx: RunContext, crate: Crate, check: Check) -> None:
    env = await step(crate, check, "choosing environment", ctx.environments.choose(check))
    for mode in TEST_MODES:
        cmd = cargo_for_check(["test", mode], crate, check)
        await step(
            crate,
            check,
            f"running cargo test {mode}",
            run_in(ctx, "cargo_functionality", cmd, env, FUNCTEST_TIMEOUT_S),
        )
    logger.info("functionality passed: %s (%s)", crate.name, check.target_triple)


async def run_functionality(ctx: RunContext, crates: Sequence[Crate]) -> None:
    await for_each_check(ctx, crates, check_functionality)

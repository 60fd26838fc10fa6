"""Host tests: run each crate's harness examples and let them report results."""

from __future__ import annotations

import logging
from typing import Sequence

from xt_harness.drivers.base import for_each_check, run_in, step
from xt_harness.runtime.command import cargo_for_check
from xt_harness.runtime.context import RunContext
from xt_harness.spec.config import Check, Crate

logger = logging.getLogger(__name__)

HOST_TEST_TIMEOUT_S = 10 * 60.0


async def check_examples(ctx: RunContext, crate: Crate, check: Check) -> None:
    if not crate.examples:
        logger.debug("%s has no examples to run", crate.name)
        return

    env = await step(crate, check, "choosing environment", ctx.environments.choose(check))
    for example in crate.examples:
        cmd = cargo_for_check(["run", "--example", example], crate, check)
        await step(
            crate,
            check,
            f"running example {example}",
            run_in(ctx, f"example {example}", cmd, env, HOST_TEST_TIMEOUT_S),
        )


async def run_host(ctx: RunContext, crates: Sequence[Crate]) -> None:
    await for_each_check(ctx, crates, check_examples)

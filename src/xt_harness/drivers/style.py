"""Style checks: rustfmt over the workspace, then clippy per check."""

from __future__ import annotations

import logging
from typing import List, Sequence

from xt_harness.drivers.base import for_each_check, run_in, step
from xt_harness.runtime.command import capture_stdout, cargo_for_check, git, rustfmt
from xt_harness.runtime.context import RunContext
from xt_harness.runtime.environment.host import HostEnvironment
from xt_harness.spec.config import Check, Crate

logger = logging.getLogger(__name__)

STYLE_TIMEOUT_S = 5 * 60.0


async def rust_files(ctx: RunContext, host: HostEnvironment) -> List[str]:
    """Tracked `*.rs` files, relative to the root."""

    out = await capture_stdout(
        "git ls-files",
        await git().args(["ls-files", "-z", "--", "*.rs"]).spawn(host),
        STYLE_TIMEOUT_S,
        scheduler=ctx.scheduler,
    )
    return sorted(p for p in out.split("\0") if p)


async def check_format(ctx: RunContext) -> None:
    host = HostEnvironment(ctx.root)
    files = await rust_files(ctx, host)
    if not files:
        logger.warning("no Rust files found under %s", ctx.root)
        return

    logger.info("checking formatting of %d files", len(files))
    cmd = rustfmt().args(["--edition", "2021", "--check"]).args(files)
    await run_in(ctx, "rustfmt", cmd, host, STYLE_TIMEOUT_S)


async def check_clippy(ctx: RunContext, crate: Crate, check: Check) -> None:
    # Lints only need to compile, so they always run on the host.
    host = HostEnvironment(ctx.root)
    cmd = cargo_for_check(["clippy", "--all-targets"], crate, check).args(
        ["--", "-D", "warnings"]
    )
    await step(
        crate,
        check,
        "running cargo clippy",
        run_in(ctx, "cargo_clippy", cmd, host, STYLE_TIMEOUT_S),
    )


async def run_style(ctx: RunContext, crates: Sequence[Crate]) -> None:
    await check_format(ctx)
    await for_each_check(ctx, crates, check_clippy)

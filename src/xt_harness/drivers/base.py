"""Shared plumbing for the check drivers."""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, Iterable, List, Optional, Sequence, Tuple, TypeVar

from xt_harness.errors import CheckFailed
from xt_harness.runtime.command import Command, run
from xt_harness.runtime.context import RunContext
from xt_harness.runtime.environment.base import Environment
from xt_harness.runtime.scheduler import TaskHandle
from xt_harness.spec.config import Check, Crate

logger = logging.getLogger(__name__)

T = TypeVar("T")

CheckFn = Callable[[RunContext, Crate, Check], Awaitable[None]]


def selected_checks(ctx: RunContext, crates: Iterable[Crate]) -> List[Tuple[Crate, Check]]:
    out: List[Tuple[Crate, Check]] = []
    for crate in crates:
        for check in crate.checks:
            if check.niche and not ctx.include_niche:
                logger.info("skipping niche check %s (%s)", crate.name, check.target_triple)
                continue
            out.append((crate, check))
    return out


async def step(crate: Crate, check: Check, what: str, awaitable: Awaitable[T]) -> T:
    """Await one step of a check, attaching the check's context to failures."""

    try:
        return await awaitable
    except CheckFailed:
        raise
    except Exception as e:
        raise CheckFailed(crate.name, check.target_triple, what, e) from e


async def run_in(
    ctx: RunContext,
    name: str,
    command: Command,
    env: Environment,
    timeout: Optional[float] = None,
) -> None:
    await run(name, await command.spawn(env), timeout, scheduler=ctx.scheduler)


async def for_each_check(ctx: RunContext, crates: Sequence[Crate], fn: CheckFn) -> None:
    """Run `fn` for every selected check concurrently.

    Every check runs to completion; failures are logged and the first one is
    raised afterwards.
    """

    handles: List[TaskHandle[None]] = [
        ctx.scheduler.spawn(fn(ctx, crate, check), name=f"{crate.name}:{check.target_triple}")
        for crate, check in selected_checks(ctx, crates)
    ]

    failures: List[Exception] = []
    try:
        for handle in handles:
            try:
                await handle
            except Exception as e:
                logger.error("check failed: %s", e)
                failures.append(e)
    finally:
        for handle in handles:
            if not handle.done():
                try:
                    await handle.cancel()
                except Exception as e:
                    logger.debug("check %s failed while cancelling: %r", handle.name, e)

    if failures:
        logger.error("%d of %d checks failed", len(failures), len(handles))
        raise failures[0]

from __future__ import annotations

import argparse
import logging
import os
from pathlib import Path
from typing import List, Optional, Sequence

from rich.console import Console
from rich.markup import escape

from xt_harness.drivers import DRIVERS
from xt_harness.errors import HarnessError
from xt_harness.log import configure_logging
from xt_harness.runtime.context import RunContext
from xt_harness.runtime.scheduler import DEFAULT_WORKERS, Scheduler
from xt_harness.spec.config import ConfigError, Crate, load_crates

logger = logging.getLogger(__name__)


def _fatal(console: Console, err: BaseException) -> int:
    console.print(f"[bold red]encountered a fatal error: [/]{escape(str(err))}", soft_wrap=True)
    return 1


async def run_driver(ctx: RunContext, test: str, crates: List[Crate]) -> None:
    """Run one driver, then clean up every environment it opened."""

    error: Optional[Exception] = None
    try:
        await DRIVERS[test](ctx, crates)
    except Exception as e:
        error = e

    try:
        await ctx.close()
    except Exception as e:
        if error is None:
            error = e
        else:
            logger.error("environment cleanup also failed: %s", e)

    if error is not None:
        raise error


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="xt-runner", description="Run build/lint/test checks across execution environments."
    )
    parser.add_argument("test", choices=sorted(DRIVERS), help="Which checks to run.")
    parser.add_argument(
        "--config",
        type=Path,
        default=os.environ.get("XT_HARNESS_CONFIG"),
        help="Crate matrix as YAML or JSON (default: $XT_HARNESS_CONFIG)",
    )
    parser.add_argument(
        "--root",
        type=Path,
        default=Path(os.environ.get("XT_HARNESS_ROOT") or "."),
        help="Workspace root (default: $XT_HARNESS_ROOT or the current directory)",
    )
    parser.add_argument(
        "--niche", action="store_true", help="Also run checks marked as niche."
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=DEFAULT_WORKERS,
        help=f"Worker threads for blocking work (default: {DEFAULT_WORKERS})",
    )
    parser.add_argument(
        "-v", "--verbose", action="count", default=0, help="Increase log verbosity."
    )
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(int(args.verbose))
    console = Console(stderr=True)

    if args.config is None:
        parser.error("--config is required (or set $XT_HARNESS_CONFIG)")

    try:
        crates = load_crates(Path(args.config))
    except (OSError, ValueError, ConfigError) as e:
        return _fatal(console, e)

    root = Path(args.root).resolve()
    try:
        scheduler = Scheduler(workers=int(args.workers))
    except ValueError as e:
        return _fatal(console, e)

    ctx = RunContext.create(root, scheduler=scheduler, include_niche=bool(args.niche))
    logger.info("running %s checks for %d crates in %s", args.test, len(crates), root)
    try:
        scheduler.run(run_driver(ctx, args.test, crates))
    except (HarnessError, OSError) as e:
        return _fatal(console, e)
    finally:
        scheduler.shutdown()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())

"""Logging setup for the runner CLI."""

from __future__ import annotations

import logging
import os
from typing import Optional

TRACE = 5
logging.addLevelName(TRACE, "TRACE")

LOG_FORMAT = "[%(levelname)s] %(name)s: %(message)s"

_VERBOSITY_LEVELS = {0: logging.WARNING, 1: logging.INFO, 2: logging.DEBUG}


def _level_from_env(raw: Optional[str]) -> Optional[int]:
    if not raw:
        return None
    raw = raw.strip().upper()
    if raw.isdigit():
        return int(raw)
    level = logging.getLevelName(raw)
    return level if isinstance(level, int) else None


def configure_logging(verbosity: int = 0) -> int:
    """Configure root logging and return the effective level.

    `$XT_HARNESS_LOG` (a level name or number) wins over `verbosity`.
    """

    level = _level_from_env(os.environ.get("XT_HARNESS_LOG"))
    if level is None:
        level = _VERBOSITY_LEVELS.get(verbosity, TRACE)
    logging.basicConfig(level=level, format=LOG_FORMAT, force=True)
    return level

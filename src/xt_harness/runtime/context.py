from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from xt_harness.runtime.environment.choose import EnvironmentCache
from xt_harness.runtime.scheduler import Scheduler


@dataclass
class RunContext:
    """Everything one orchestration run shares: root, scheduler, environments."""

    root: Path
    scheduler: Scheduler
    environments: EnvironmentCache
    include_niche: bool = False

    @classmethod
    def create(
        cls,
        root: Path,
        *,
        scheduler: Optional[Scheduler] = None,
        include_niche: bool = False,
        host_triple: Optional[str] = None,
    ) -> "RunContext":
        scheduler = scheduler or Scheduler()
        return cls(
            root=Path(root),
            scheduler=scheduler,
            environments=EnvironmentCache(root, scheduler=scheduler, host_triple=host_triple),
            include_niche=include_niche,
        )

    async def close(self) -> None:
        await self.environments.cleanup_all()

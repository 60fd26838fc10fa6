"""Pick, cache and tear down the environment each check runs in."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Dict, List, Optional, Union

from xt_harness.errors import EnvironmentUnavailable
from xt_harness.runtime.environment.android import AndroidEnvironment
from xt_harness.runtime.environment.base import Environment
from xt_harness.runtime.environment.docker import DockerEnvironment
from xt_harness.runtime.environment.host import HostEnvironment
from xt_harness.runtime.scheduler import Scheduler
from xt_harness.runtime.util import is_android, is_linux, target_triple, triple_arch

if TYPE_CHECKING:
    from xt_harness.spec.config import Check

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EnvironmentKey:
    target_triple: str
    host_env: Optional[str] = None

    @classmethod
    def for_check(cls, check: "Check") -> "EnvironmentKey":
        return cls(target_triple=check.target_triple, host_env=check.host_env)


class EnvironmentCache:
    """Per-run owner of every live environment.

    At most one environment exists per key; concurrent `choose` calls for the
    same key wait on a single construction.
    """

    def __init__(
        self,
        root: Union[str, Path],
        *,
        scheduler: Scheduler,
        host_triple: Optional[str] = None,
    ) -> None:
        self._root = Path(root)
        self._scheduler = scheduler
        self._host_triple = host_triple
        self._triple_lock = asyncio.Lock()
        self._lock = asyncio.Lock()
        self._open: Dict[EnvironmentKey, Environment] = {}
        self._pending: Dict[EnvironmentKey, "asyncio.Task[Environment]"] = {}

    def __len__(self) -> int:
        return len(self._open)

    def get(self, key: EnvironmentKey) -> Optional[Environment]:
        return self._open.get(key)

    async def host_triple(self) -> str:
        async with self._triple_lock:
            if self._host_triple is None:
                self._host_triple = await target_triple(
                    HostEnvironment(self._root), scheduler=self._scheduler
                )
            return self._host_triple

    async def choose(self, check: "Check") -> Environment:
        key = EnvironmentKey.for_check(check)
        env = self._open.get(key)
        if env is not None:
            return env

        async with self._lock:
            env = self._open.get(key)
            if env is not None:
                return env
            task = self._pending.get(key)
            if task is None:
                task = asyncio.create_task(
                    self._construct(key), name=f"environment:{key.target_triple}"
                )
                self._pending[key] = task

        # Shielded so one cancelled caller does not abort a shared construction.
        return await asyncio.shield(task)

    async def _construct(self, key: EnvironmentKey) -> Environment:
        try:
            env = await self._create(key)
        except BaseException:
            async with self._lock:
                self._pending.pop(key, None)
            raise
        async with self._lock:
            self._pending.pop(key, None)
            self._open[key] = env
        logger.info("using %s for %s", type(env).__name__, key.target_triple)
        return env

    async def _create(self, key: EnvironmentKey) -> Environment:
        host = await self.host_triple()
        target = key.target_triple

        if target == host:
            if key.host_env:
                logger.debug("ignoring host_env %r for the native target", key.host_env)
            return HostEnvironment(self._root)

        if is_linux(host) and is_android(target):
            return AndroidEnvironment(self._root, scheduler=self._scheduler)

        if is_linux(host) and is_linux(target) and triple_arch(host) == triple_arch(target):
            return await DockerEnvironment.start(
                self._root, target, key.host_env, scheduler=self._scheduler
            )

        raise EnvironmentUnavailable(
            f"no compatible environment for target {target} on host {host}"
        )

    async def cleanup_all(self) -> None:
        """Clean up every environment once, then raise the first failure."""

        async with self._lock:
            pending: List["asyncio.Task[Environment]"] = list(self._pending.values())
            self._pending.clear()
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        async with self._lock:
            envs = list(self._open.items())
            self._open.clear()

        first: Optional[BaseException] = None
        for key, env in envs:
            try:
                await env.cleanup()
            except Exception as e:
                logger.error("failed to clean up environment for %s: %s", key.target_triple, e)
                if first is None:
                    first = e
        if first is not None:
            raise first

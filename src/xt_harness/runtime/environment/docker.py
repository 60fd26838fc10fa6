"""Run commands inside a long-lived Docker container.

Useful for Linux targets on the host's architecture with a different C
library. Harness results from inside the container come back over a Unix
socket mounted into it.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import shlex
import tempfile
import uuid
from pathlib import Path
from typing import Callable, Optional, Sequence, Union

from xt_harness.errors import EnvironmentUnavailable, HarnessError, ProtocolError
from xt_harness.harness import UDS_SOCKET_ENV
from xt_harness.harness.listener import serve_unix_clients
from xt_harness.harness.reporter import ConsoleReporter, Reporter
from xt_harness.runtime.command import Arg, ProcessCommand, capture_stdout, docker, run
from xt_harness.runtime.environment.base import Environment
from xt_harness.runtime.environment.host import HostEnvironment
from xt_harness.runtime.scheduler import Scheduler, TaskHandle

logger = logging.getLogger(__name__)

IMAGE_REPO_ENV = "XT_HARNESS_DOCKER_IMAGE_REPO"
DEFAULT_IMAGE_REPO = "ghcr.io/xt-harness/runner"

CONTAINER_SETTLE_S = 0.1


def container_image(target_triple: str, host_env: Optional[str] = None) -> str:
    """Image reference for a target triple."""

    if "linux" in target_triple:
        if target_triple.endswith("gnu"):
            tag = "ubuntu"
        elif target_triple.endswith("musl"):
            tag = "alpine"
        else:
            raise EnvironmentUnavailable(f"unrecognized linux version {target_triple}")
    else:
        raise EnvironmentUnavailable(f"no container image for target triple {target_triple}")

    if host_env:
        raise EnvironmentUnavailable(
            f"host environment {host_env!r} is not supported for container targets"
        )

    repo = os.environ.get(IMAGE_REPO_ENV) or DEFAULT_IMAGE_REPO
    return f"{repo}:{tag}"


def ensure_text(value: Arg) -> str:
    """Return `value` as text, rejecting anything that is not valid UTF-8."""

    if isinstance(value, bytes):
        try:
            return value.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ProtocolError(f"argument is not valid UTF-8: {value!r}") from e
    text = os.fspath(value)
    try:
        text.encode("utf-8")
    except UnicodeEncodeError as e:
        raise ProtocolError(f"argument is not valid UTF-8: {text!r}") from e
    return text


def _listener_path() -> str:
    return os.path.join(tempfile.gettempdir(), f"xt_harness_{uuid.uuid4().hex[:12]}.sock")


async def _serve_listener(
    path: str,
    reporter_factory: Callable[[], Reporter],
    ready: "asyncio.Future[object]",
) -> None:
    # The container mounts this exact file, so it is bound once and never re-created.
    with contextlib.suppress(FileNotFoundError):
        os.unlink(path)
    try:
        await serve_unix_clients(path, reporter_factory, ready=ready)
    except OSError as e:
        if not ready.done():
            ready.set_exception(e)
            return
        logger.error("unable to run Unix listener: %s", e)


class DockerEnvironment(Environment):
    def __init__(
        self,
        host: HostEnvironment,
        container_id: str,
        *,
        scheduler: Scheduler,
        listener: Optional[TaskHandle[None]] = None,
        socket_path: Optional[str] = None,
    ) -> None:
        self._host = host
        self._container_id = container_id
        self._scheduler = scheduler
        self._listener = listener
        self._socket_path = socket_path
        self._cleaned = False

    @property
    def container_id(self) -> str:
        return self._container_id

    @property
    def socket_path(self) -> Optional[str]:
        return self._socket_path

    @classmethod
    async def start(
        cls,
        root: Union[str, Path],
        target_triple: str,
        host_env: Optional[str] = None,
        *,
        scheduler: Scheduler,
        reporter_factory: Callable[[], Reporter] = ConsoleReporter,
    ) -> "DockerEnvironment":
        """Start the container for `target_triple` and wait until it runs."""

        image = container_image(target_triple, host_env)
        host = HostEnvironment(root)
        root_text = ensure_text(os.fspath(root))

        listener: Optional[TaskHandle[None]] = None
        socket_path: Optional[str] = None
        if os.name == "posix":
            socket_path = _listener_path()
            ready: "asyncio.Future[object]" = asyncio.get_running_loop().create_future()
            listener = scheduler.spawn(
                _serve_listener(socket_path, reporter_factory, ready), name="docker-listener"
            )
            await ready

        cmd = docker().args(
            ["run", "--detach", "--volume", f"{root_text}:{root_text}", "--workdir", root_text]
        )
        if socket_path is not None:
            cmd.args(["--volume", f"{socket_path}:{socket_path}"])
            cmd.args(["--env", f"{UDS_SOCKET_ENV}={socket_path}"])
        cmd.args([image, "sh", "-c", "tail -f /dev/null"])

        try:
            output = await capture_stdout("docker run", await cmd.spawn(host), scheduler=scheduler)
        except HarnessError as e:
            if listener is not None:
                await listener.cancel()
            raise EnvironmentUnavailable(f"failed to start container {image}: {e}") from e

        container_id = output.strip()
        if not container_id:
            if listener is not None:
                await listener.cancel()
            raise EnvironmentUnavailable(f"docker run printed no container id for {image}")
        logger.info("running container: %s (%s)", container_id, image)

        await asyncio.sleep(CONTAINER_SETTLE_S)
        return cls(
            host,
            container_id,
            scheduler=scheduler,
            listener=listener,
            socket_path=socket_path,
        )

    async def run_command(
        self, cmd: str, args: Sequence[Arg], cwd: Optional[str] = None
    ) -> ProcessCommand:
        program = Path(ensure_text(cmd)).name
        if not program:
            raise ProtocolError(f"no file name for command {cmd!r}")
        sh_command = shlex.join([program] + [ensure_text(a) for a in args])
        logger.debug("docker exec with command: %s", sh_command)

        exec_cmd = docker().arg("exec")
        if cwd is not None:
            exec_cmd.args(["--workdir", ensure_text(cwd)])
        exec_cmd.args([self._container_id, "sh", "-c", sh_command])
        return await exec_cmd.spawn(self._host)

    async def cleanup(self) -> None:
        if self._cleaned:
            return
        self._cleaned = True

        try:
            await run(
                "docker stop",
                await docker().args(["stop", self._container_id]).spawn(self._host),
                scheduler=self._scheduler,
            )
            await run(
                "docker rm",
                await docker().args(["rm", self._container_id]).spawn(self._host),
                scheduler=self._scheduler,
            )
        finally:
            if self._listener is not None:
                await self._listener.cancel()
                self._listener = None
            if self._socket_path is not None:
                with contextlib.suppress(FileNotFoundError):
                    os.unlink(self._socket_path)

"""Container runtime client: the only code that shells out to docker/podman.

The orchestrator and console bridge talk to :class:`RuntimeClient`; tests
substitute a fake. :class:`DockerRuntime` is the real implementation.

One-shot commands go through ``subprocess.run`` in a worker thread via
``asyncio.to_thread`` so they never block the event loop. The log follower
is spawned with ``asyncio.create_subprocess_exec`` so its output can be read
as a stream for as long as the console session lives.
"""

from __future__ import annotations

import asyncio
import os
import shutil
import subprocess
import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Protocol

from mcnode.errors import RuntimeCommandFailed
from mcnode.logger import logger


@dataclass(frozen=True)
class RuntimeResult:
    """Exit status plus combined stdout/stderr of one runtime invocation."""

    argv: list[str]
    returncode: int
    output: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def check(self, action: str) -> RuntimeResult:
        """Raise :class:`RuntimeCommandFailed` unless the command succeeded."""
        if not self.ok:
            raise RuntimeCommandFailed(
                action, self.output, returncode=self.returncode, argv=self.argv
            )
        return self


@dataclass
class ContainerSpec:
    """Everything needed to define a container in one ``create``/``run``."""

    name: str
    image: str
    volume: str  # host path
    data_path: str  # mount point inside the container
    host_port: int | None = None
    game_port: int | None = None
    env: dict[str, str] = field(default_factory=dict)
    memory: str | None = None
    storage: str | None = None

    def to_args(self) -> list[str]:
        """Flags shared by ``create`` and ``run``, ending with the image."""
        args = ["--name", self.name]
        if self.host_port is not None and self.game_port is not None:
            args += ["-p", f"{self.host_port}:{self.game_port}"]
        args += ["-v", f"{self.volume}:{self.data_path}"]
        for key, value in self.env.items():
            args += ["-e", f"{key}={value}"]
        if self.memory:
            args += ["--memory", self.memory]
        if self.storage:
            args += ["--storage-opt", f"size={self.storage}"]
        args.append(self.image)
        return args


class RuntimeClient(Protocol):
    """Narrow interface over the container engine."""

    async def exists(self, name: str) -> bool: ...

    async def create(self, spec: ContainerSpec) -> RuntimeResult: ...

    async def run_detached(self, spec: ContainerSpec) -> RuntimeResult: ...

    async def start(self, name: str) -> RuntimeResult: ...

    async def stop(self, name: str) -> RuntimeResult: ...

    async def restart(self, name: str) -> RuntimeResult: ...

    async def status(self, name: str) -> RuntimeResult: ...

    async def exec(self, name: str, argv: Sequence[str]) -> RuntimeResult: ...

    async def follow_logs(self, name: str, tail: int) -> asyncio.subprocess.Process: ...


# ---------------------------------------------------------------------------
# Docker / Podman CLI implementation
# ---------------------------------------------------------------------------


def detect_cli(override: str | None = None) -> str:
    """Pick the runtime CLI.

    Priority: explicit override → CONTAINER_RUNTIME env var → docker on
    PATH → podman on PATH → "docker".
    """
    if override:
        return override
    env = os.environ.get("CONTAINER_RUNTIME", "").strip().lower()
    if env:
        return env
    for candidate in ("docker", "podman"):
        if shutil.which(candidate):
            return candidate
    return "docker"


class DockerRuntime:
    """:class:`RuntimeClient` backed by the ``docker`` (or ``podman``) CLI."""

    def __init__(self, cli: str = "docker", *, command_timeout: float = 60.0) -> None:
        self.cli = cli
        self.command_timeout = command_timeout

    def __repr__(self) -> str:
        return f"DockerRuntime(cli={self.cli!r})"

    # -- plumbing -------------------------------------------------------

    def _run_sync(self, args: Sequence[str], timeout: float) -> RuntimeResult:
        """Run one CLI command (blocking)."""
        argv = [self.cli, *args]
        start = time.monotonic()
        try:
            proc = subprocess.run(
                argv,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired as exc:
            raise RuntimeCommandFailed(
                f"{self.cli} {args[0]}",
                f"timed out after {timeout:.0f}s",
                argv=argv,
            ) from exc
        except OSError as exc:
            # FileNotFoundError when the CLI isn't installed
            raise RuntimeCommandFailed(f"{self.cli} {args[0]}", str(exc), argv=argv) from exc

        elapsed_ms = round((time.monotonic() - start) * 1000)
        logger.debug("Runtime command", argv=argv, code=proc.returncode, elapsed_ms=elapsed_ms)
        if proc.returncode != 0:
            logger.warning(
                "Runtime command failed",
                argv=argv,
                code=proc.returncode,
                output=(proc.stdout or "")[-500:],
            )
        return RuntimeResult(argv=argv, returncode=proc.returncode, output=proc.stdout or "")

    async def run(self, *args: str, timeout: float | None = None) -> RuntimeResult:
        """Run a CLI command without blocking the event loop."""
        return await asyncio.to_thread(
            self._run_sync, args, timeout if timeout is not None else self.command_timeout
        )

    # -- RuntimeClient --------------------------------------------------

    async def exists(self, name: str) -> bool:
        result = await self.run("container", "inspect", "--format", "{{.Id}}", name)
        return result.ok

    async def create(self, spec: ContainerSpec) -> RuntimeResult:
        return await self.run("create", *spec.to_args())

    async def run_detached(self, spec: ContainerSpec) -> RuntimeResult:
        # Image pulls on first run can take a while
        return await self.run("run", "-d", *spec.to_args(), timeout=max(self.command_timeout, 600))

    async def start(self, name: str) -> RuntimeResult:
        return await self.run("start", name)

    async def stop(self, name: str) -> RuntimeResult:
        return await self.run("stop", name)

    async def restart(self, name: str) -> RuntimeResult:
        return await self.run("restart", name)

    async def status(self, name: str) -> RuntimeResult:
        return await self.run("container", "inspect", "-f", "{{.State.Status}}", name)

    async def exec(self, name: str, argv: Sequence[str]) -> RuntimeResult:
        return await self.run("exec", name, *argv)

    async def follow_logs(self, name: str, tail: int) -> asyncio.subprocess.Process:
        """Spawn ``logs -f`` for *name*; the caller owns (and must kill) the process."""
        try:
            return await asyncio.create_subprocess_exec(
                self.cli,
                "logs",
                "-f",
                "--tail",
                str(tail),
                name,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except OSError as exc:
            raise RuntimeCommandFailed(f"{self.cli} logs", str(exc)) from exc

    # -- host checks ----------------------------------------------------

    def ensure_available(self) -> None:
        """Verify the runtime daemon answers, with an operator hint if not."""
        try:
            subprocess.run(
                [self.cli, "info"],
                capture_output=True,
                check=True,
                timeout=30,
            )
            logger.debug("Container runtime is reachable", cli=self.cli)
        except (subprocess.CalledProcessError, FileNotFoundError, subprocess.TimeoutExpired) as exc:
            raise RuntimeError(
                f"{self.cli} is required but not reachable. "
                f"Start it with: sudo systemctl start {self.cli}"
            ) from exc

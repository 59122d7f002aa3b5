"""Shared test fixtures for mcnode."""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from pathlib import Path

import pytest
from pydantic import SecretStr

from mcnode.runtime import ContainerSpec, RuntimeResult

TOKEN = "test-token"
AUTH = {"Authorization": f"Bearer {TOKEN}"}

# ---------------------------------------------------------------------------
# Shared helpers (plain functions, not fixtures, importable by test files)
# ---------------------------------------------------------------------------


def make_settings(tmp_path: Path, **overrides):
    """Create a Settings object rooted in *tmp_path* with a known token.

    Usage::

        s = make_settings(tmp_path)
        s = make_settings(tmp_path, lifecycle=LifecycleConfig(serialize_per_identity=False))
    """
    from mcnode.config import Settings, VolumesConfig

    overrides.setdefault("handshake_token", SecretStr(TOKEN))
    overrides.setdefault("volumes", VolumesConfig(root=str(tmp_path / "volume")))
    return Settings(**overrides)


class FakeProcess:
    """Simulates the ``logs -f`` asyncio.subprocess.Process."""

    def __init__(self) -> None:
        self.stdout = asyncio.StreamReader()
        self.pid = 4242
        self.terminated = False
        self.killed = False
        self._returncode: int | None = None
        self._wait_event = asyncio.Event()

    def emit(self, data: bytes) -> None:
        self.stdout.feed_data(data)

    def close(self, code: int = 0) -> None:
        """Simulate process exit."""
        if self._returncode is None:
            self._returncode = code
            self.stdout.feed_eof()
            self._wait_event.set()

    def terminate(self) -> None:
        self.terminated = True
        self.close(-15)

    def kill(self) -> None:
        self.killed = True
        self.close(-9)

    async def wait(self) -> int:
        await self._wait_event.wait()
        return self._returncode  # type: ignore[return-value]

    @property
    def returncode(self) -> int | None:
        return self._returncode


class FakeRuntime:
    """In-memory RuntimeClient that answers the way the docker CLI does.

    ``containers`` maps container name → state string (``created``,
    ``running``, ``exited``).
    """

    def __init__(self) -> None:
        self.containers: dict[str, str] = {}
        self.calls: list[tuple[str, ...]] = []
        self.specs: list[ContainerSpec] = []
        self.exec_results: dict[str, RuntimeResult] = {}
        self.processes: list[FakeProcess] = []
        self.fail_follow = False
        self.exec_delay = 0.0

    def _result(self, argv: Sequence[str], code: int = 0, output: str = "") -> RuntimeResult:
        return RuntimeResult(argv=list(argv), returncode=code, output=output)

    def _missing(self, verb: str, name: str) -> RuntimeResult:
        return self._result(
            ["docker", verb, name], 1, f"Error response from daemon: No such container: {name}\n"
        )

    def _conflict(self, verb: str, name: str) -> RuntimeResult:
        return self._result(
            ["docker", verb, name],
            125,
            f'Error response from daemon: Conflict. The container name "/{name}" '
            "is already in use by container \"abc123\".\n",
        )

    async def exists(self, name: str) -> bool:
        self.calls.append(("exists", name))
        return name in self.containers

    async def create(self, spec: ContainerSpec) -> RuntimeResult:
        self.calls.append(("create", spec.name))
        self.specs.append(spec)
        if spec.name in self.containers:
            return self._conflict("create", spec.name)
        self.containers[spec.name] = "created"
        return self._result(["docker", "create", spec.name], 0, "abc123\n")

    async def run_detached(self, spec: ContainerSpec) -> RuntimeResult:
        self.calls.append(("run", spec.name))
        self.specs.append(spec)
        if spec.name in self.containers:
            return self._conflict("run", spec.name)
        self.containers[spec.name] = "running"
        return self._result(["docker", "run", spec.name], 0, "abc123\n")

    async def start(self, name: str) -> RuntimeResult:
        self.calls.append(("start", name))
        if name not in self.containers:
            return self._missing("start", name)
        self.containers[name] = "running"
        return self._result(["docker", "start", name], 0, f"{name}\n")

    async def stop(self, name: str) -> RuntimeResult:
        self.calls.append(("stop", name))
        if name not in self.containers:
            return self._missing("stop", name)
        self.containers[name] = "exited"
        return self._result(["docker", "stop", name], 0, f"{name}\n")

    async def restart(self, name: str) -> RuntimeResult:
        self.calls.append(("restart", name))
        if name not in self.containers:
            return self._missing("restart", name)
        self.containers[name] = "running"
        return self._result(["docker", "restart", name], 0, f"{name}\n")

    async def status(self, name: str) -> RuntimeResult:
        self.calls.append(("status", name))
        if name not in self.containers:
            return self._missing("inspect", name)
        return self._result(["docker", "inspect", name], 0, f"{self.containers[name]}\n")

    async def exec(self, name: str, argv: Sequence[str]) -> RuntimeResult:
        self.calls.append(("exec", name, *argv))
        if self.exec_delay:
            await asyncio.sleep(self.exec_delay)
        if name not in self.containers:
            return self._missing("exec", name)
        return self.exec_results.get(
            argv[-1], self._result(["docker", "exec", name, *argv], 0, f"ran: {argv[-1]}\n")
        )

    async def follow_logs(self, name: str, tail: int) -> FakeProcess:  # type: ignore[override]
        from mcnode.errors import RuntimeCommandFailed

        self.calls.append(("logs", name, str(tail)))
        if self.fail_follow:
            raise RuntimeCommandFailed("docker logs", "No such file or directory: 'docker'")
        proc = FakeProcess()
        self.processes.append(proc)
        return proc


@pytest.fixture
def fake_runtime() -> FakeRuntime:
    return FakeRuntime()


@pytest.fixture
def settings(tmp_path: Path):
    return make_settings(tmp_path)

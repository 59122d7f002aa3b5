"""Lifecycle orchestrator: idempotent create/start/stop/restart/status.

No container state is recorded here. The runtime is the source of truth and
is queried on demand, so a failed command never leaves a stale local record;
the next ``status`` call reflects reality.

Every mutating operation issues one runtime subcommand (``start`` may first
ask whether the container exists) and turns a non-zero exit into
:class:`RuntimeCommandFailed` carrying the runtime's combined output.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import AsyncIterator
from pathlib import Path

from mcnode.config import Settings
from mcnode.errors import ValidationError
from mcnode.identity import ContainerIdentity, resolve
from mcnode.logger import logger
from mcnode.runtime import ContainerSpec, RuntimeClient
from mcnode.volumes import VolumeProvisioner

# Substrings the runtime prints when a container name is already taken
_NAME_CONFLICT_MARKERS = (
    "is already in use",
    "already exists",
)


def _is_name_conflict(output: str) -> bool:
    lower = output.lower()
    return any(marker in lower for marker in _NAME_CONFLICT_MARKERS)


def require_fields(**fields: str | None) -> None:
    """Raise ValidationError naming every empty field."""
    missing = [name for name, value in fields.items() if not value]
    if missing:
        raise ValidationError(f"{' and '.join(missing)} required")


class IdentityLocks:
    """asyncio.Lock per container identity, dropped once nobody holds or awaits it."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    @contextlib.asynccontextmanager
    async def hold(self, name: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(name, asyncio.Lock())
        self._users[name] = self._users.get(name, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[name] -= 1
            if not self._users[name]:
                del self._users[name]
                del self._locks[name]


class LifecycleOrchestrator:
    """Drives one container per identity through Absent → Created ⇄ Running/Stopped."""

    def __init__(
        self,
        settings: Settings,
        runtime: RuntimeClient,
        volumes: VolumeProvisioner,
    ) -> None:
        self.settings = settings
        self.runtime = runtime
        self.volumes = volumes
        self._locks = IdentityLocks() if settings.lifecycle.serialize_per_identity else None

    def identity(self, server_name: str, user_email: str) -> ContainerIdentity:
        require_fields(serverName=server_name, userEmail=user_email)
        return resolve(server_name, user_email)

    @contextlib.asynccontextmanager
    async def _serialized(self, identity: ContainerIdentity) -> AsyncIterator[None]:
        if self._locks is None:
            yield
            return
        async with self._locks.hold(identity.name):
            yield

    def _spec(
        self,
        identity: ContainerIdentity,
        volume: Path,
        *,
        host_port: int | None,
        env: dict[str, str] | None = None,
        memory: str | None = None,
        storage: str | None = None,
    ) -> ContainerSpec:
        rt = self.settings.runtime
        return ContainerSpec(
            name=identity.name,
            image=rt.image,
            volume=str(volume),
            data_path=rt.data_path,
            host_port=host_port if host_port is not None else rt.default_host_port,
            game_port=rt.game_port,
            env={**rt.env, **(env or {})},
            memory=memory,
            storage=storage,
        )

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def provision(self, server_name: str, user_email: str) -> Path:
        """Ensure the volume directory exists. No runtime interaction."""
        return self.volumes.ensure(self.identity(server_name, user_email))

    async def create(
        self,
        server_name: str,
        user_email: str,
        software: str,
        *,
        ram: str | None = None,
        storage: str | None = None,
        host_port: int | None = None,
    ) -> tuple[str, str]:
        """Define the container without starting it. Returns (server id, message).

        An existing definition counts as success; it is never diffed or updated.
        """
        identity = self.identity(server_name, user_email)
        require_fields(software=software)
        # Optional limits are passed through opaquely but must not be blank
        for label, value in (("ram", ram), ("storage", storage)):
            if value is not None and not value.strip():
                raise ValidationError(f"{label} must not be empty")

        async with self._serialized(identity):
            volume = self.volumes.ensure(identity)
            spec = self._spec(
                identity,
                volume,
                host_port=host_port,
                env={"TYPE": software, **({"MEMORY": ram} if ram else {})},
                memory=ram,
                storage=storage,
            )
            result = await self.runtime.create(spec)
            if not result.ok and _is_name_conflict(result.output):
                logger.info("Container already defined", identity=identity.name)
                return identity.name, "Server already exists"
            result.check("create")

        logger.info("Container created", identity=identity.name, software=software)
        return identity.name, "Server created successfully"

    async def start(
        self,
        server_name: str,
        user_email: str,
        *,
        host_port: int | None = None,
    ) -> str:
        """Ensure the container is running, creating it first if it doesn't exist."""
        identity = self.identity(server_name, user_email)
        async with self._serialized(identity):
            volume = self.volumes.ensure(identity)
            if await self.runtime.exists(identity.name):
                (await self.runtime.start(identity.name)).check("start")
                logger.info("Container started", identity=identity.name, path="start")
                return "Server started successfully"

            spec = self._spec(identity, volume, host_port=host_port)
            (await self.runtime.run_detached(spec)).check("run")
            logger.info(
                "Container started",
                identity=identity.name,
                path="run",
                host_port=spec.host_port,
            )
            return "Server created and started successfully"

    async def stop(self, server_name: str, user_email: str) -> str:
        identity = self.identity(server_name, user_email)
        async with self._serialized(identity):
            (await self.runtime.stop(identity.name)).check("stop")
        logger.info("Container stopped", identity=identity.name)
        return "Server stopped successfully"

    async def restart(self, server_name: str, user_email: str) -> str:
        identity = self.identity(server_name, user_email)
        async with self._serialized(identity):
            (await self.runtime.restart(identity.name)).check("restart")
        logger.info("Container restarted", identity=identity.name)
        return "Server restarted successfully"

    async def status(self, server_name: str, user_email: str) -> str:
        """Return the runtime's state string (e.g. ``running``, ``exited``)."""
        identity = self.identity(server_name, user_email)
        result = (await self.runtime.status(identity.name)).check("status")
        return result.output.strip()

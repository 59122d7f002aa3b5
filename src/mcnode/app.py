"""Node agent application: wires components and runs the HTTP server."""

from __future__ import annotations

import asyncio
import os
import signal

from aiohttp import web

from mcnode.config import Settings
from mcnode.http_server import build_app, start_http_server
from mcnode.lifecycle import LifecycleOrchestrator
from mcnode.logger import logger
from mcnode.runtime import DockerRuntime, RuntimeClient, detect_cli
from mcnode.volumes import VolumeProvisioner


class NodeApp:
    """Owns the runtime client, orchestrator and aiohttp application."""

    def __init__(self, settings: Settings, runtime: RuntimeClient | None = None) -> None:
        self.settings = settings
        if runtime is None:
            runtime = DockerRuntime(
                detect_cli(settings.runtime.cli),
                command_timeout=settings.runtime.command_timeout,
            )
        self.runtime = runtime
        self.volumes = VolumeProvisioner(settings.volume_root)
        self.orchestrator = LifecycleOrchestrator(settings, self.runtime, self.volumes)
        self.web_app: web.Application = build_app(settings, self.orchestrator, self.runtime)
        self._runner: web.AppRunner | None = None
        self._stop = asyncio.Event()
        self._shutting_down = False

    def _request_stop(self, sig_name: str) -> None:
        """Signal handler. Second signal force-exits."""
        if self._shutting_down:
            logger.info("Force shutdown")
            os._exit(1)
        self._shutting_down = True
        logger.info("Shutdown signal received", signal=sig_name)
        self._stop.set()

    async def run(self) -> None:
        """Serve until SIGTERM/SIGINT, then close console sessions and the server."""
        if isinstance(self.runtime, DockerRuntime):
            await asyncio.to_thread(self.runtime.ensure_available)

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self._request_stop, sig.name)

        self.settings.volume_root.mkdir(parents=True, exist_ok=True)
        self._runner = await start_http_server(
            self.web_app, self.settings.server.host, self.settings.server.port
        )
        logger.info(
            "Node agent ready",
            runtime=repr(self.runtime),
            image=self.settings.runtime.image,
            volume_root=str(self.settings.volume_root),
        )
        try:
            await self._stop.wait()
        finally:
            # cleanup() fires on_shutdown, which closes open console sessions
            await self._runner.cleanup()
            self._runner = None
            logger.info("Node agent stopped")

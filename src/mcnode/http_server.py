"""HTTP + WebSocket surface of the node agent.

Every route sits behind a static bearer-token check. Lifecycle endpoints
hand off to :class:`LifecycleOrchestrator`; ``/console`` upgrades to a
WebSocket served by :class:`ConsoleSession`; ``/files/*`` live in
:mod:`mcnode.files`.
"""

from __future__ import annotations

import secrets
import weakref
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

from aiohttp import web

from mcnode.config import Settings
from mcnode.console import ConsoleSession
from mcnode.errors import NodeError, ValidationError
from mcnode.lifecycle import LifecycleOrchestrator
from mcnode.logger import logger
from mcnode.runtime import RuntimeClient
from mcnode.volumes import VolumeProvisioner

settings_key = web.AppKey("settings", Settings)
orchestrator_key = web.AppKey("orchestrator", LifecycleOrchestrator)
runtime_key = web.AppKey("runtime", RuntimeClient)
volumes_key = web.AppKey("volumes", VolumeProvisioner)
sessions_key = web.AppKey("sessions", weakref.WeakSet)

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------


def error_response(exc: NodeError) -> web.Response:
    return web.json_response({"status": "error", "message": str(exc)}, status=exc.http_status)


async def read_json_body(request: web.Request) -> dict[str, Any]:
    try:
        body = await request.json()
    except ValueError as exc:
        raise ValidationError("Invalid JSON body") from exc
    if not isinstance(body, dict):
        raise ValidationError("Invalid JSON body")
    return body


def str_field(body: Mapping[str, Any], name: str) -> str:
    value = body.get(name)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValidationError(f"{name} must be a string")
    return value


def _optional_str(body: dict[str, Any], name: str) -> str | None:
    return str_field(body, name) or None


def _parse_port(raw: Any) -> int | None:
    """Accept a port as int or numeric string; empty means "use the default"."""
    if raw is None or raw == "":
        return None
    if isinstance(raw, bool) or (isinstance(raw, float) and not raw.is_integer()):
        raise ValidationError(f"hostPort must be an integer, got {raw!r}")
    try:
        port = int(raw)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"hostPort must be a number, got {raw!r}") from exc
    if not 0 < port < 65536:
        raise ValidationError(f"hostPort out of range: {port}")
    return port


# ------------------------------------------------------------------
# Auth
# ------------------------------------------------------------------


def make_auth_middleware(token: str) -> Any:
    expected = f"Bearer {token}"

    @web.middleware
    async def auth_middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
        header = request.headers.get("Authorization", "")
        if not header.startswith("Bearer "):
            logger.info("Rejected request without bearer token", path=request.path)
            return web.Response(status=401, text="Unauthorized - missing Bearer token")
        if not secrets.compare_digest(header.encode(), expected.encode()):
            logger.info("Rejected request with invalid token", path=request.path)
            return web.Response(status=401, text="Unauthorized - invalid token")
        return await handler(request)

    return auth_middleware


# ------------------------------------------------------------------
# Endpoints
# ------------------------------------------------------------------


async def _handle_handshake(request: web.Request) -> web.Response:
    return web.json_response({"status": "ok"})


async def _handle_create(request: web.Request) -> web.Response:
    orchestrator = request.app[orchestrator_key]
    try:
        body = await read_json_body(request)
        server_id, message = await orchestrator.create(
            str_field(body, "serverName"),
            str_field(body, "userEmail"),
            str_field(body, "software"),
            ram=_optional_str(body, "ram"),
            storage=_optional_str(body, "storage"),
            host_port=_parse_port(body.get("hostPort")),
        )
    except NodeError as exc:
        return error_response(exc)
    return web.json_response({"status": "ok", "serverId": server_id, "message": message})


async def _handle_start(request: web.Request) -> web.Response:
    orchestrator = request.app[orchestrator_key]
    try:
        body = await read_json_body(request)
        message = await orchestrator.start(
            str_field(body, "serverName"),
            str_field(body, "userEmail"),
            host_port=_parse_port(body.get("hostPort")),
        )
    except NodeError as exc:
        return error_response(exc)
    return web.json_response({"status": "ok", "message": message})


async def _handle_stop(request: web.Request) -> web.Response:
    orchestrator = request.app[orchestrator_key]
    try:
        body = await read_json_body(request)
        message = await orchestrator.stop(
            str_field(body, "serverName"), str_field(body, "userEmail")
        )
    except NodeError as exc:
        return error_response(exc)
    return web.json_response({"status": "ok", "message": message})


async def _handle_restart(request: web.Request) -> web.Response:
    orchestrator = request.app[orchestrator_key]
    try:
        body = await read_json_body(request)
        message = await orchestrator.restart(
            str_field(body, "serverName"), str_field(body, "userEmail")
        )
    except NodeError as exc:
        return error_response(exc)
    return web.json_response({"status": "ok", "message": message})


async def _handle_status(request: web.Request) -> web.Response:
    orchestrator = request.app[orchestrator_key]
    try:
        state = await orchestrator.status(
            request.query.get("serverName", ""), request.query.get("userEmail", "")
        )
    except NodeError as exc:
        return error_response(exc)
    return web.json_response({"status": "ok", "message": state})


async def _handle_console(request: web.Request) -> web.WebSocketResponse:
    ws = web.WebSocketResponse(heartbeat=30.0)
    await ws.prepare(request)

    session = ConsoleSession(ws, request.app[runtime_key], request.app[settings_key])
    request.app[sessions_key].add(session)
    try:
        await session.run()
    finally:
        request.app[sessions_key].discard(session)
    return ws


async def _close_console_sessions(app: web.Application) -> None:
    for session in list(app[sessions_key]):
        await session.close()


# ------------------------------------------------------------------
# Server setup
# ------------------------------------------------------------------


def build_app(
    settings: Settings,
    orchestrator: LifecycleOrchestrator,
    runtime: RuntimeClient,
) -> web.Application:
    """Assemble the aiohttp application with auth, lifecycle, console and file routes."""
    from mcnode.files import add_file_routes

    app = web.Application(middlewares=[make_auth_middleware(settings.require_token())])
    app[settings_key] = settings
    app[orchestrator_key] = orchestrator
    app[runtime_key] = runtime
    app[volumes_key] = orchestrator.volumes
    app[sessions_key] = weakref.WeakSet()
    app.on_shutdown.append(_close_console_sessions)

    app.router.add_get("/handshake", _handle_handshake)
    app.router.add_post("/server/create", _handle_create)
    app.router.add_post("/server/start", _handle_start)
    app.router.add_post("/server/stop", _handle_stop)
    app.router.add_post("/server/restart", _handle_restart)
    app.router.add_get("/server/status", _handle_status)
    app.router.add_get("/console", _handle_console)
    add_file_routes(app)
    return app


async def start_http_server(app: web.Application, host: str, port: int) -> web.AppRunner:
    """Start serving *app* and return the runner (caller cleans it up)."""
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, host, port)
    await site.start()
    logger.info("HTTP server listening", host=host, port=port)
    return runner

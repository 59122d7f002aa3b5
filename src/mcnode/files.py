"""File endpoints over a server's volume directory.

Paths from the caller are always resolved through
:meth:`VolumeProvisioner.resolve_file`, which rejects anything that would
land outside the volume.
"""

from __future__ import annotations

import base64
import binascii
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from aiohttp import web

from mcnode.errors import FilesystemError, NodeError, NotFoundError, ValidationError
from mcnode.http_server import error_response, read_json_body, str_field, volumes_key
from mcnode.identity import resolve
from mcnode.lifecycle import require_fields


def _target(request: web.Request, source: Mapping[str, Any], *, path_required: bool) -> Path:
    server_name = str_field(source, "serverName")
    user_email = str_field(source, "userEmail")
    relative = str_field(source, "path")
    require_fields(serverName=server_name, userEmail=user_email)
    if path_required:
        require_fields(path=relative)
    volumes = request.app[volumes_key]
    return volumes.resolve_file(resolve(server_name, user_email), relative)


def list_entries(directory: Path) -> list[dict[str, object]]:
    try:
        entries = sorted(directory.iterdir(), key=lambda p: p.name)
    except FileNotFoundError as exc:
        raise NotFoundError(f"Failed to read directory: {exc}") from exc
    except OSError as exc:
        raise FilesystemError(f"Failed to read directory: {exc}") from exc
    return [{"name": p.name, "isDir": p.is_dir()} for p in entries]


async def _handle_list(request: web.Request) -> web.Response:
    try:
        entries = list_entries(_target(request, request.query, path_required=False))
    except NodeError as exc:
        return error_response(exc)
    return web.json_response(entries)


async def _handle_download(request: web.Request) -> web.Response:
    try:
        path = _target(request, request.query, path_required=True)
        try:
            data = path.read_bytes()
        except (FileNotFoundError, IsADirectoryError) as exc:
            raise NotFoundError(f"Failed to read file: {exc}") from exc
        except OSError as exc:
            raise FilesystemError(f"Failed to read file: {exc}") from exc
    except NodeError as exc:
        return error_response(exc)
    return web.Response(
        body=data,
        content_type="application/octet-stream",
        headers={"Content-Disposition": f"attachment; filename={path.name}"},
    )


async def _handle_upload(request: web.Request) -> web.Response:
    try:
        body = await read_json_body(request)
        path = _target(request, body, path_required=True)
        encoded = str_field(body, "contentBase64")
        require_fields(contentBase64=encoded)
        try:
            content = base64.b64decode(encoded, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ValidationError(f"Failed to decode base64: {exc}") from exc
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(content)
        except OSError as exc:
            raise FilesystemError(f"Failed to write file: {exc}") from exc
    except NodeError as exc:
        return error_response(exc)
    return web.json_response({"status": "ok", "message": "File uploaded"})


async def _handle_delete(request: web.Request) -> web.Response:
    try:
        body = await read_json_body(request)
        path = _target(request, body, path_required=True)
        try:
            path.unlink()
        except FileNotFoundError as exc:
            raise NotFoundError(f"Failed to delete file: {exc}") from exc
        except IsADirectoryError as exc:
            raise ValidationError(f"Not a file: {str_field(body, 'path')}") from exc
        except OSError as exc:
            raise FilesystemError(f"Failed to delete file: {exc}") from exc
    except NodeError as exc:
        return error_response(exc)
    return web.json_response({"status": "ok", "message": "File deleted"})


def add_file_routes(app: web.Application) -> None:
    app.router.add_get("/files/list", _handle_list)
    app.router.add_get("/files/download", _handle_download)
    app.router.add_post("/files/upload", _handle_upload)
    app.router.add_post("/files/delete", _handle_delete)

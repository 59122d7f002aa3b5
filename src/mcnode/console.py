"""Console bridge: one WebSocket session per live console connection.

A session tails the container's log output and relays it to the client
while accepting in-container commands:

    Connecting → Attached → (Streaming ∥ AwaitingCommand) → Closing → Closed

Two tasks run per session. The relay task reads the ``logs -f`` process and
forwards each chunk; the command loop (the request handler itself) reads
inbound frames and runs one command at a time. Both write through
:meth:`ConsoleSession.send`, which holds a per-session lock so only one
writer touches the socket at a time. Log chunks and command results share
the channel untyped; clients cannot tell them apart.
"""

from __future__ import annotations

import asyncio
import codecs
import contextlib
import enum
import json
from typing import Any

from aiohttp import WSMsgType, web

from mcnode.config import Settings
from mcnode.errors import ProtocolError, RuntimeCommandFailed
from mcnode.identity import ContainerIdentity, resolve
from mcnode.logger import logger
from mcnode.runtime import RuntimeClient

_CHUNK_SIZE = 4096
_TERMINATE_GRACE = 3.0  # seconds between SIGTERM and SIGKILL for the log follower


class SessionState(enum.Enum):
    CONNECTING = "connecting"
    ATTACHED = "attached"
    STREAMING = "streaming"
    CLOSING = "closing"
    CLOSED = "closed"


def error_frame(message: str) -> str:
    return json.dumps({"status": "error", "message": message})


def parse_hello(raw: str) -> ContainerIdentity:
    """Parse the initial control frame into the identity it names."""
    payload = _decode_object(raw)
    server_name = payload.get("serverName")
    user_email = payload.get("userEmail")
    if not isinstance(server_name, str) or not isinstance(user_email, str):
        raise ProtocolError("serverName and userEmail required")
    if not server_name or not user_email:
        raise ProtocolError("serverName and userEmail required")
    return resolve(server_name, user_email)


def parse_command(raw: str) -> str | None:
    """Return the command text of a ``{"action": "command"}`` frame.

    Frames with any other action, or with an empty command, yield None.
    """
    payload = _decode_object(raw)
    if payload.get("action") != "command":
        return None
    command = payload.get("command")
    if not isinstance(command, str) or not command:
        return None
    return command


def _decode_object(raw: str) -> dict[str, Any]:
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ProtocolError(f"invalid JSON: {exc.msg}") from exc
    if not isinstance(payload, dict):
        raise ProtocolError("frame must be a JSON object")
    return payload


class ConsoleSession:
    """Bridges one WebSocket to one container's log stream and command channel."""

    def __init__(self, ws: web.WebSocketResponse, runtime: RuntimeClient, settings: Settings):
        self.ws = ws
        self.runtime = runtime
        self.settings = settings
        self.state = SessionState.CONNECTING
        self.identity: ContainerIdentity | None = None
        self.proc: asyncio.subprocess.Process | None = None
        self._relay_task: asyncio.Task[None] | None = None
        self._send_lock = asyncio.Lock()

    async def send(self, text: str) -> bool:
        """Write one frame. Returns False (and starts closing) if the write fails."""
        async with self._send_lock:
            if self.ws.closed:
                return False
            try:
                await self.ws.send_str(text)
            except (ConnectionResetError, RuntimeError) as exc:
                logger.info("Console write failed", identity=str(self.identity), err=str(exc))
                self.state = SessionState.CLOSING
                with contextlib.suppress(Exception):
                    await self.ws.close()
                return False
            return True

    async def run(self) -> None:
        """Serve the session until either side disconnects."""
        try:
            if not await self._handshake():
                return
            await self._attach()
            if self.state is SessionState.STREAMING:
                await self._command_loop()
        finally:
            await self.close()

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    async def _handshake(self) -> bool:
        msg = await self.ws.receive()
        if msg.type != WSMsgType.TEXT:
            if msg.type not in (WSMsgType.CLOSE, WSMsgType.CLOSING, WSMsgType.CLOSED):
                await self.send(error_frame("first frame must be a JSON text frame"))
            return False
        try:
            self.identity = parse_hello(msg.data)
        except ProtocolError as exc:
            await self.send(error_frame(str(exc)))
            return False
        self.state = SessionState.ATTACHED
        return True

    async def _attach(self) -> None:
        assert self.identity is not None
        try:
            self.proc = await self.runtime.follow_logs(
                self.identity.name, self.settings.runtime.log_tail
            )
        except RuntimeCommandFailed as exc:
            await self.send(error_frame(str(exc)))
            return
        logger.info("Console attached", identity=self.identity.name, pid=self.proc.pid)
        self._relay_task = asyncio.ensure_future(self._relay_logs(self.proc))
        self.state = SessionState.STREAMING

    async def _relay_logs(self, proc: asyncio.subprocess.Process) -> None:
        """Forward log chunks in arrival order until EOF, read error, or write failure."""
        assert proc.stdout is not None
        # Multi-byte characters may straddle two reads
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        try:
            while True:
                chunk = await proc.stdout.read(_CHUNK_SIZE)
                if not chunk:
                    break
                text = decoder.decode(chunk)
                if text and not await self.send(text):
                    return
        except (OSError, ValueError) as exc:
            logger.warning("Console log stream failed", identity=str(self.identity), err=str(exc))
            return
        tail = decoder.decode(b"", final=True)
        if tail and not await self.send(tail):
            return
        # End of log stream only stops relaying; commands are still accepted
        logger.info("Console log stream ended", identity=str(self.identity))

    async def _command_loop(self) -> None:
        assert self.identity is not None
        async for msg in self.ws:
            if msg.type == WSMsgType.TEXT:
                if not await self._handle_frame(msg.data):
                    return
            elif msg.type == WSMsgType.BINARY:
                if not await self.send(error_frame("binary frames are not supported")):
                    return
            elif msg.type == WSMsgType.ERROR:
                logger.info(
                    "Console connection error",
                    identity=self.identity.name,
                    err=str(self.ws.exception()),
                )
                return

    async def _handle_frame(self, raw: str) -> bool:
        assert self.identity is not None
        try:
            command = parse_command(raw)
        except ProtocolError as exc:
            return await self.send(error_frame(str(exc)))
        if command is None:
            return True

        argv = [*self.settings.runtime.console_command, command]
        try:
            result = await self.runtime.exec(self.identity.name, argv)
        except RuntimeCommandFailed as exc:
            return await self.send(str(exc))
        if result.ok:
            logger.info("Console command executed", identity=self.identity.name)
            return await self.send(result.output)
        failure = RuntimeCommandFailed(
            "exec", result.output, returncode=result.returncode, argv=result.argv
        )
        return await self.send(str(failure))

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    async def close(self) -> None:
        """Kill the log follower, stop relaying and close the socket. Idempotent."""
        if self.state is SessionState.CLOSED:
            return
        self.state = SessionState.CLOSING

        if self.proc is not None and self.proc.returncode is None:
            await _terminate(self.proc)

        if self._relay_task is not None and not self._relay_task.done():
            self._relay_task.cancel()

        if not self.ws.closed:
            with contextlib.suppress(Exception):
                await self.ws.close()

        self.state = SessionState.CLOSED
        logger.info("Console closed", identity=str(self.identity))


async def _terminate(proc: asyncio.subprocess.Process) -> None:
    """SIGTERM the follower, escalating to SIGKILL if it lingers."""
    with contextlib.suppress(ProcessLookupError):
        proc.terminate()
    try:
        await asyncio.wait_for(proc.wait(), timeout=_TERMINATE_GRACE)
    except TimeoutError:
        logger.warning("Log follower ignored SIGTERM, killing", pid=proc.pid)
        with contextlib.suppress(ProcessLookupError):
            proc.kill()
        with contextlib.suppress(Exception):
            await proc.wait()

"""Error taxonomy shared by the HTTP surface, orchestrator and console bridge.

Every error carries the HTTP status it renders as. Handlers catch
``NodeError`` and turn it into ``{"status": "error", "message": ...}``;
anything else propagates to aiohttp.
"""

from __future__ import annotations

from collections.abc import Sequence


class NodeError(Exception):
    """Base for failures that are reported to the caller."""

    http_status = 500


class ValidationError(NodeError):
    """A required field is missing or empty, or a request body is malformed."""

    http_status = 400


class NotFoundError(NodeError):
    """A requested file does not exist under the server's volume."""

    http_status = 404


class FilesystemError(NodeError):
    """Creating or touching a host directory/file failed."""

    http_status = 500


class RuntimeCommandFailed(NodeError):
    """The container runtime exited non-zero (or could not be run at all).

    ``output`` is the combined stdout/stderr of the runtime process, kept
    verbatim so operators see exactly what the runtime said.
    """

    http_status = 500

    def __init__(
        self,
        action: str,
        output: str,
        *,
        returncode: int | None = None,
        argv: Sequence[str] = (),
    ) -> None:
        self.action = action
        self.output = output
        self.returncode = returncode
        self.argv = list(argv)
        detail = output.strip()
        msg = f"{action} error: {detail}" if detail else f"{action} error"
        if returncode is not None:
            msg += f" (exit status {returncode})"
        super().__init__(msg)


class ProtocolError(NodeError):
    """A console frame could not be understood. Reported in-band."""

    http_status = 400

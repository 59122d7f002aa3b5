"""Entry point for `python -m mcnode` / `mcnode`.

Subcommands:
    mcnode              Run the node agent (default)
    mcnode serve        Same as above
    mcnode check        Verify settings and the container runtime, then exit
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from typing import TYPE_CHECKING

from pydantic import ValidationError

if TYPE_CHECKING:
    from mcnode.config import Settings


def _load() -> Settings:
    from mcnode.config import load_settings
    from mcnode.logger import configure_logging

    try:
        settings = load_settings()
        settings.require_token()
    except (ValidationError, ValueError) as exc:
        print(f"Error: invalid configuration: {exc}", file=sys.stderr)
        sys.exit(1)
    configure_logging(settings.logging.level, settings.logging.format)
    return settings


def _serve() -> None:
    from mcnode.app import NodeApp

    app = NodeApp(_load())
    asyncio.run(app.run())


def _check() -> None:
    from mcnode.runtime import DockerRuntime, detect_cli

    settings = _load()
    runtime = DockerRuntime(detect_cli(settings.runtime.cli))
    try:
        runtime.ensure_available()
    except RuntimeError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)
    print(f"runtime:     {runtime.cli}")
    print(f"image:       {settings.runtime.image}")
    print(f"volume root: {settings.volume_root}")
    print(f"listen:      {settings.server.host}:{settings.server.port}")


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="mcnode",
        description="Game-server container agent with a live console bridge",
    )
    sub = parser.add_subparsers(dest="command")
    sub.add_parser("serve", help="Run the node agent (default)")
    sub.add_parser("check", help="Verify settings and the container runtime")

    args = parser.parse_args()

    match args.command:
        case "check":
            _check()
        case _:
            _serve()


if __name__ == "__main__":
    main()

"""Structured logging for the node agent.

The logger works from import time, using ``LOG_LEVEL`` from the environment,
because the settings may fail to load and that failure must be reportable.
Once settings are loaded, :func:`configure_logging` applies ``[logging]``
(level and ``console``/``json`` output). Operation-scoped context such as the
container identity is bound per call (``logger.info(..., identity=name)``).
"""

from __future__ import annotations

import logging
import os
import sys

import structlog


def _output_processors(fmt: str) -> list[structlog.types.Processor]:
    if fmt == "json":
        return [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    return [structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())]


def configure_logging(level_name: str = "INFO", fmt: str = "console") -> None:
    """(Re)configure stdlib and structlog. Safe to call more than once."""
    level = getattr(logging, level_name.upper(), logging.INFO)

    # filter_by_level consults the stdlib root logger
    logging.basicConfig(level=level, format="%(message)s", stream=sys.stderr)
    logging.getLogger().setLevel(level)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            *_output_processors(fmt),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )


configure_logging(os.environ.get("LOG_LEVEL", "INFO"))
logger: structlog.stdlib.BoundLogger = structlog.get_logger("mcnode")


def _uncaught_exception_handler(
    exc_type: type[BaseException],
    exc_value: BaseException,
    exc_tb: object,
) -> None:
    if issubclass(exc_type, KeyboardInterrupt):
        sys.__excepthook__(exc_type, exc_value, exc_tb)  # type: ignore[arg-type]
        return
    logger.critical("Uncaught exception", exc_info=(exc_type, exc_value, exc_tb))
    sys.exit(1)


sys.excepthook = _uncaught_exception_handler

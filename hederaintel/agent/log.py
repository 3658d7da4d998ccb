"""Logging configuration using loguru.

Every record carries the agent name (``extra["agent"]``) so output from
several agents sharing a terminal or log collector stays attributable.
Records emitted through stdlib ``logging`` (redis, httpx, uvicorn) are
forwarded into the same sink.
"""

from __future__ import annotations

import logging
import sys
from typing import Any

from loguru import logger

_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<magenta>{extra[agent]}</magenta> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level>"
)

# Library loggers that are chatty at INFO.
_QUIET_LOGGERS = ("httpx", "httpcore", "uvicorn.access", "redis")


class _InterceptHandler(logging.Handler):
    """Forward stdlib records to loguru, keeping the caller's location."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame, depth = logging.currentframe(), 2
        while frame is not None and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def setup_logging(
    level: str = "INFO",
    *,
    agent_name: str = "HederaIntel",
    serialize: bool = False,
    sink: Any = None,
) -> None:
    """Make loguru the only log sink for the process.

    ``serialize=True`` writes one serialized record per line instead of the
    colored console format.
    """
    level = level.upper()
    sink = sink or sys.stderr

    logger.remove()
    logger.configure(extra={"agent": agent_name})
    if serialize:
        logger.add(sink, level=level, serialize=True)
    else:
        logger.add(sink, level=level, format=_FORMAT)

    logging.basicConfig(handlers=[_InterceptHandler()], level=0, force=True)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logger.debug("Logging initialised (level={}, serialize={})", level, serialize)

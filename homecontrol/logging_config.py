"""
Structured logging for HomeControl, built on structlog over stdlib logging.

Console output for development, one JSON object per line for the worker
running under a process supervisor. Sweep-scoped values (run_id) are bound
with bind_run_context() and ride along on every event until cleared.

Usage:
    from homecontrol.logging_config import setup_logging, get_logger

    setup_logging(json_output=True)
    logger = get_logger(__name__)
    logger.info("push_enqueued", notification_id=nid)

Environment:
    HOMECONTROL_LOG_LEVEL   DEBUG, INFO (default), WARNING, ...
    HOMECONTROL_LOG_FORMAT  "json" for JSON lines, anything else for console
"""

from __future__ import annotations

import logging
import os
import sys
from typing import Any

import structlog

# Library loggers that are noisy at INFO during push sweeps
_QUIET_LOGGERS = ("aiohttp.access", "aiohttp.client", "asyncio")


def _resolve_level(level: str | None) -> int:
    name = level or os.environ.get("HOMECONTROL_LOG_LEVEL", "INFO")
    return getattr(logging, name.upper(), logging.INFO)


def setup_logging(level: str | None = None, json_output: bool | None = None) -> None:
    """
    Configure structlog and the root logger.

    Args:
        level: Log level name (defaults to HOMECONTROL_LOG_LEVEL, then INFO)
        json_output: JSON lines instead of console output
            (defaults to HOMECONTROL_LOG_FORMAT == "json")
    """
    numeric_level = _resolve_level(level)
    if json_output is None:
        json_output = os.environ.get("HOMECONTROL_LOG_FORMAT", "").lower() == "json"

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if json_output:
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer(default=str)
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared_processors,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                renderer,
            ],
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(numeric_level)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def bind_run_context(**values: Any) -> None:
    """Attach values (e.g. run_id) to every event logged in this context."""
    structlog.contextvars.bind_contextvars(**values)


def clear_run_context(*keys: str) -> None:
    """Drop the given context keys, or all of them when none are named."""
    if keys:
        structlog.contextvars.unbind_contextvars(*keys)
    else:
        structlog.contextvars.clear_contextvars()


__all__ = ["get_logger", "setup_logging", "bind_run_context", "clear_run_context"]

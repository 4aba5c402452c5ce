"""Structured logging for sessionbus.

Registries and scopes log through structlog with their name bound as
context (``registry=...`` / ``scope=...``), so every event a registry
emits can be filtered by the registry that produced it.

Unset arguments to ``configure_logging`` fall back to the environment:

    SESSIONBUS_LOG_LEVEL   DEBUG, INFO, WARNING, ERROR, CRITICAL (default INFO)
    SESSIONBUS_LOG_JSON    render JSON lines instead of console output
    SESSIONBUS_LOG_FILE    append to this file instead of stderr
"""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import Mapping
from pathlib import Path
from typing import Any, TextIO

import structlog

from sessionbus.errors import ConfigError

_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def _resolve_level(level: str) -> int:
    name = level.strip().upper()
    if name not in _LEVELS:
        raise ConfigError(f"log level must be one of: {', '.join(_LEVELS)} (got {level!r})")
    return getattr(logging, name)


def configure_logging(
    level: str | None = None,
    json_output: bool | None = None,
    log_file: Path | None = None,
    colors: bool = True,
    environ: Mapping[str, str] | None = None,
) -> None:
    """Configure structlog and the stdlib root logger it writes through.

    Args:
        level: Log level; ``SESSIONBUS_LOG_LEVEL`` when omitted
        json_output: JSON lines; ``SESSIONBUS_LOG_JSON`` when omitted
        log_file: Append to a file; ``SESSIONBUS_LOG_FILE`` when omitted
        colors: Colorize console output (ignored for JSON)
        environ: Environment to read instead of ``os.environ``
    """
    env = os.environ if environ is None else environ

    numeric_level = _resolve_level(level or env.get("SESSIONBUS_LOG_LEVEL", "INFO"))
    if json_output is None:
        json_output = env.get("SESSIONBUS_LOG_JSON", "").strip().lower() in ("1", "true", "yes", "on")
    if log_file is None and env.get("SESSIONBUS_LOG_FILE"):
        log_file = Path(env["SESSIONBUS_LOG_FILE"])

    stream: TextIO = sys.stderr
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        stream = open(log_file, "a", encoding="utf-8")  # noqa: SIM115

    logging.basicConfig(format="%(message)s", stream=stream, level=numeric_level, force=True)

    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer(colors=colors),
    ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str, **context: Any) -> structlog.stdlib.BoundLogger:
    """Get a structured logger with ``context`` bound to every event.

    The logger is resolved lazily, so one created before
    ``configure_logging`` still picks up the configuration.
    """
    return structlog.get_logger(name, **context)

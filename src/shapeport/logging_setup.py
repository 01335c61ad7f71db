"""Logging configuration for ShapePort.

Provides consistent structured logging setup for the CLI and the MCP server.
"""

from __future__ import annotations

import logging
import sys
from typing import Any, List, TextIO

import structlog


def configure_logging(
    level: str = "INFO",
    enable_colors: bool = True,
    enable_json: bool = False,
    extra_processors: List[Any] | None = None,
    stream: TextIO | None = None,
) -> None:
    """Configure structured logging for ShapePort.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        enable_colors: Enable colored output for console
        enable_json: Use JSON output format
        extra_processors: Additional structlog processors
        stream: Output stream, stdout by default; the MCP server passes
            stderr because stdout carries the protocol
    """
    stream = stream or sys.stdout
    numeric_level = LOG_LEVELS.get(level.upper(), logging.INFO)

    logging.basicConfig(format="%(message)s", stream=stream, level=numeric_level)

    processors: List[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="ISO"),
    ]

    if extra_processors:
        processors.extend(extra_processors)

    if enable_json:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=enable_colors and stream.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        logger_factory=structlog.WriteLoggerFactory(file=stream),
        cache_logger_on_first_use=True,
    )


LOG_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

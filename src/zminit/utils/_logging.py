"""Logging utilities for zminit.

This module provides standalone structlog logger factories that write
JSON-formatted or text-formatted records either to stdout (the container
log) or to a size-rotated file. Each logger is self-contained and does not
modify global structlog configuration.
"""

import logging
import sys
from logging.handlers import RotatingFileHandler
from os import getenv
from pathlib import Path
from typing import TYPE_CHECKING, Literal, cast

import structlog

if TYPE_CHECKING:
    from structlog.typing import FilteringBoundLogger

LogFormatType = Literal["json", "text"]


def _log_level_from_string(level: str, *, respect_env: bool = False) -> int:
    """Convert a log level string to a logging level integer.

    Args:
        level: Log level string (debug, info, warning, error).
        respect_env: If True, ZMINIT_DEBUG overrides to DEBUG level and
            ZMINIT_LOG_LEVEL overrides the given level.

    Returns:
        The logging level as an integer.
    """
    if respect_env:
        if getenv("ZMINIT_DEBUG", None):
            return logging.DEBUG
        level = getenv("ZMINIT_LOG_LEVEL", level)

    log_levels = logging.getLevelNamesMapping()
    return log_levels.get(level.upper(), logging.INFO)


def _rotating_logger(path: Path, level: int, max_bytes: int, backup_count: int) -> logging.Logger:
    # id() keeps two loggers on same-named files apart
    rotating = logging.getLogger(f"zminit.{path.stem}.{id(path)}")
    rotating.handlers.clear()
    rotating.propagate = False
    rotating.setLevel(level)

    handler = RotatingFileHandler(path, maxBytes=max_bytes, backupCount=backup_count)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter("%(message)s"))
    rotating.addHandler(handler)
    return rotating


def _sink_for(
    log_file_path: str,
    level: int,
    max_bytes: int | None,
    backup_count: int | None,
) -> object:
    if not log_file_path:
        return structlog.WriteLoggerFactory(file=sys.stdout)()

    path = Path(log_file_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    if max_bytes is None or backup_count is None:
        return structlog.WriteLoggerFactory(file=path.open("a"))()
    return _rotating_logger(path, level, max_bytes, backup_count)


def _renderers(log_format: LogFormatType) -> list[structlog.typing.Processor]:
    if log_format == "text":
        return [structlog.dev.ConsoleRenderer(colors=False)]
    return [structlog.processors.dict_tracebacks, structlog.processors.JSONRenderer()]


def _create_logger(
    log_file_path: str,
    *,
    log_level: int = logging.INFO,
    log_format: LogFormatType = "json",
    max_bytes: int | None = None,
    backup_count: int | None = None,
) -> "FilteringBoundLogger":  # noqa: UP037
    """Create a standalone structlog logger.

    Rotation is only enabled when both ``max_bytes`` and ``backup_count``
    are given; otherwise a file path is appended to without limit.

    Args:
        log_file_path: Path to the log file, or empty for stdout.
        log_level: Minimum level to emit.
        log_format: Output format, either "json" or "text".
        max_bytes: Size at which the file is rotated.
        backup_count: Number of rotated files to keep.
    """
    processors: list[structlog.typing.Processor] = [
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        *_renderers(log_format),
    ]
    return cast(
        "FilteringBoundLogger",
        structlog.wrap_logger(
            _sink_for(log_file_path, log_level, max_bytes, backup_count),
            processors=processors,
            wrapper_class=structlog.make_filtering_bound_logger(log_level),
            context_class=dict,
        ),
    )


def create_supervisor_logger(
    *,
    level: str = "info",
    log_format: LogFormatType = "text",
    log_file: str = "",
    max_bytes: int | None = None,
    backup_count: int | None = None,
    component: str = "",
) -> "FilteringBoundLogger":  # noqa: UP037
    """Create the logger used for supervisor records.

    Every lifecycle transition and error is written through this logger so
    that operators get a timestamped, structured history of the container.

    The log level can be overridden by environment variables:
    - ZMINIT_DEBUG: If set, enables DEBUG level logging regardless of config
    - ZMINIT_LOG_LEVEL: Replaces the configured level

    Args:
        level: Log level threshold (debug, info, warning, error).
        log_format: Output format, either "json" or "text".
        log_file: Path to log file (stdout if empty).
        max_bytes: Rotate the log file at this size (file output only).
        backup_count: Number of rotated files to keep (file output only).
        component: Component name bound to all entries, if provided.

    Returns:
        A FilteringBoundLogger instance.
    """
    logger = _create_logger(
        log_file,
        log_level=_log_level_from_string(level, respect_env=True),
        log_format=log_format,
        max_bytes=max_bytes,
        backup_count=backup_count,
    )

    if component:
        return logger.bind(component=component)
    return logger


def get_null_logger() -> "FilteringBoundLogger":  # noqa: UP037
    """Return a logger that drops everything below CRITICAL.

    Used as the default when a component is constructed without a logger.
    """
    return cast(
        "FilteringBoundLogger",
        structlog.wrap_logger(
            structlog.ReturnLoggerFactory()(),
            processors=[],
            wrapper_class=structlog.make_filtering_bound_logger(logging.CRITICAL),
            context_class=dict,
        ),
    )

# pyright: reportExplicitAny=false
"""Shared CLI utilities for commands.

This module provides common utilities used across CLI command implementations:
- Standardized exit codes
- Settings loading with uniform error reporting
- Logger construction from settings
- Console utilities for error handling
"""

from __future__ import annotations

from enum import IntEnum
from typing import TYPE_CHECKING, Any, Never

from zminit.config import ContainerSettings, load_settings
from zminit.exceptions import ConfigInvalidError
from zminit.utils import create_supervisor_logger

if TYPE_CHECKING:
    from pathlib import Path

    from rich.console import Console
    from structlog.typing import FilteringBoundLogger

# Type alias for formattable data - uses Any to match library signatures
FormattableData = dict[str, Any]

__all__ = [
    "ExitCode",
    "FormattableData",
    "create_logger",
    "exit_with_error",
    "format_json",
    "get_error_console",
    "load_settings_or_exit",
]


class ExitCode(IntEnum):
    """Exit codes for zminit CLI commands."""

    SUCCESS = 0
    CONFIG_ERROR = 1
    BOOTSTRAP_ERROR = 2
    DEPENDENCY_UNAVAILABLE = 3
    SHUTDOWN_ERROR = 4
    INTERNAL_ERROR = 5


def format_json(data: FormattableData, *, indent: bool = True) -> str:
    """Format data as JSON.

    Args:
        data: Dictionary to format as JSON.
        indent: Whether to pretty-print with indentation.

    Returns:
        JSON-formatted string representation.
    """
    import orjson

    options = orjson.OPT_INDENT_2 if indent else 0
    return orjson.dumps(data, option=options).decode("utf-8")


def get_error_console() -> Console:
    """Get a Rich console configured for error output to stderr.

    Returns:
        Console instance writing to stderr.
    """
    from rich.console import Console

    return Console(stderr=True)


def exit_with_error(
    message: str,
    code: ExitCode = ExitCode.INTERNAL_ERROR,
    *,
    console: Console | None = None,
) -> Never:
    """Print an error message and exit with the specified code.

    Raises:
        SystemExit: Always raised with the specified exit code.
    """
    if console is None:
        console = get_error_console()

    console.print(f"[red]Error:[/red] {message}")
    raise SystemExit(code)


def load_settings_or_exit(*, console: Console | None = None) -> ContainerSettings:
    """Load settings from the environment, exiting on invalid values."""
    try:
        return load_settings()
    except ConfigInvalidError as e:
        exit_with_error(str(e), ExitCode.CONFIG_ERROR, console=console)


def create_logger(
    settings: ContainerSettings,
    log_file: Path | None = None,
    *,
    component: str = "",
) -> FilteringBoundLogger:
    """Create the supervisor logger described by ``settings``.

    Args:
        settings: Container settings supplying level, format and rotation.
        log_file: Write to this file instead of stdout.
        component: Component name bound to every entry.
    """
    return create_supervisor_logger(
        level=settings.log_level.value,
        log_format="json" if settings.log_format.value == "json" else "text",
        log_file=str(log_file) if log_file is not None else "",
        max_bytes=settings.max_log_size_bytes,
        backup_count=settings.max_log_number,
        component=component,
    )

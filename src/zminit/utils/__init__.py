"""Shared utilities for zminit."""

from ._logging import LogFormatType, create_supervisor_logger, get_null_logger
from ._time import get_timestamp

__all__ = [
    "LogFormatType",
    "create_supervisor_logger",
    "get_null_logger",
    "get_timestamp",
]

"""zminit CLI commands."""
# pyright: reportUnusedCallResult=false

from typing import TYPE_CHECKING

from ._bootstrap import materialize_app, permissions_app
from ._check_config import app as check_config_app
from ._run import app as run_app
from ._shared import (
    ExitCode,
    FormattableData,
    create_logger,
    exit_with_error,
    format_json,
    get_error_console,
    load_settings_or_exit,
)
from ._wait import app as wait_app

if TYPE_CHECKING:
    from cyclopts import App

__all__ = [
    "ExitCode",
    "FormattableData",
    "check_config_app",
    "create_logger",
    "exit_with_error",
    "format_json",
    "get_error_console",
    "load_settings_or_exit",
    "materialize_app",
    "permissions_app",
    "register_commands",
    "run_app",
    "wait_app",
]


def register_commands(app: "App") -> None:
    """Register all commands with the main app."""
    app.command(run_app)
    app.command(check_config_app)
    app.command(materialize_app)
    app.command(permissions_app)
    app.command(wait_app)

# pyright: reportUnusedCallResult=false
# ruff: noqa: TC003  # Path needed at runtime for cyclopts parameter parsing
"""zminit materialize and fix-permissions commands."""

from pathlib import Path
from typing import Annotated

from cyclopts import App, Parameter
from rich.console import Console

from zminit.bootstrap import (
    BootstrapContext,
    MaterializeStep,
    OwnConfigStep,
    default_permission_targets,
    fix_permissions,
    run_pipeline,
)
from zminit.exceptions import BootstrapError

from ._shared import ExitCode, create_logger, exit_with_error, load_settings_or_exit

materialize_app = App(
    name="materialize",
    help="Write service configuration files from the environment.",
    help_on_error=True,
)

permissions_app = App(
    name="fix-permissions",
    help="Create the persistent directories and fix their ownership.",
    help_on_error=True,
)


@materialize_app.default
def materialize_command(
    *,
    root: Annotated[
        Path,
        Parameter(help="Filesystem root the fixed config paths are resolved against."),
    ] = Path("/"),
) -> None:
    """Render and write every materialized config file.

    Files whose content is unchanged are left alone. Files in the config
    volume are then given to PUID:PGID.
    """
    settings = load_settings_or_exit()
    logger = create_logger(settings)
    console = Console()

    try:
        results = run_pipeline(
            BootstrapContext(settings, root, logger), [MaterializeStep(), OwnConfigStep()]
        )
    except BootstrapError as e:
        exit_with_error(str(e), ExitCode.BOOTSTRAP_ERROR)

    written = results[0].changed
    if not written:
        console.print("All config files are up to date.")
    for path in written:
        console.print(f"Wrote [bold]{path}[/bold]")


@permissions_app.default
def fix_permissions_command(
    *,
    root: Annotated[
        Path,
        Parameter(help="Filesystem root the persistent directories live under."),
    ] = Path("/"),
) -> None:
    """Apply ownership and mode to the persistent directories."""
    settings = load_settings_or_exit()
    logger = create_logger(settings)
    console = Console()

    try:
        results = fix_permissions(default_permission_targets(settings, root), logger=logger)
    except BootstrapError as e:
        exit_with_error(str(e), ExitCode.BOOTSTRAP_ERROR)

    for path, changed in results.items():
        console.print(f"{path}: {changed} entries changed")

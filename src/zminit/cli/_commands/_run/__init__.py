# pyright: reportUnusedCallResult=false
# ruff: noqa: TC003  # Path needed at runtime for cyclopts parameter parsing
"""zminit run command - bootstrap the container and supervise its services."""

from pathlib import Path
from typing import Annotated

import anyio
from cyclopts import App, Parameter

from zminit.bootstrap import BootstrapContext, run_pipeline
from zminit.config import default_service_specs, load_service_specs
from zminit.exceptions import BootstrapError, ConfigError

from .._shared import ExitCode, create_logger, exit_with_error, load_settings_or_exit
from ._runner import run_supervisor

app = App(
    name="run",
    help="Bootstrap the container and supervise its services.",
    help_on_error=True,
)


@app.default
def run(  # noqa: PLR0913
    *,
    services_file: Annotated[
        Path | None,
        Parameter(help="TOML services file. Uses the built-in ZoneMinder stack if omitted."),
    ] = None,
    root: Annotated[
        Path,
        Parameter(help="Filesystem root for bootstrap paths."),
    ] = Path("/"),
    log_dir: Annotated[
        Path,
        Parameter(help="Directory for the rotated service logs."),
    ] = Path("/log"),
    log_file: Annotated[
        Path | None,
        Parameter(help="Write supervisor records to this file instead of stdout."),
    ] = None,
    skip_bootstrap: Annotated[
        bool,
        Parameter(help="Skip permission fixing and config materialization."),
    ] = False,
    echo_output: Annotated[
        bool,
        Parameter(help="Echo service output to the console."),
    ] = True,
) -> None:
    """Run the container.

    Fixes permissions, seeds and materializes configuration, then starts
    every service in dependency order and supervises it until SIGTERM or
    SIGINT. A second signal kills every remaining process.
    """
    settings = load_settings_or_exit()
    logger = create_logger(settings, log_file)

    if not skip_bootstrap:
        try:
            run_pipeline(BootstrapContext(settings, root=root, logger=logger))
        except BootstrapError as e:
            exit_with_error(str(e), ExitCode.BOOTSTRAP_ERROR)

    try:
        specs = (
            load_service_specs(services_file)
            if services_file is not None
            else default_service_specs(settings)
        )
    except ConfigError as e:
        exit_with_error(str(e), ExitCode.CONFIG_ERROR)

    report = anyio.run(
        lambda: run_supervisor(
            settings,
            specs,
            log_dir=log_dir,
            logger=logger,
            echo_output=echo_output,
        )
    )
    if not report.ok:
        for name, error in report.errors.items():
            logger.error("service_stop_error", service=name, error=error)
        raise SystemExit(ExitCode.SHUTDOWN_ERROR)

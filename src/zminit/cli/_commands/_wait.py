# pyright: reportUnusedCallResult=false
"""zminit wait command - block until an endpoint accepts connections."""

from typing import Annotated

import anyio
from cyclopts import App, Parameter
from rich.console import Console

from zminit.exceptions import DependencyUnavailableError
from zminit.supervisor import wait_for_endpoint

from ._shared import ExitCode, create_logger, exit_with_error, load_settings_or_exit

app = App(
    name="wait",
    help="Wait until a TCP endpoint (the database by default) accepts connections.",
    help_on_error=True,
)


@app.default
def wait(
    host: Annotated[
        str | None,
        Parameter(help="Host to probe. Defaults to MYSQL_HOST."),
    ] = None,
    port: Annotated[
        int | None,
        Parameter(help="Port to probe. Defaults to MYSQL_PORT."),
    ] = None,
    *,
    timeout: Annotated[
        float | None,
        Parameter(help="Seconds to wait, 0 waits forever. Defaults to WAIT_FOR_SERVICES_MAXTIME."),
    ] = None,
    interval: Annotated[
        float | None,
        Parameter(help="Seconds between attempts. Defaults to WAIT_FOR_SERVICES_INTERVAL."),
    ] = None,
) -> None:
    """Probe the endpoint on a fixed schedule until it answers or time runs out.

    Exits with status 3 if the endpoint never accepted a connection.
    """
    settings = load_settings_or_exit()
    logger = create_logger(settings, component="wait")
    target_host = host or settings.mysql_host
    target_port = port or settings.mysql_port

    try:
        attempts = anyio.run(
            lambda: wait_for_endpoint(
                target_host,
                target_port,
                timeout=settings.wait_timeout if timeout is None else timeout,
                interval=settings.wait_interval if interval is None else interval,
                logger=logger,
            )
        )
    except DependencyUnavailableError as e:
        exit_with_error(str(e), ExitCode.DEPENDENCY_UNAVAILABLE)
    except ValueError as e:
        exit_with_error(str(e), ExitCode.CONFIG_ERROR)

    Console().print(f"{target_host}:{target_port} is up after {attempts} attempt(s)")

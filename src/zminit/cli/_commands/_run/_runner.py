"""Async runner for the run command.

This module provides the async entry point that coordinates running the
supervisor and, when enabled, the status API together using anyio.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import anyio

from zminit.supervisor import (
    AnyioProcessLauncher,
    ConsoleOutputSink,
    LogGovernor,
    LogPolicy,
    RestartSettings,
    Supervisor,
    create_status_server,
)

if TYPE_CHECKING:
    from collections.abc import Sequence
    from pathlib import Path

    from rich.console import Console
    from structlog.typing import FilteringBoundLogger

    from zminit.config import ContainerSettings
    from zminit.supervisor import ServiceSpec, ShutdownReport


def restart_settings(settings: ContainerSettings) -> RestartSettings:
    """Build supervisor restart tuning from container settings."""
    return RestartSettings(
        max_restarts=settings.restart_max_attempts,
        backoff_base=settings.restart_backoff_base,
        backoff_max=settings.restart_backoff_max,
        min_uptime=settings.restart_min_uptime,
    )


async def run_supervisor(  # noqa: PLR0913
    settings: ContainerSettings,
    specs: Sequence[ServiceSpec],
    *,
    log_dir: Path,
    logger: FilteringBoundLogger,
    console: Console | None = None,
    echo_output: bool = True,
) -> ShutdownReport:
    """Run the supervisor until shutdown.

    Args:
        settings: Validated container settings.
        specs: Services to supervise.
        log_dir: Directory for the governed service logs.
        logger: Logger for supervisor records.
        console: Console for service output and lifecycle events.
        echo_output: Whether service output is echoed to the console.

    Returns:
        The report of the shutdown.
    """
    governor = LogGovernor(
        log_dir,
        LogPolicy(max_bytes=settings.max_log_size_bytes, max_files=settings.max_log_number),
        logger=logger,
    )
    supervisor = Supervisor(
        specs,
        launcher=AnyioProcessLauncher(daemon_timeout=settings.readiness_timeout),
        output_sink=ConsoleOutputSink(
            console, echo_output=echo_output, services=[spec.name for spec in specs]
        ),
        governor=governor,
        restart=restart_settings(settings),
        grace_period=settings.shutdown_grace_period,
        logger=logger,
    )

    if settings.status_port == 0:
        return await supervisor.run()

    status_server = create_status_server(supervisor, settings.status_port)
    async with anyio.create_task_group() as tg:
        tg.start_soon(status_server.serve)
        logger.info("status_api_started", port=settings.status_port)

        report = await supervisor.run()

        # Supervisor has shut down, stop the status server
        status_server.should_exit = True
    return report

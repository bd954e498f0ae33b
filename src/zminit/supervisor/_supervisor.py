"""Main supervisor coordinator for managing multiple services.

This module provides the Supervisor class that coordinates multiple
ServiceManagers using anyio for structured concurrency.
"""

from __future__ import annotations

import itertools
import signal
from typing import TYPE_CHECKING, final

import anyio

from zminit.exceptions import ServiceNotFoundError
from zminit.utils import get_null_logger

from ._graph import DependencyGraph
from ._launcher import AnyioProcessLauncher
from ._models import RestartSettings, ServiceState
from ._output import ConsoleOutputSink
from ._service import ServiceManager
from ._shutdown import ShutdownCoordinator, ShutdownReport
from ._waiter import probe_tcp

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Sequence

    from structlog.typing import FilteringBoundLogger

    from ._logs import LogGovernor
    from ._models import ServiceSpec, ServiceTransition
    from ._protocol import OutputSink, ProcessLauncher


@final
class Supervisor:
    """Coordinates the services of the container.

    Services are started in dependency order, each in its own task, and
    restarted according to their policy. The supervisor runs until a
    termination signal arrives, ``shutdown()`` is called, or every service
    has stopped for good. It then stops the remaining services in reverse
    dependency order.

    Must be created inside a running event loop.
    """

    __slots__ = (
        "_coordinator",
        "_governor",
        "_graph",
        "_handle_signals",
        "_logger",
        "_report",
        "_sequence",
        "_services",
        "_shutdown_requested",
    )

    def __init__(  # noqa: PLR0913
        self,
        specs: Sequence[ServiceSpec],
        *,
        launcher: ProcessLauncher | None = None,
        output_sink: OutputSink | None = None,
        governor: LogGovernor | None = None,
        restart: RestartSettings | None = None,
        grace_period: float = 10.0,
        logger: FilteringBoundLogger | None = None,
        probe: Callable[..., Awaitable[bool]] = probe_tcp,
        handle_signals: bool = True,
    ) -> None:
        """Initialize the supervisor.

        Args:
            specs: Definitions of the services to manage.
            launcher: Starts service processes. Uses AnyioProcessLauncher if None.
            output_sink: Sink for service output. Uses ConsoleOutputSink if None.
            governor: Log governor owning each service's log stream.
            restart: Restart ceiling and backoff tuning.
            grace_period: Seconds each service gets to exit on shutdown.
            logger: Logger for supervisor records.
            probe: Connection attempt used by readiness checks.
            handle_signals: Whether SIGTERM and SIGINT trigger shutdown.

        Raises:
            ConfigInvalidError: If the service dependencies are invalid.
        """
        self._graph = DependencyGraph(specs)
        self._logger = logger or get_null_logger()
        self._governor = governor
        self._handle_signals = handle_signals
        self._sequence = itertools.count(1)
        self._shutdown_requested = anyio.Event()
        self._report: ShutdownReport | None = None

        launcher = launcher or AnyioProcessLauncher()
        sink: OutputSink = output_sink or ConsoleOutputSink(services=[spec.name for spec in specs])
        self._services: dict[str, ServiceManager] = {}
        for spec in specs:
            log_stream = governor.register(spec.stream_id) if governor is not None else None
            self._services[spec.name] = ServiceManager(
                spec,
                launcher=launcher,
                output_sink=sink,
                log_stream=log_stream,
                restart=restart,
                sequence=self._sequence.__next__,
                logger=self._logger,
                probe=probe,
            )

        self._coordinator = ShutdownCoordinator(
            self._graph,
            self._services,
            grace_period=grace_period,
            logger=self._logger,
        )

    @property
    def services(self) -> dict[str, ServiceManager]:
        """Return the dictionary of managed services."""
        return self._services

    @property
    def graph(self) -> DependencyGraph:
        """Return the dependency graph of the managed services."""
        return self._graph

    @property
    def startup_order(self) -> tuple[str, ...]:
        """Return service names in the order they are started."""
        return self._graph.startup_order()

    @property
    def shutting_down(self) -> bool:
        """Return True once shutdown has been requested."""
        return self._shutdown_requested.is_set()

    @property
    def report(self) -> ShutdownReport | None:
        """Return the shutdown report once ``run()`` has finished."""
        return self._report

    def get_service(self, name: str) -> ServiceManager:
        """Get a service by name.

        Args:
            name: The service name.

        Returns:
            The ServiceManager for the named service.

        Raises:
            ServiceNotFoundError: If no service exists with that name.
        """
        service = self._services.get(name)
        if service is None:
            msg = f"Service '{name}' not found"
            raise ServiceNotFoundError(msg, service_name=name)
        return service

    def transitions(self) -> list[tuple[str, ServiceTransition]]:
        """Return every recorded transition of every service, in order."""
        merged = [
            (name, transition)
            for name, service in self._services.items()
            for transition in service.status.history
        ]
        return sorted(merged, key=lambda item: item[1].seq)

    async def _watch_signals(self) -> None:
        with anyio.open_signal_receiver(signal.SIGINT, signal.SIGTERM) as signals:
            async for signum in signals:
                name = signal.Signals(signum).name
                if not self._shutdown_requested.is_set():
                    self._logger.info("shutdown_requested", signal=name)
                    self._shutdown_requested.set()
                else:
                    self._logger.warning("shutdown_escalation_requested", signal=name)
                    self.escalate()

    async def _watch_completion(self) -> None:
        """Request shutdown once every service has stopped on its own."""
        for service in self._services.values():
            _ = await service.wait_until(ServiceState.STOPPED)
        if not self._shutdown_requested.is_set():
            self._logger.info("all_services_stopped")
            self._shutdown_requested.set()

    async def run(self) -> ShutdownReport:
        """Run the supervisor, starting all services.

        Blocks until shutdown is triggered and every service has stopped.

        Returns:
            The report of the shutdown.
        """
        self._logger.info("supervisor_started", order=list(self._graph.startup_order()))

        async with anyio.create_task_group() as tg:
            if self._governor is not None:
                tg.start_soon(self._governor.run, name="log-governor")
            if self._handle_signals:
                tg.start_soon(self._watch_signals, name="signals")

            for name in self._graph.startup_order():
                dependencies = [self._services[dep] for dep in self._graph.dependencies_of(name)]
                tg.start_soon(self._services[name].run, dependencies, name=f"service:{name}")
            tg.start_soon(self._watch_completion, name="completion")

            await self._shutdown_requested.wait()
            report = await self._coordinator.shutdown()
            tg.cancel_scope.cancel()

        for service in self._services.values():
            service.retire()
        if self._governor is not None:
            await self._governor.aclose()

        self._report = report
        self._logger.info("supervisor_stopped", ok=report.ok)
        return report

    async def shutdown(self) -> None:
        """Trigger graceful shutdown of all services.

        Sets the shutdown event, which will cause run() to begin
        stopping services and exit.
        """
        self._shutdown_requested.set()

    def escalate(self) -> list[str]:
        """Kill every live process immediately."""
        self._shutdown_requested.set()
        return self._coordinator.kill_all()

    def get_status(self) -> dict[str, dict[str, object]]:
        """Get status summary for all services.

        Returns:
            Dictionary mapping service names to status dictionaries.
        """
        return {name: service.get_status() for name, service in self._services.items()}

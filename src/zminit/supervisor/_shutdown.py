"""Ordered shutdown of every managed service."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, final

import anyio

from zminit.exceptions import SupervisorError
from zminit.utils import get_null_logger

from ._models import ServiceState, StopOutcome

if TYPE_CHECKING:
    from collections.abc import Mapping

    from structlog.typing import FilteringBoundLogger

    from ._graph import DependencyGraph
    from ._service import ServiceManager


@dataclass(frozen=True, slots=True)
class ShutdownPlan:
    """Services to stop, dependents before their dependencies.

    Attributes:
        order: Service names in stop order.
    """

    order: tuple[str, ...]

    @classmethod
    def build(
        cls, graph: DependencyGraph, services: Mapping[str, ServiceManager]
    ) -> ShutdownPlan:
        """Plan a shutdown of every service not already STOPPED."""
        live = [
            name for name, service in services.items() if service.state != ServiceState.STOPPED
        ]
        return cls(order=tuple(graph.shutdown_order(live)))


@dataclass(slots=True)
class ShutdownReport:
    """What happened to each service during shutdown.

    Attributes:
        outcomes: Stop outcome per service, in stop order.
        errors: Error message per service that could not be stopped cleanly.
    """

    outcomes: dict[str, StopOutcome] = field(default_factory=dict)
    errors: dict[str, str] = field(default_factory=dict)

    @property
    def forced(self) -> list[str]:
        """Return services that had to be killed."""
        return [name for name, outcome in self.outcomes.items() if outcome == StopOutcome.FORCED]

    @property
    def ok(self) -> bool:
        """Return True if nothing went wrong."""
        return not self.errors


@final
class ShutdownCoordinator:
    """Stops services in reverse dependency order.

    Each service gets SIGTERM and up to ``grace_period`` seconds to exit
    before it is killed. Errors are collected in the report; they never
    prevent the remaining services from being stopped.
    """

    __slots__ = ("_grace_period", "_graph", "_logger", "_services")

    def __init__(
        self,
        graph: DependencyGraph,
        services: Mapping[str, ServiceManager],
        *,
        grace_period: float = 10.0,
        logger: FilteringBoundLogger | None = None,
    ) -> None:
        self._graph = graph
        self._services = services
        self._grace_period = grace_period
        self._logger = logger or get_null_logger()

    async def shutdown(self) -> ShutdownReport:
        """Stop every live service and report the outcomes."""
        for service in self._services.values():
            service.begin_shutdown()

        plan = ShutdownPlan.build(self._graph, self._services)
        self._logger.info("shutdown_started", order=list(plan.order))

        report = ShutdownReport()
        for name in plan.order:
            service = self._services[name]
            try:
                # Shielded so a cancelled caller still leaves no orphans
                with anyio.CancelScope(shield=True):
                    outcome = await service.stop(self._grace_period)
            except SupervisorError as e:
                self._logger.error("service_stop_failed", service=name, error=str(e))
                report.errors[name] = str(e)
                continue
            report.outcomes[name] = outcome
            if outcome == StopOutcome.FORCED:
                self._logger.warning(
                    "service_forced_stop", service=name, grace=self._grace_period
                )

        self._logger.info(
            "shutdown_complete",
            stopped=len(report.outcomes),
            forced=report.forced,
            errors=len(report.errors),
        )
        return report

    def kill_all(self) -> list[str]:
        """Kill every live process immediately.

        Returns:
            Names of the services that had a live process.
        """
        killed: list[str] = []
        for name, service in self._services.items():
            if service.is_running():
                service.kill()
                killed.append(name)
        self._logger.warning("shutdown_escalated", killed=killed)
        return killed

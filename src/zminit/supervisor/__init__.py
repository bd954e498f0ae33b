"""Supervisor package for the services of the container.

Key Components:
    - ServiceSpec: Static definition of a managed service
    - ServiceState: Lifecycle state enumeration
    - ServiceStatus: Runtime status and transition history
    - DependencyGraph: Start and stop order of the services
    - wait_for_endpoint: Dependency waiter for upstream endpoints
    - LogGovernor / LogStream: Size-capped, rotated service logs
    - ServiceManager: Single service lifecycle state machine
    - Supervisor: Multi-service coordinator
    - ShutdownCoordinator: Reverse-order shutdown with SIGKILL escalation
    - create_status_router: Read-only FastAPI endpoints

Example:
    >>> from zminit.supervisor import ServiceSpec, Supervisor
    >>> specs = [
    ...     ServiceSpec(name="php-fpm", command=("php-fpm", "-F")),
    ...     ServiceSpec(name="nginx", command=("nginx",), depends_on=("php-fpm",)),
    ... ]
    >>> supervisor = Supervisor(specs)
    >>> await supervisor.run()  # Blocks until shutdown
"""

from ._api import (
    StatusServer,
    create_status_app,
    create_status_router,
    create_status_server,
)
from ._backoff import RestartBackoff
from ._graph import DependencyGraph
from ._launcher import AnyioProcessHandle, AnyioProcessLauncher, DaemonProcessHandle, read_pidfile
from ._logs import LogGovernor, LogStream
from ._models import (
    ALLOWED_TRANSITIONS,
    LogPolicy,
    ReadinessCheck,
    ReadinessKind,
    RestartPolicy,
    RestartSettings,
    ServiceEvent,
    ServiceEventType,
    ServiceSpec,
    ServiceState,
    ServiceStatus,
    ServiceTransition,
    StopOutcome,
)
from ._output import ConsoleOutputSink, NullOutputSink
from ._protocol import OutputSink, ProcessHandle, ProcessLauncher
from ._service import ServiceManager
from ._shutdown import ShutdownCoordinator, ShutdownPlan, ShutdownReport
from ._supervisor import Supervisor
from ._waiter import Probe, probe_tcp, wait_for_endpoint

__all__ = [
    "ALLOWED_TRANSITIONS",
    "AnyioProcessHandle",
    "AnyioProcessLauncher",
    "ConsoleOutputSink",
    "DaemonProcessHandle",
    "DependencyGraph",
    "LogGovernor",
    "LogPolicy",
    "LogStream",
    "NullOutputSink",
    "OutputSink",
    "Probe",
    "ProcessHandle",
    "ProcessLauncher",
    "ReadinessCheck",
    "ReadinessKind",
    "RestartBackoff",
    "RestartPolicy",
    "RestartSettings",
    "ServiceEvent",
    "ServiceEventType",
    "ServiceManager",
    "ServiceSpec",
    "ServiceState",
    "ServiceStatus",
    "ServiceTransition",
    "ShutdownCoordinator",
    "ShutdownPlan",
    "ShutdownReport",
    "StatusServer",
    "StopOutcome",
    "Supervisor",
    "create_status_app",
    "create_status_router",
    "create_status_server",
    "probe_tcp",
    "read_pidfile",
    "wait_for_endpoint",
]

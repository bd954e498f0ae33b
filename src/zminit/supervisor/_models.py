"""Data models for the supervisor system.

This module defines the core data types for service management:
- ServiceState: Lifecycle states for managed services
- RestartPolicy / ReadinessCheck: Per-service behavior settings
- ServiceSpec: Immutable service definition
- ServiceStatus / ServiceTransition: Mutable runtime record and its history
- ServiceEventType / ServiceEvent: Lifecycle event records
- LogPolicy: Size and retention limits for a service log stream
- StopOutcome: How a service reached STOPPED during shutdown
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path  # noqa: TC003 - Used in runtime type annotations
from types import MappingProxyType

from zminit.exceptions import ConfigInvalidError


class ServiceState(StrEnum):
    """Service lifecycle states.

    - PENDING: Service is defined but not yet scheduled
    - WAITING: Service is waiting for dependencies or its readiness check
    - STARTING: Process is being launched or probed for readiness
    - RUNNING: Process is running and ready
    - CRASHED: Process failed and is waiting to be restarted
    - STOPPING: Process has been asked to terminate
    - STOPPED: Service is not running (terminal when the supervisor exits)
    """

    PENDING = "pending"
    WAITING = "waiting"
    STARTING = "starting"
    RUNNING = "running"
    CRASHED = "crashed"
    STOPPING = "stopping"
    STOPPED = "stopped"


ALLOWED_TRANSITIONS: dict[ServiceState, frozenset[ServiceState]] = {
    ServiceState.PENDING: frozenset({ServiceState.WAITING, ServiceState.STOPPED}),
    ServiceState.WAITING: frozenset({ServiceState.STARTING, ServiceState.STOPPED}),
    ServiceState.STARTING: frozenset(
        {
            ServiceState.RUNNING,
            ServiceState.CRASHED,
            ServiceState.STOPPING,
            ServiceState.STOPPED,
        }
    ),
    ServiceState.RUNNING: frozenset(
        {ServiceState.CRASHED, ServiceState.STOPPING, ServiceState.STOPPED}
    ),
    ServiceState.CRASHED: frozenset({ServiceState.STARTING, ServiceState.STOPPED}),
    ServiceState.STOPPING: frozenset({ServiceState.STOPPED}),
    ServiceState.STOPPED: frozenset(),
}


class RestartPolicy(StrEnum):
    """When a crashed service is started again.

    - NEVER: Never restart; any exit is final
    - ON_FAILURE: Restart after a crash, up to the restart ceiling
    - ALWAYS: Restart after every crash without a ceiling
    """

    NEVER = "never"
    ON_FAILURE = "on-failure"
    ALWAYS = "always"


class ReadinessKind(StrEnum):
    """Kinds of readiness checks.

    - NONE: Launched means ready
    - PORT: The service's own port must accept a connection after launch
    - DEPENDENCY: An upstream endpoint must accept a connection before launch
    """

    NONE = "none"
    PORT = "port"
    DEPENDENCY = "dependency"


@dataclass(frozen=True, slots=True)
class ReadinessCheck:
    """Readiness check definition.

    Attributes:
        kind: Which check to run.
        host: Host to connect to.
        port: Port to connect to.
        timeout: Seconds to keep probing (0 for DEPENDENCY waits forever).
        interval: Seconds between attempts.
    """

    kind: ReadinessKind = ReadinessKind.NONE
    host: str = "127.0.0.1"
    port: int | None = None
    timeout: float = 30.0
    interval: float = 1.0

    def __post_init__(self) -> None:
        if self.kind != ReadinessKind.NONE and self.port is None:
            msg = f"A '{self.kind}' readiness check needs a port"
            raise ConfigInvalidError(msg, key="readiness.port", value=None, expected="a port")


@dataclass(frozen=True, slots=True)
class ServiceSpec:
    """Static definition of a managed service.

    Attributes:
        name: Unique identifier for the service.
        command: Executable and arguments.
        depends_on: Names of services that must be running first.
        restart: Restart policy.
        readiness: Readiness check.
        log_stream: Identifier of the log stream output is written to.
        env: Additional environment variables, read-only.
        cwd: Working directory for the process.
        user: Account the process runs as. Runs as zminit's own user if None.
        pidfile: Set for daemons whose command forks into the background;
            the process whose PID the daemon writes here is supervised.
    """

    name: str
    command: tuple[str, ...]
    depends_on: tuple[str, ...] = ()
    restart: RestartPolicy = RestartPolicy.ON_FAILURE
    readiness: ReadinessCheck = field(default_factory=ReadinessCheck)
    log_stream: str = ""
    env: Mapping[str, str] = field(default_factory=dict)
    cwd: Path | None = None
    user: str | None = None
    pidfile: Path | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "env", MappingProxyType(dict(self.env)))

    @property
    def stream_id(self) -> str:
        """Return the log stream identifier, defaulting to the service name."""
        return self.log_stream or self.name


@dataclass(frozen=True, slots=True)
class ServiceTransition:
    """One recorded lifecycle transition.

    Attributes:
        seq: Supervisor-wide sequence number; totally orders all transitions.
        from_state: State before the transition.
        to_state: State after the transition.
        timestamp: ISO 8601 timestamp.
    """

    seq: int
    from_state: ServiceState
    to_state: ServiceState
    timestamp: str


@dataclass(slots=True)
class ServiceStatus:
    """Mutable runtime record of a service.

    Only the owning ServiceManager writes to this record.

    Attributes:
        state: Current service state.
        pid: Process ID of the running service, if any.
        consecutive_failures: Crashes since the last sustained run.
        restart_count: Total restarts performed.
        last_exit_code: Exit code from the last process termination.
        started_at: ISO 8601 timestamp of last start.
        stopped_at: ISO 8601 timestamp of last stop.
        terminal_reason: Why the service stopped for good, if it did.
        history: Every transition the service went through.
    """

    state: ServiceState = ServiceState.PENDING
    pid: int | None = None
    consecutive_failures: int = 0
    restart_count: int = 0
    last_exit_code: int | None = None
    started_at: str | None = None
    stopped_at: str | None = None
    terminal_reason: str | None = None
    history: list[ServiceTransition] = field(default_factory=list)

    def last_seq(self, state: ServiceState) -> int | None:
        """Return the sequence number of the latest entry into ``state``."""
        for transition in reversed(self.history):
            if transition.to_state == state:
                return transition.seq
        return None

    def first_seq(self, state: ServiceState) -> int | None:
        """Return the sequence number of the first entry into ``state``."""
        for transition in self.history:
            if transition.to_state == state:
                return transition.seq
        return None


class ServiceEventType(StrEnum):
    """Types of service lifecycle events."""

    WAITING = "waiting"
    STARTED = "started"
    RUNNING = "running"
    STOPPED = "stopped"
    CRASHED = "crashed"
    RESTARTING = "restarting"
    START_FAILED = "start_failed"
    DEPENDENCY_UNAVAILABLE = "dependency_unavailable"
    START_ORDER_ERROR = "start_order_error"
    FORCED_STOP = "forced_stop"
    GAVE_UP = "gave_up"


@dataclass(frozen=True, slots=True)
class ServiceEvent:
    """Immutable service lifecycle event.

    Attributes:
        service_name: Name of the service that generated the event.
        event_type: Type of lifecycle event.
        timestamp: ISO 8601 formatted timestamp.
        pid: Process ID if applicable.
        exit_code: Exit code if process terminated.
        message: Optional human-readable message.
    """

    service_name: str
    event_type: ServiceEventType
    timestamp: str
    pid: int | None = None
    exit_code: int | None = None
    message: str | None = None


@dataclass(frozen=True, slots=True)
class LogPolicy:
    """Size and retention limits for one log stream.

    Attributes:
        max_bytes: Maximum size of the active file.
        max_files: Maximum number of rotated files kept.
    """

    max_bytes: int = 1_000_000
    max_files: int = 10

    def __post_init__(self) -> None:
        if self.max_bytes < 1:
            msg = f"max_bytes must be positive, got {self.max_bytes}"
            raise ValueError(msg)
        if self.max_files < 0:
            msg = f"max_files must not be negative, got {self.max_files}"
            raise ValueError(msg)

    @property
    def max_total_bytes(self) -> int:
        """Upper bound on bytes kept on disk for one stream."""
        return self.max_bytes * (self.max_files + 1)


class StopOutcome(StrEnum):
    """How a service reached STOPPED during shutdown."""

    GRACEFUL = "graceful"
    FORCED = "forced"
    ALREADY_STOPPED = "already_stopped"


@dataclass(frozen=True, slots=True)
class RestartSettings:
    """Supervisor-wide restart tuning.

    Attributes:
        max_restarts: Restart ceiling for ON_FAILURE services.
        backoff_base: First restart delay in seconds.
        backoff_max: Cap on the restart delay in seconds.
        jitter: Fraction of the delay to randomize.
        min_uptime: Run time after which the failure counter resets.
    """

    max_restarts: int = 5
    backoff_base: float = 1.0
    backoff_max: float = 60.0
    jitter: float = 0.1
    min_uptime: float = 30.0

"""Service manager: the lifecycle state machine of one service.

Every change to a service's ServiceStatus goes through
``ServiceManager._transition``, which checks the move against
ALLOWED_TRANSITIONS, stamps it with a supervisor-wide sequence number and
logs it. All transitions of one service happen in its manager; launches and
stop requests are serialized by the manager's lock.
"""

from __future__ import annotations

import contextlib
from typing import TYPE_CHECKING, Literal, final

import anyio
from anyio.streams.text import TextReceiveStream

from zminit.exceptions import (
    DependencyUnavailableError,
    InvalidTransitionError,
    ServiceStartError,
    ServiceStopError,
    StartOrderError,
)
from zminit.utils import get_null_logger, get_timestamp

from ._backoff import RestartBackoff
from ._models import (
    ALLOWED_TRANSITIONS,
    ReadinessKind,
    RestartPolicy,
    RestartSettings,
    ServiceEvent,
    ServiceEventType,
    ServiceState,
    ServiceStatus,
    ServiceTransition,
    StopOutcome,
)
from ._waiter import probe_tcp, wait_for_endpoint

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Sequence

    from anyio.abc import ByteReceiveStream
    from structlog.typing import FilteringBoundLogger

    from ._logs import LogStream
    from ._models import ServiceSpec
    from ._protocol import OutputSink, ProcessHandle, ProcessLauncher

# Time allowed for output still in the pipes after the process exits
OUTPUT_DRAIN_TIMEOUT = 1.0
# Time allowed for a SIGKILLed process to be reaped
KILL_TIMEOUT = 5.0


@final
class ServiceManager:
    """Manages the lifecycle of one supervised service.

    Attributes:
        spec: Immutable definition of this service.
        status: Mutable runtime record, written only by this manager.
    """

    __slots__ = (
        "_backoff",
        "_blocked_reason",
        "_changed",
        "_exit_code",
        "_exited",
        "_handle",
        "_launcher",
        "_lock",
        "_log_stream",
        "_logger",
        "_output_sink",
        "_probe",
        "_restart",
        "_run_scope",
        "_sequence",
        "_stop_requested",
        "_stop_wanted",
        "spec",
        "status",
    )

    def __init__(  # noqa: PLR0913
        self,
        spec: ServiceSpec,
        *,
        launcher: ProcessLauncher,
        output_sink: OutputSink,
        log_stream: LogStream | None = None,
        restart: RestartSettings | None = None,
        sequence: Callable[[], int],
        logger: FilteringBoundLogger | None = None,
        probe: Callable[..., Awaitable[bool]] = probe_tcp,
    ) -> None:
        """Initialize the service manager.

        Args:
            spec: Definition of the service.
            launcher: Starts the service's process.
            output_sink: Receives output lines and lifecycle events.
            log_stream: Governed log the process output is written to.
            restart: Restart ceiling, backoff and uptime tuning.
            sequence: Returns the next supervisor-wide sequence number.
            logger: Logger for transition and error records.
            probe: Connection attempt used by readiness checks.
        """
        self.spec = spec
        self.status = ServiceStatus()
        self._launcher = launcher
        self._output_sink = output_sink
        self._log_stream = log_stream
        self._restart = restart or RestartSettings()
        self._backoff = RestartBackoff.from_settings(self._restart)
        self._sequence = sequence
        self._logger = (logger or get_null_logger()).bind(service=spec.name)
        self._probe = probe
        self._handle: ProcessHandle | None = None
        self._exit_code: int | None = None
        self._exited = anyio.Event()
        self._changed = anyio.Event()
        self._stop_wanted = anyio.Event()
        self._stop_requested = False
        self._blocked_reason: str | None = None
        self._run_scope: anyio.CancelScope | None = None
        self._lock = anyio.Lock()

    @property
    def name(self) -> str:
        """Return the unique name of this service."""
        return self.spec.name

    @property
    def state(self) -> ServiceState:
        """Return the current state of this service."""
        return self.status.state

    @property
    def pid(self) -> int | None:
        """Return the process ID if running, None otherwise."""
        return self.status.pid

    @property
    def blocked_reason(self) -> str | None:
        """Return why the service is parked in WAITING, if it is."""
        return self._blocked_reason

    def is_running(self) -> bool:
        """Check if the service has a live process."""
        return self._handle is not None and self._handle.returncode is None

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    def _transition(self, to_state: ServiceState, **changes: object) -> ServiceTransition:
        """Move to ``to_state`` and apply ``changes`` to the status record.

        Raises:
            InvalidTransitionError: If the move is not allowed.
        """
        from_state = self.status.state
        if to_state not in ALLOWED_TRANSITIONS[from_state]:
            msg = f"Service '{self.name}' cannot go from {from_state} to {to_state}"
            raise InvalidTransitionError(
                msg,
                service_name=self.name,
                from_state=from_state.value,
                to_state=to_state.value,
            )

        transition = ServiceTransition(
            seq=self._sequence(),
            from_state=from_state,
            to_state=to_state,
            timestamp=get_timestamp(),
        )
        self.status.state = to_state
        self.status.history.append(transition)
        for field_name, value in changes.items():
            setattr(self.status, field_name, value)

        self._logger.info(
            "service_transition",
            from_state=from_state.value,
            to_state=to_state.value,
            seq=transition.seq,
            pid=self.status.pid,
        )

        changed, self._changed = self._changed, anyio.Event()
        changed.set()
        return transition

    async def wait_until(self, *states: ServiceState) -> ServiceState:
        """Wait until the service is in one of ``states`` and return it."""
        while self.status.state not in states:
            await self._changed.wait()
        return self.status.state

    async def emit_event(
        self,
        event_type: ServiceEventType,
        *,
        message: str | None = None,
        exit_code: int | None = None,
    ) -> None:
        """Emit a service lifecycle event to the output sink.

        Args:
            event_type: Type of event to emit.
            message: Optional message for the event.
            exit_code: Exit code if process terminated.
        """
        event = ServiceEvent(
            service_name=self.name,
            event_type=event_type,
            timestamp=get_timestamp(),
            pid=self.status.pid,
            exit_code=exit_code,
            message=message,
        )
        try:
            await self._output_sink.write_event(self.name, event)
        except Exception as e:  # noqa: BLE001
            self._logger.warning("output_sink_failed", error=str(e))

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------

    async def _write_line(
        self, pid: int, stream_name: Literal["stdout", "stderr"], line: str
    ) -> None:
        if self._log_stream is not None:
            try:
                await self._log_stream.write_line(line)
            except OSError as e:
                self._logger.error("log_write_failed", error=str(e))
        try:
            await self._output_sink.write_line(self.name, pid, stream_name, line)
        except Exception as e:  # noqa: BLE001
            self._logger.warning("output_sink_failed", error=str(e))

    async def _stream_output(
        self,
        stream: ByteReceiveStream,
        stream_name: Literal["stdout", "stderr"],
        pid: int,
    ) -> None:
        """Split a process output stream into lines and record them."""
        pending = ""
        try:
            async for chunk in TextReceiveStream(stream, errors="replace"):
                pending += chunk
                *lines, pending = pending.split("\n")
                for line in lines:
                    await self._write_line(pid, stream_name, line.rstrip("\r"))
        except (anyio.ClosedResourceError, anyio.BrokenResourceError):
            pass
        if pending:
            await self._write_line(pid, stream_name, pending.rstrip("\r"))

    async def _pump_output(self, handle: ProcessHandle, drained: anyio.Event) -> None:
        async with anyio.create_task_group() as tg:
            if handle.stdout is not None:
                tg.start_soon(self._stream_output, handle.stdout, "stdout", handle.pid)
            if handle.stderr is not None:
                tg.start_soon(self._stream_output, handle.stderr, "stderr", handle.pid)
        drained.set()

    async def _watch_exit(self, handle: ProcessHandle, exited: anyio.Event) -> None:
        self._exit_code = await handle.wait()
        exited.set()

    # ------------------------------------------------------------------
    # Starting
    # ------------------------------------------------------------------

    async def _park(self, reason: str) -> None:
        """Stay in WAITING until the supervisor tears the service down."""
        self._blocked_reason = reason
        await anyio.sleep_forever()

    async def _wait_for_dependencies(self, dependencies: Sequence[ServiceManager]) -> None:
        """Wait until every dependency is RUNNING at the same moment."""
        for dep in dependencies:
            _ = await dep.wait_until(*(s for s in ServiceState if s != ServiceState.PENDING))

        while True:
            for dep in dependencies:
                state = await dep.wait_until(ServiceState.RUNNING, ServiceState.STOPPED)
                if state == ServiceState.STOPPED:
                    msg = (
                        f"Service '{self.name}' cannot start: dependency "
                        f"'{dep.name}' stopped for good ({dep.status.terminal_reason})"
                    )
                    error = StartOrderError(msg, service_name=self.name, dependency=dep.name)
                    self._logger.error("start_order_error", dependency=dep.name, error=str(error))
                    await self.emit_event(ServiceEventType.START_ORDER_ERROR, message=msg)
                    await self._park(msg)
            if all(dep.state == ServiceState.RUNNING for dep in dependencies):
                return

    async def _wait_for_upstream(self) -> None:
        """Run the dependency-wait readiness check, parking on failure."""
        check = self.spec.readiness
        if check.kind != ReadinessKind.DEPENDENCY or check.port is None:
            return

        try:
            _ = await wait_for_endpoint(
                check.host,
                check.port,
                timeout=check.timeout,
                interval=check.interval,
                probe=self._probe,
                logger=self._logger,
            )
        except DependencyUnavailableError as e:
            self._logger.error(
                "dependency_unavailable",
                host=e.host,
                port=e.port,
                attempts=e.attempts,
                elapsed=round(e.elapsed, 3),
            )
            await self.emit_event(ServiceEventType.DEPENDENCY_UNAVAILABLE, message=str(e))
            await self._park(str(e))

    async def _await_readiness(self, exited: anyio.Event) -> bool:
        """Run the port readiness probe against the launched process.

        Returns:
            True if the service is ready, False if the probe timed out or
            the process exited first.
        """
        check = self.spec.readiness
        if check.kind != ReadinessKind.PORT or check.port is None:
            return not exited.is_set()

        with anyio.move_on_after(check.timeout):
            while not exited.is_set() and not self._stop_requested:
                if await self._probe(check.host, check.port, timeout=check.interval):
                    return not exited.is_set()
                with anyio.move_on_after(check.interval):
                    await exited.wait()

        if not exited.is_set() and not self._stop_requested:
            self._logger.warning(
                "readiness_failed", port=check.port, timeout=check.timeout
            )
        return False

    async def _terminate_process(
        self, handle: ProcessHandle, exited: anyio.Event, grace: float
    ) -> StopOutcome:
        """Send SIGTERM, then SIGKILL once ``grace`` seconds have passed."""
        if exited.is_set():
            return StopOutcome.GRACEFUL

        handle.terminate()
        with anyio.move_on_after(grace):
            await exited.wait()
        if exited.is_set():
            return StopOutcome.GRACEFUL

        self._logger.warning("service_kill", grace=grace)
        handle.kill()
        with anyio.move_on_after(KILL_TIMEOUT):
            await exited.wait()
        if not exited.is_set():
            self._logger.error("service_unkillable", pid=handle.pid)
        return StopOutcome.FORCED

    async def _launch(self) -> tuple[ProcessHandle, anyio.Event] | None:
        """Enter STARTING and launch the process.

        Returns:
            The handle and its exit event, or None if the service must not
            or could not start.
        """
        async with self._lock:
            if self._stop_requested:
                return None

            self._transition(ServiceState.STARTING, started_at=get_timestamp())
            try:
                handle = await self._launcher.launch(self.spec)
            except ServiceStartError as e:
                self._logger.error("service_start_failed", error=str(e))
                _ = self._transition(
                    ServiceState.STOPPED,
                    terminal_reason=f"start failed: {e}",
                    stopped_at=get_timestamp(),
                )
                await self.emit_event(ServiceEventType.START_FAILED, message=str(e))
                return None

            exited = anyio.Event()
            self._handle = handle
            self._exited = exited
            self._exit_code = None
            self.status.pid = handle.pid

        await self.emit_event(
            ServiceEventType.STARTED,
            message=f"Started with command: {' '.join(self.spec.command)}",
        )
        return handle, exited

    async def _run_once(self) -> tuple[int | None, float, bool]:
        """Launch the process and supervise it until it exits.

        Returns:
            The exit code (None if the service never launched), the seconds
            spent in RUNNING, and whether the port readiness check failed.
        """
        launched = await self._launch()
        if launched is None:
            return None, 0.0, False
        handle, exited = launched

        running_since: float | None = None
        unready = False
        drained = anyio.Event()
        async with anyio.create_task_group() as tg:
            tg.start_soon(self._watch_exit, handle, exited)
            tg.start_soon(self._pump_output, handle, drained)

            ready = await self._await_readiness(exited)
            if ready and self.status.state == ServiceState.STARTING:
                _ = self._transition(ServiceState.RUNNING)
                running_since = anyio.current_time()
                await self.emit_event(ServiceEventType.RUNNING)
            elif not self._stop_requested:
                # exit code is irrelevant once the port never came up
                unready = self.spec.readiness.kind == ReadinessKind.PORT
                if not exited.is_set():
                    _ = await self._terminate_process(handle, exited, KILL_TIMEOUT)

            await exited.wait()
            with anyio.move_on_after(OUTPUT_DRAIN_TIMEOUT):
                await drained.wait()
            tg.cancel_scope.cancel()

        uptime = 0.0 if running_since is None else anyio.current_time() - running_since
        self._handle = None
        self.status.pid = None
        self.status.last_exit_code = self._exit_code
        self.status.stopped_at = get_timestamp()
        return self._exit_code, uptime, unready

    def _may_restart(self, failures: int) -> bool:
        if self.spec.restart == RestartPolicy.ALWAYS:
            return True
        if self.spec.restart == RestartPolicy.ON_FAILURE:
            return failures <= self._restart.max_restarts
        return False

    async def _supervise(self) -> None:
        """Start the process and restart it according to its policy."""
        while True:
            exit_code, uptime, unready = await self._run_once()
            if exit_code is None or self._stop_requested:
                return

            if uptime >= self._restart.min_uptime:
                self.status.consecutive_failures = 0

            if not unready and (exit_code == 0 or self.spec.restart == RestartPolicy.NEVER):
                reason = f"exited with code {exit_code}"
                _ = self._transition(ServiceState.STOPPED, terminal_reason=reason)
                await self.emit_event(
                    ServiceEventType.STOPPED, exit_code=exit_code, message=reason
                )
                return

            failures = self.status.consecutive_failures + 1
            _ = self._transition(ServiceState.CRASHED, consecutive_failures=failures)
            await self.emit_event(
                ServiceEventType.CRASHED,
                exit_code=exit_code,
                message=(
                    f"Port {self.spec.readiness.port} not ready after "
                    f"{self.spec.readiness.timeout}s"
                    if unready
                    else f"Exited with code {exit_code}"
                ),
            )

            if not self._may_restart(failures):
                if self.spec.restart == RestartPolicy.NEVER:
                    reason = "not ready and restart policy is never"
                else:
                    reason = (
                        f"gave up after {failures} consecutive failures "
                        f"(ceiling {self._restart.max_restarts})"
                    )
                self._logger.error("service_gave_up", failures=failures)
                _ = self._transition(ServiceState.STOPPED, terminal_reason=reason)
                await self.emit_event(ServiceEventType.GAVE_UP, message=reason)
                return

            delay = self._backoff.delay(failures)
            await self.emit_event(
                ServiceEventType.RESTARTING,
                message=f"Restarting in {delay:.1f}s (failure {failures})",
            )
            with anyio.move_on_after(delay):
                await self._stop_wanted.wait()
            if self._stop_requested:
                return
            self.status.restart_count += 1

    async def run(self, dependencies: Sequence[ServiceManager] = ()) -> None:
        """Drive the service from PENDING until it stops or is torn down.

        Args:
            dependencies: Managers of the services this one depends on.
        """
        with anyio.CancelScope() as scope:
            self._run_scope = scope
            if self._stop_requested:
                return

            _ = self._transition(ServiceState.WAITING)
            if dependencies:
                await self.emit_event(
                    ServiceEventType.WAITING,
                    message=f"Waiting for {', '.join(d.name for d in dependencies)}",
                )

            await self._wait_for_upstream()
            await self._wait_for_dependencies(dependencies)
            self._blocked_reason = None
            await self._supervise()

    # ------------------------------------------------------------------
    # Stopping
    # ------------------------------------------------------------------

    def begin_shutdown(self) -> None:
        """Stop scheduling restarts and launches for this service."""
        self._stop_requested = True
        self._stop_wanted.set()

    async def stop(self, grace_period: float) -> StopOutcome:
        """Stop the service, escalating to SIGKILL after ``grace_period``.

        Returns:
            How the service reached STOPPED.

        Raises:
            ServiceStopError: If the process cannot be signalled.
        """
        async with self._lock:
            self.begin_shutdown()
            if self.status.state == ServiceState.STOPPED:
                return StopOutcome.ALREADY_STOPPED

            handle = self._handle
            if handle is None:
                if self._run_scope is not None:
                    self._run_scope.cancel()
                _ = self._transition(
                    ServiceState.STOPPED,
                    terminal_reason="stopped by request",
                    stopped_at=get_timestamp(),
                )
                await self.emit_event(ServiceEventType.STOPPED, message="Stopped by request")
                return StopOutcome.GRACEFUL

            exited = self._exited
            if self.status.state != ServiceState.STOPPING:
                _ = self._transition(ServiceState.STOPPING)

        try:
            outcome = await self._terminate_process(handle, exited, grace_period)
        except ServiceStopError:
            with contextlib.suppress(ServiceStopError):
                handle.kill()
            raise
        finally:
            if self.status.state == ServiceState.STOPPING:
                _ = self._transition(
                    ServiceState.STOPPED,
                    terminal_reason="stopped by request",
                    stopped_at=get_timestamp(),
                    last_exit_code=self._exit_code,
                )

        if outcome == StopOutcome.FORCED:
            await self.emit_event(
                ServiceEventType.FORCED_STOP,
                message=f"Killed after {grace_period:g}s grace period",
            )
        await self.emit_event(
            ServiceEventType.STOPPED,
            exit_code=self._exit_code,
            message="Stopped by request",
        )
        return outcome

    def kill(self) -> None:
        """Forcibly kill the live process, if any, without waiting."""
        self.begin_shutdown()
        handle = self._handle
        if handle is not None:
            with contextlib.suppress(ServiceStopError):
                handle.kill()

    def retire(self) -> None:
        """Mark the service STOPPED when the supervisor exits."""
        if self.status.state == ServiceState.STOPPED:
            return
        if self.status.state in (ServiceState.STARTING, ServiceState.RUNNING):
            _ = self._transition(ServiceState.STOPPING)
        _ = self._transition(
            ServiceState.STOPPED,
            terminal_reason=self.status.terminal_reason or "supervisor exited",
            stopped_at=get_timestamp(),
            pid=None,
        )

    def get_status(self) -> dict[str, object]:
        """Return a JSON-friendly snapshot of the status record."""
        return {
            "state": self.status.state.value,
            "pid": self.status.pid,
            "restart_count": self.status.restart_count,
            "consecutive_failures": self.status.consecutive_failures,
            "last_exit_code": self.status.last_exit_code,
            "started_at": self.status.started_at,
            "stopped_at": self.status.stopped_at,
            "terminal_reason": self.status.terminal_reason,
            "blocked_reason": self._blocked_reason,
        }

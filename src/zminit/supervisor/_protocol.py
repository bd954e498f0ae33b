"""Protocol definitions for the supervisor system.

This module defines the interfaces that decouple the supervisor core from
real processes and from output/UI implementations:
- ProcessHandle: A launched process as the supervisor sees it
- ProcessLauncher: Turns a ServiceSpec into a ProcessHandle
- OutputSink: Consumer of service output and lifecycle events
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Literal, Protocol, runtime_checkable

if TYPE_CHECKING:
    from anyio.abc import ByteReceiveStream

    from ._models import ServiceEvent, ServiceSpec


@runtime_checkable
class ProcessHandle(Protocol):
    """A launched child process.

    The supervisor only ever observes the process identifier, the exit
    status, and the output streams.
    """

    @property
    def pid(self) -> int:
        """Return the process ID."""
        ...

    @property
    def returncode(self) -> int | None:
        """Return the exit status, or None while the process runs."""
        ...

    @property
    def stdout(self) -> ByteReceiveStream | None:
        """Return the captured standard output stream, if any."""
        ...

    @property
    def stderr(self) -> ByteReceiveStream | None:
        """Return the captured standard error stream, if any."""
        ...

    async def wait(self) -> int:
        """Wait for the process to exit and return its exit status.

        A negative status means the process was killed by that signal.
        """
        ...

    def terminate(self) -> None:
        """Ask the process (group) to terminate gracefully."""
        ...

    def kill(self) -> None:
        """Forcibly kill the process (group)."""
        ...


@runtime_checkable
class ProcessLauncher(Protocol):
    """Starts processes for service specs."""

    async def launch(self, spec: ServiceSpec) -> ProcessHandle:
        """Launch the service's executable.

        Raises:
            ServiceStartError: If the executable is missing or cannot be run.
        """
        ...


@runtime_checkable
class OutputSink(Protocol):
    """Protocol for consuming service output lines and events.

    The protocol is async to support non-blocking I/O operations like
    writing to files or updating UIs.
    """

    async def write_line(
        self,
        service_name: str,
        pid: int,
        stream: Literal["stdout", "stderr"],
        line: str,
    ) -> None:
        """Write a line of service output.

        Args:
            service_name: Name of the service that produced the output.
            pid: Process ID of the service.
            stream: Which output stream the line came from.
            line: The output line (without trailing newline).
        """
        ...

    async def write_event(
        self,
        service_name: str,
        event: ServiceEvent,
    ) -> None:
        """Write a service lifecycle event.

        Args:
            service_name: Name of the service that generated the event.
            event: The lifecycle event to record.
        """
        ...

"""zminit exceptions."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from pathlib import Path


class ZminitError(Exception):
    """Base exception for zminit errors."""


# =============================================================================
# Configuration Exceptions
# =============================================================================


class ConfigError(ZminitError):
    """Base exception for configuration errors."""


class ConfigLoadError(ConfigError):
    """Raised when configuration cannot be loaded or parsed."""

    def __init__(
        self,
        message: str,
        *,
        path: Path | None = None,
        line: int | None = None,
        column: int | None = None,
    ) -> None:
        """Initialize with error message and optional location context."""
        super().__init__(message)
        self.path: Path | None = path
        self.line: int | None = line
        self.column: int | None = column


class ConfigInvalidError(ConfigError, ValueError):
    """Raised when a setting is malformed, out of range, or inconsistent.

    Attributes:
        key: The offending setting key (environment name where applicable).
        value: The rejected value.
        expected: Description of what was expected.
    """

    def __init__(
        self,
        message: str,
        *,
        key: str,
        value: Any = None,  # pyright: ignore[reportExplicitAny]
        expected: str | None = None,
    ) -> None:
        """Initialize with error message and validation context."""
        super().__init__(message)
        self.key: str = key
        self.value: Any = value  # pyright: ignore[reportExplicitAny]
        self.expected: str | None = expected


class CircularDependencyError(ConfigInvalidError):
    """Raised when service dependencies form a cycle.

    Attributes:
        cycle: Service names forming the cycle, first name repeated at the end.
    """

    def __init__(self, message: str, *, cycle: list[str]) -> None:
        """Initialize with error message and cycle context."""
        super().__init__(message, key="depends_on", value=cycle, expected="acyclic")
        self.cycle: list[str] = cycle


class UnknownDependencyError(ConfigInvalidError):
    """Raised when a service depends on a name that is not defined.

    Attributes:
        service_name: The service declaring the dependency.
        dependency: The undefined dependency name.
    """

    def __init__(self, message: str, *, service_name: str, dependency: str) -> None:
        """Initialize with error message and dependency context."""
        super().__init__(message, key="depends_on", value=dependency)
        self.service_name: str = service_name
        self.dependency: str = dependency


# =============================================================================
# Bootstrap Exceptions
# =============================================================================


class BootstrapError(ZminitError):
    """Base exception for one-shot bootstrap failures."""


class PermissionFixError(BootstrapError):
    """Raised when ownership or mode cannot be applied to a persistent path.

    Attributes:
        path: The path that could not be fixed.
        cause: The underlying OS error.
    """

    def __init__(
        self,
        message: str,
        *,
        path: Path,
        cause: OSError | None = None,
    ) -> None:
        """Initialize with error message and path context."""
        super().__init__(message)
        self.path: Path = path
        self.cause: OSError | None = cause


class ConfigWriteError(BootstrapError):
    """Raised when a materialized configuration file cannot be written."""

    def __init__(
        self,
        message: str,
        *,
        path: Path,
        cause: OSError | None = None,
    ) -> None:
        """Initialize with error message and path context."""
        super().__init__(message)
        self.path: Path = path
        self.cause: OSError | None = cause


# =============================================================================
# Supervisor Exceptions
# =============================================================================


class SupervisorError(ZminitError):
    """Base exception for supervisor errors."""


class ServiceError(SupervisorError):
    """A supervisor error tied to one service and, optionally, an OS error.

    Attributes:
        service_name: Name of the service involved, when known.
        cause: The exception raised by the operating system, if any.
    """

    def __init__(
        self,
        message: str,
        *,
        service_name: str | None = None,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(message)
        self.service_name: str | None = service_name
        self.cause: Exception | None = cause


class ServiceNotFoundError(ServiceError, KeyError):
    """No service is registered under the requested name."""

    def __str__(self) -> str:
        # KeyError would repr() the message
        return str(self.args[0]) if self.args else ""


class ServiceStartError(ServiceError):
    """A service executable is missing or cannot be run."""


class ServiceStopError(ServiceError):
    """A service process cannot be signalled."""


class DependencyUnavailableError(SupervisorError):
    """Raised when an upstream endpoint never accepted a connection in time.

    Attributes:
        host: Target host.
        port: Target port.
        attempts: Number of connection attempts made.
        elapsed: Seconds spent waiting.
    """

    def __init__(
        self,
        message: str,
        *,
        host: str,
        port: int,
        attempts: int,
        elapsed: float,
    ) -> None:
        """Initialize with error message and probe context."""
        super().__init__(message)
        self.host: str = host
        self.port: int = port
        self.attempts: int = attempts
        self.elapsed: float = elapsed


class StartOrderError(SupervisorError):
    """Raised when a dependency stopped for good before it ever ran.

    Attributes:
        service_name: The dependent service left waiting.
        dependency: The dependency that reached a terminal stop.
    """

    def __init__(self, message: str, *, service_name: str, dependency: str) -> None:
        """Initialize with error message and dependency context."""
        super().__init__(message)
        self.service_name: str = service_name
        self.dependency: str = dependency


class InvalidTransitionError(SupervisorError):
    """Raised when a lifecycle transition is not allowed from the current state."""

    def __init__(
        self,
        message: str,
        *,
        service_name: str,
        from_state: str,
        to_state: str,
    ) -> None:
        """Initialize with error message and transition context."""
        super().__init__(message)
        self.service_name: str = service_name
        self.from_state: str = from_state
        self.to_state: str = to_state

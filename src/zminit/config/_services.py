# pyright: reportAny=false, reportUnknownVariableType=false, reportUnknownArgumentType=false
"""Service definitions: the built-in ZoneMinder stack and TOML services files."""

from __future__ import annotations

import tomllib
from pathlib import Path
from typing import TYPE_CHECKING, Any

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    ValidationInfo,
    field_validator,
)

from zminit.exceptions import ConfigInvalidError, ConfigLoadError
from zminit.supervisor import (
    DependencyGraph,
    ReadinessCheck,
    ReadinessKind,
    RestartPolicy,
    ServiceSpec,
)

if TYPE_CHECKING:
    from ._models import ContainerSettings

FCGIWRAP_SOCKET = "unix:/zoneminder/run/fcgiwrap.sock"
NGINX_PORT = 80
MAIL_RELAY_PORT = 25
# zmdc.pl writes its PID to ZM_PID, which is under ZM_RUNDIR
ZONEMINDER_PIDFILE = Path("/zoneminder/run/zm.pid")


class ReadinessEntry(BaseModel):
    """``[services.readiness]`` table."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    kind: ReadinessKind = ReadinessKind.NONE
    host: str = "127.0.0.1"
    port: int | None = Field(default=None, ge=1, le=65535, validate_default=True)
    timeout: float = Field(default=30.0, ge=0)
    interval: float = Field(default=1.0, gt=0)

    @field_validator("port")
    @classmethod
    def _port_required_by_kind(cls, value: int | None, info: ValidationInfo) -> int | None:
        kind = info.data.get("kind", ReadinessKind.NONE)
        if value is None and kind != ReadinessKind.NONE:
            msg = f"a port is required for '{kind}' readiness checks"
            raise ValueError(msg)
        return value


class ServiceEntry(BaseModel):
    """One ``[[services]]`` table."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    name: str = Field(min_length=1, pattern=r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")
    command: list[str] = Field(min_length=1)
    depends_on: list[str] = Field(default_factory=list)
    restart: RestartPolicy = RestartPolicy.ON_FAILURE
    readiness: ReadinessEntry = Field(default_factory=ReadinessEntry)
    log_stream: str = ""
    env: dict[str, str] = Field(default_factory=dict)
    cwd: Path | None = None
    user: str | None = None
    pidfile: Path | None = None

    def to_spec(self) -> ServiceSpec:
        """Convert the entry into an immutable ServiceSpec."""
        return ServiceSpec(
            name=self.name,
            command=tuple(self.command),
            depends_on=tuple(self.depends_on),
            restart=self.restart,
            readiness=ReadinessCheck(
                kind=self.readiness.kind,
                host=self.readiness.host,
                port=self.readiness.port,
                timeout=self.readiness.timeout,
                interval=self.readiness.interval,
            ),
            log_stream=self.log_stream,
            env=dict(self.env),
            cwd=self.cwd,
            user=self.user,
            pidfile=self.pidfile,
        )


class ServicesFile(BaseModel):
    """Top level of a services file."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    services: list[ServiceEntry] = Field(min_length=1)


def _error_location(error: ValidationError) -> tuple[str, object, str]:
    first = error.errors()[0]
    key = ".".join(str(part) for part in first.get("loc", ())) or "services"
    return key, first.get("input"), str(first.get("msg", "a valid value"))


def parse_service_specs(data: dict[str, Any]) -> list[ServiceSpec]:  # pyright: ignore[reportExplicitAny]
    """Validate parsed services data and build the service specs.

    Args:
        data: Parsed TOML content.

    Returns:
        Service specs in declaration order.

    Raises:
        ConfigInvalidError: If an entry is malformed, a name is duplicated,
            a dependency is undefined, or the dependencies form a cycle.
    """
    try:
        parsed = ServicesFile.model_validate(data)
    except ValidationError as e:
        key, value, expected = _error_location(e)
        msg = f"Invalid service definition at {key}: {expected}"
        raise ConfigInvalidError(msg, key=key, value=value, expected=expected) from e

    specs = [entry.to_spec() for entry in parsed.services]
    _ = DependencyGraph(specs)
    return specs


def load_service_specs(path: Path) -> list[ServiceSpec]:
    """Read a TOML services file.

    Args:
        path: Path to the services file.

    Returns:
        Service specs in declaration order.

    Raises:
        ConfigLoadError: If the file cannot be read or parsed.
        ConfigInvalidError: If the definitions are invalid.
    """
    try:
        with path.open("rb") as f:
            data = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        msg = f"Failed to parse TOML file: {e}"
        raise ConfigLoadError(msg, path=path, line=e.lineno, column=e.colno) from e
    except OSError as e:
        msg = f"Failed to read services file {path}: {e}"
        raise ConfigLoadError(msg, path=path) from e

    return parse_service_specs(data)


def default_service_specs(settings: ContainerSettings) -> list[ServiceSpec]:
    """Return the built-in ZoneMinder service stack.

    php-fpm and fcgiwrap come up first, nginx fronts them, and the
    ZoneMinder daemon waits for the database before it starts. zmpkg.pl
    backgrounds zmdc.pl, so ZoneMinder is supervised through its pidfile.
    """
    env = {"TZ": settings.timezone}
    return [
        ServiceSpec(
            name="php-fpm",
            command=("php-fpm", "--nodaemonize", "--force-stderr"),
            restart=RestartPolicy.ALWAYS,
            env=env,
        ),
        ServiceSpec(
            name="fcgiwrap",
            command=("fcgiwrap", "-c", str(settings.fcgiwrap_processes), "-s", FCGIWRAP_SOCKET),
            restart=RestartPolicy.ALWAYS,
            env=env,
            user="www-data",
        ),
        ServiceSpec(
            name="nginx",
            command=("nginx", "-g", "daemon off;"),
            depends_on=("php-fpm", "fcgiwrap"),
            restart=RestartPolicy.ALWAYS,
            readiness=ReadinessCheck(
                kind=ReadinessKind.PORT,
                port=NGINX_PORT,
                timeout=settings.readiness_timeout,
            ),
            env=env,
        ),
        ServiceSpec(
            name="mail",
            command=("msmtpd", "--interface=127.0.0.1", f"--port={MAIL_RELAY_PORT}"),
            restart=RestartPolicy.ON_FAILURE,
            env=env,
        ),
        ServiceSpec(
            name="zoneminder",
            command=("zmpkg.pl", "start"),
            depends_on=("nginx", "mail"),
            restart=RestartPolicy.ON_FAILURE,
            readiness=ReadinessCheck(
                kind=ReadinessKind.DEPENDENCY,
                host=settings.mysql_host,
                port=settings.mysql_port,
                timeout=settings.wait_timeout,
                interval=settings.wait_interval,
            ),
            env=env,
            user="www-data",
            pidfile=ZONEMINDER_PIDFILE,
        ),
    ]

"""Container settings model.

Every recognized environment key is a field on ContainerSettings, aliased to
its environment name and carrying the default baked into the image, so an
unset key never causes a startup failure.
"""

from enum import StrEnum
from typing import ClassVar

import pendulum
from pydantic import BaseModel, ConfigDict, Field, field_validator


class LogLevel(StrEnum):
    """Log level threshold values.

    Values are ordered from most verbose (debug) to least verbose (error).
    """

    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class LogFormat(StrEnum):
    """Log output format values."""

    JSON = "json"
    TEXT = "text"


_HOSTNAME_PATTERN = r"^[A-Za-z0-9][A-Za-z0-9._-]*$"
_PHP_SIZE_PATTERN = r"^(-1|[0-9]+[KMG]?)$"
_FASTCGI_BUFFERS_PATTERN = r"^[0-9]+ [0-9]+[kKmM]?$"
_MAX_ID = 2**31 - 1
# s6-overlay value meaning "stop the container"
STOP_ON_BOOTSTRAP_FAILURE = 2


class ContainerSettings(BaseModel):
    """Validated environment-derived settings for the container.

    Attributes:
        mysql_host: Database host the application daemon connects to.
        mysql_port: Database port, also the dependency-wait target.
        db_name: ZoneMinder database name.
        db_user: ZoneMinder database user.
        db_password: ZoneMinder database password.
        php_max_children: php-fpm ``pm.max_children``.
        php_start_servers: php-fpm ``pm.start_servers``.
        php_min_spare_servers: php-fpm ``pm.min_spare_servers``.
        php_max_spare_servers: php-fpm ``pm.max_spare_servers``.
        php_memory_limit: PHP ``memory_limit`` (e.g. ``2048M``).
        php_max_execution_time: PHP ``max_execution_time`` in seconds.
        php_max_input_variables: PHP ``max_input_vars``.
        php_max_input_time: PHP ``max_input_time`` in seconds.
        fcgiwrap_processes: Number of fcgiwrap worker processes.
        fastcgi_buffers: nginx ``fastcgi_buffers`` value (``count size``).
        puid: Owner uid for persistent directories.
        pgid: Owner gid for persistent directories.
        timezone: IANA timezone name.
        use_secure_random_org: Whether ZoneMinder may call random.org.
        max_log_size_bytes: Rotate a service log at this size.
        max_log_number: Rotated files kept per service log.
        wait_timeout: Seconds to wait for the database (0 waits forever).
        wait_interval: Seconds between database connection attempts.
        shutdown_grace_period: Seconds a service gets to stop before SIGKILL.
        readiness_timeout: Seconds a port readiness probe may take.
        restart_max_attempts: Restart ceiling for on-failure services.
        restart_backoff_base: First restart delay in seconds.
        restart_backoff_max: Cap on the restart delay in seconds.
        restart_min_uptime: Run time after which the failure counter resets.
        bootstrap_failure_behaviour: What a failed bootstrap does. Only 2,
            stop the container, is supported.
        status_port: Port for the read-only status API (0 disables it).
        log_level: Supervisor log threshold.
        log_format: Supervisor log format.
    """

    model_config: ClassVar[ConfigDict] = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
    )

    mysql_host: str = Field(default="db", alias="MYSQL_HOST", pattern=_HOSTNAME_PATTERN)
    mysql_port: int = Field(default=3306, alias="MYSQL_PORT", ge=1, le=65535)
    db_name: str = Field(default="zm", alias="ZM_DB_NAME", min_length=1)
    db_user: str = Field(default="zmuser", alias="ZM_DB_USER", min_length=1)
    db_password: str = Field(default="zmpass", alias="ZM_DB_PASS", min_length=1)

    php_max_children: int = Field(default=120, alias="PHP_MAX_CHILDREN", ge=1, le=10000)
    php_start_servers: int = Field(default=12, alias="PHP_START_SERVERS", ge=1, le=10000)
    php_min_spare_servers: int = Field(
        default=6, alias="PHP_MIN_SPARE_SERVERS", ge=1, le=10000
    )
    php_max_spare_servers: int = Field(
        default=18, alias="PHP_MAX_SPARE_SERVERS", ge=1, le=10000
    )
    php_memory_limit: str = Field(
        default="2048M", alias="PHP_MEMORY_LIMIT", pattern=_PHP_SIZE_PATTERN
    )
    php_max_execution_time: int = Field(
        default=600, alias="PHP_MAX_EXECUTION_TIME", ge=0, le=86400
    )
    php_max_input_variables: int = Field(
        default=3000, alias="PHP_MAX_INPUT_VARIABLES", ge=1, le=1_000_000
    )
    php_max_input_time: int = Field(
        default=600, alias="PHP_MAX_INPUT_TIME", ge=-1, le=86400
    )

    fcgiwrap_processes: int = Field(default=15, alias="FCGIWRAP_PROCESSES", ge=1, le=1000)
    fastcgi_buffers: str = Field(
        default="64 4K",
        alias="FASTCGI_BUFFERS_CONFIGURATION_STRING",
        pattern=_FASTCGI_BUFFERS_PATTERN,
    )

    puid: int = Field(default=911, alias="PUID", ge=0, le=_MAX_ID)
    pgid: int = Field(default=911, alias="PGID", ge=0, le=_MAX_ID)
    timezone: str = Field(default="America/Chicago", alias="TZ")
    use_secure_random_org: bool = Field(default=True, alias="USE_SECURE_RANDOM_ORG")

    max_log_size_bytes: int = Field(
        default=1_000_000, alias="MAX_LOG_SIZE_BYTES", ge=1024
    )
    max_log_number: int = Field(default=10, alias="MAX_LOG_NUMBER", ge=1, le=1000)

    wait_timeout: float = Field(default=0.0, alias="WAIT_FOR_SERVICES_MAXTIME", ge=0)
    wait_interval: float = Field(default=5.0, alias="WAIT_FOR_SERVICES_INTERVAL", gt=0)
    shutdown_grace_period: float = Field(
        default=10.0, alias="SHUTDOWN_GRACE_PERIOD", gt=0
    )
    readiness_timeout: float = Field(default=30.0, alias="READINESS_TIMEOUT", gt=0)

    restart_max_attempts: int = Field(default=5, alias="RESTART_MAX_ATTEMPTS", ge=0)
    restart_backoff_base: float = Field(default=1.0, alias="RESTART_BACKOFF_BASE", gt=0)
    restart_backoff_max: float = Field(default=60.0, alias="RESTART_BACKOFF_MAX", gt=0)
    restart_min_uptime: float = Field(default=30.0, alias="RESTART_MIN_UPTIME", ge=0)
    bootstrap_failure_behaviour: int = Field(default=2, alias="S6_BEHAVIOUR_IF_STAGE2_FAILS")

    status_port: int = Field(default=0, alias="STATUS_PORT", ge=0, le=65535)
    log_level: LogLevel = Field(default=LogLevel.INFO, alias="LOG_LEVEL")
    log_format: LogFormat = Field(default=LogFormat.TEXT, alias="LOG_FORMAT")

    @field_validator("timezone")
    @classmethod
    def _validate_timezone(cls, value: str) -> str:
        try:
            _ = pendulum.timezone(value)
        except (ValueError, KeyError) as e:
            msg = f"unknown timezone '{value}'"
            raise ValueError(msg) from e
        return value

    @field_validator("bootstrap_failure_behaviour")
    @classmethod
    def _validate_bootstrap_failure_behaviour(cls, value: int) -> int:
        if value != STOP_ON_BOOTSTRAP_FAILURE:
            msg = "bootstrap failures always stop the container; only 2 is supported"
            raise ValueError(msg)
        return value

    @classmethod
    def env_keys(cls) -> tuple[str, ...]:
        """Return every recognized environment key in declaration order."""
        return tuple(
            field.alias or name for name, field in cls.model_fields.items()
        )

    def to_env(self) -> dict[str, str]:
        """Render the settings back into environment form."""
        values: dict[str, str] = {}
        for name, field in type(self).model_fields.items():
            value = getattr(self, name)
            if isinstance(value, bool):
                rendered = "1" if value else "0"
            elif isinstance(value, StrEnum):
                rendered = value.value
            else:
                rendered = str(value)
            values[field.alias or name] = rendered
        return values

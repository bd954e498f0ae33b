"""Container configuration: environment settings and service definitions."""

from ._load import load_settings
from ._models import ContainerSettings, LogFormat, LogLevel
from ._services import (
    ReadinessEntry,
    ServiceEntry,
    ServicesFile,
    default_service_specs,
    load_service_specs,
    parse_service_specs,
)

__all__ = [
    "ContainerSettings",
    "LogFormat",
    "LogLevel",
    "ReadinessEntry",
    "ServiceEntry",
    "ServicesFile",
    "default_service_specs",
    "load_service_specs",
    "load_settings",
    "parse_service_specs",
]

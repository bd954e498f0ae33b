"""Environment loading and validation for container settings."""

from __future__ import annotations

import os
from typing import TYPE_CHECKING

from pydantic import ValidationError

from zminit.exceptions import ConfigInvalidError

from ._models import ContainerSettings

if TYPE_CHECKING:
    from collections.abc import Mapping


def _error_from_validation(error: ValidationError) -> ConfigInvalidError:
    """Convert the first pydantic error into a ConfigInvalidError."""
    first = error.errors()[0]
    loc = first.get("loc", ())
    key = str(loc[0]) if loc else "<settings>"
    value = first.get("input")
    expected = str(first.get("msg", "a valid value"))
    msg = f"Invalid value for {key}: {value!r} ({expected})"
    return ConfigInvalidError(msg, key=key, value=value, expected=expected)


def _check_consistency(settings: ContainerSettings) -> None:
    """Check cross-field constraints that single-field validation cannot.

    Raises:
        ConfigInvalidError: Naming the key whose value breaks the constraint.
    """
    if settings.php_min_spare_servers > settings.php_start_servers:
        msg = (
            "PHP_START_SERVERS must be >= PHP_MIN_SPARE_SERVERS "
            f"({settings.php_start_servers} < {settings.php_min_spare_servers})"
        )
        raise ConfigInvalidError(
            msg,
            key="PHP_START_SERVERS",
            value=settings.php_start_servers,
            expected=f">= {settings.php_min_spare_servers}",
        )

    if settings.php_start_servers > settings.php_max_spare_servers:
        msg = (
            "PHP_START_SERVERS must be <= PHP_MAX_SPARE_SERVERS "
            f"({settings.php_start_servers} > {settings.php_max_spare_servers})"
        )
        raise ConfigInvalidError(
            msg,
            key="PHP_START_SERVERS",
            value=settings.php_start_servers,
            expected=f"<= {settings.php_max_spare_servers}",
        )

    if settings.php_max_spare_servers > settings.php_max_children:
        msg = (
            "PHP_MAX_SPARE_SERVERS must be <= PHP_MAX_CHILDREN "
            f"({settings.php_max_spare_servers} > {settings.php_max_children})"
        )
        raise ConfigInvalidError(
            msg,
            key="PHP_MAX_SPARE_SERVERS",
            value=settings.php_max_spare_servers,
            expected=f"<= {settings.php_max_children}",
        )

    if settings.restart_backoff_base > settings.restart_backoff_max:
        msg = "RESTART_BACKOFF_BASE must not exceed RESTART_BACKOFF_MAX"
        raise ConfigInvalidError(
            msg,
            key="RESTART_BACKOFF_BASE",
            value=settings.restart_backoff_base,
            expected=f"<= {settings.restart_backoff_max}",
        )


def load_settings(env: Mapping[str, str] | None = None) -> ContainerSettings:
    """Build validated settings from an environment mapping.

    Unknown keys are ignored. Unset and empty keys fall back to their
    defaults. Values are never coerced into range: the first invalid key
    aborts loading.

    Args:
        env: Environment mapping. Uses ``os.environ`` if None.

    Returns:
        The validated, frozen settings.

    Raises:
        ConfigInvalidError: If any value is malformed, out of range, or
            inconsistent with another.
    """
    source = os.environ if env is None else env
    known = set(ContainerSettings.env_keys())
    supplied = {
        key: value
        for key, value in source.items()
        if key in known and value.strip() != ""
    }

    try:
        settings = ContainerSettings.model_validate(supplied)
    except ValidationError as e:
        raise _error_from_validation(e) from e

    _check_consistency(settings)
    return settings

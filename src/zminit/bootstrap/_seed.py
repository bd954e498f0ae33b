"""Seed the config volume from the defaults shipped in the image."""

from __future__ import annotations

import shutil
from pathlib import Path
from typing import TYPE_CHECKING

from zminit.exceptions import ConfigWriteError
from zminit.utils import get_null_logger

if TYPE_CHECKING:
    from structlog.typing import FilteringBoundLogger

DEFAULT_CONFIG_SOURCE = Path("/zoneminder/defaultconfig")
DEFAULT_CONFIG_DESTINATION = Path("/config")


def seed_default_config(
    source: Path = DEFAULT_CONFIG_SOURCE,
    destination: Path = DEFAULT_CONFIG_DESTINATION,
    *,
    logger: FilteringBoundLogger | None = None,
) -> list[Path]:
    """Copy default config files that do not exist in ``destination`` yet.

    Existing files are never overwritten, so user edits survive restarts.

    Returns:
        Destination paths of the files that were copied.

    Raises:
        ConfigWriteError: If a file cannot be copied.
    """
    logger = logger or get_null_logger()
    if not source.is_dir():
        logger.warning("default_config_missing", source=str(source))
        return []

    copied: list[Path] = []
    for path in sorted(source.rglob("*")):
        target = destination / path.relative_to(source)
        try:
            if path.is_dir():
                target.mkdir(parents=True, exist_ok=True)
            elif not target.exists():
                target.parent.mkdir(parents=True, exist_ok=True)
                _ = shutil.copy2(path, target)
                copied.append(target)
        except OSError as e:
            msg = f"Cannot seed {target} from {path}: {e}"
            raise ConfigWriteError(msg, path=target, cause=e) from e

    logger.info("default_config_seeded", destination=str(destination), copied=len(copied))
    return copied

"""Config materializer: write service configuration from container settings.

Each dependent service reads a small generated file: a php-fpm pool
override, an nginx ``fastcgi_buffers`` snippet, the ZoneMinder database
config and the system timezone. Files are rendered with Jinja2 and replaced
atomically, and only when their content changes.
"""

from __future__ import annotations

import os
import stat
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, cast

from jinja2 import Environment, StrictUndefined

from zminit.exceptions import ConfigWriteError
from zminit.utils import get_null_logger

from ._templates import (
    FASTCGI_BUFFERS_TEMPLATE,
    PHP_POOL_TEMPLATE,
    TIMEZONE_TEMPLATE,
    ZM_DB_TEMPLATE,
)

if TYPE_CHECKING:
    from structlog.typing import FilteringBoundLogger

    from zminit.config import ContainerSettings

FILE_MODE = 0o644
# The database config carries ZM_DB_PASS
PRIVATE_FILE_MODE = 0o640


@dataclass(frozen=True, slots=True)
class MaterializePaths:
    """Where each materialized file is written.

    Attributes:
        php_pool: php-fpm pool override.
        fastcgi_buffers: nginx snippet included by the ZoneMinder site.
        zm_db: ZoneMinder database config.
        timezone: System timezone file.
    """

    php_pool: Path = Path("/etc/php/fpm/pool.d/zz-zminit.conf")
    fastcgi_buffers: Path = Path("/etc/nginx/snippets/fastcgi-buffers.conf")
    zm_db: Path = Path("/config/conf.d/02-docker.conf")
    timezone: Path = Path("/etc/timezone")

    @classmethod
    def rooted(cls, root: Path) -> MaterializePaths:
        """Return the default paths relocated under ``root``."""
        defaults = cls()
        return cls(
            php_pool=root / defaults.php_pool.relative_to("/"),
            fastcgi_buffers=root / defaults.fastcgi_buffers.relative_to("/"),
            zm_db=root / defaults.zm_db.relative_to("/"),
            timezone=root / defaults.timezone.relative_to("/"),
        )


_environment = Environment(  # noqa: S701 - config files, not HTML
    keep_trailing_newline=True,
    undefined=StrictUndefined,
    autoescape=False,
)


def render_files(
    settings: ContainerSettings, paths: MaterializePaths | None = None
) -> dict[Path, str]:
    """Render every materialized file without touching the filesystem.

    Returns:
        Rendered content keyed by destination path.
    """
    paths = paths or MaterializePaths()
    context = settings.model_dump()
    templates = {
        paths.php_pool: PHP_POOL_TEMPLATE,
        paths.fastcgi_buffers: FASTCGI_BUFFERS_TEMPLATE,
        paths.zm_db: ZM_DB_TEMPLATE,
        paths.timezone: TIMEZONE_TEMPLATE,
    }
    return {
        path: cast("str", _environment.from_string(source).render(context))
        for path, source in templates.items()
    }


def write_if_changed(path: Path, content: str, *, mode: int = FILE_MODE) -> bool:
    """Atomically replace ``path`` with ``content`` unless it already matches.

    A file whose content matches but whose mode differs only has its mode
    fixed. The new file gets ``mode`` before it replaces the old one.

    Returns:
        True if the file content or mode changed.

    Raises:
        ConfigWriteError: If the file cannot be written.
    """
    data = content.encode()
    try:
        if path.is_file() and path.read_bytes() == data:
            if stat.S_IMODE(path.stat().st_mode) == mode:
                return False
            path.chmod(mode)
            return True

        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.")
        try:
            with os.fdopen(fd, "wb") as f:
                _ = f.write(data)
            Path(tmp_name).chmod(mode)
            _ = Path(tmp_name).replace(path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
    except OSError as e:
        msg = f"Cannot write {path}: {e}"
        raise ConfigWriteError(msg, path=path, cause=e) from e
    return True


def materialize(
    settings: ContainerSettings,
    paths: MaterializePaths | None = None,
    *,
    logger: FilteringBoundLogger | None = None,
) -> list[Path]:
    """Write every configuration file derived from ``settings``.

    Returns:
        Paths of the files whose content or mode changed.

    Raises:
        ConfigWriteError: If a file cannot be written.
    """
    logger = logger or get_null_logger()
    paths = paths or MaterializePaths()
    written: list[Path] = []
    for path, content in render_files(settings, paths).items():
        mode = PRIVATE_FILE_MODE if path == paths.zm_db else FILE_MODE
        if write_if_changed(path, content, mode=mode):
            written.append(path)
            logger.info("config_written", path=str(path))
        else:
            logger.debug("config_unchanged", path=str(path))
    return written

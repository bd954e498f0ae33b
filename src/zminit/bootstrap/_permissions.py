"""Ownership and mode fixing for the container's persistent directories."""

from __future__ import annotations

import grp
import os
import pwd
import stat
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from zminit.exceptions import PermissionFixError
from zminit.utils import get_null_logger

from ._materialize import MaterializePaths

if TYPE_CHECKING:
    from collections.abc import Iterable

    from structlog.typing import FilteringBoundLogger

    from zminit.config import ContainerSettings

NOBODY_ID = 65534
DEFAULT_MODE = 0o755


@dataclass(frozen=True, slots=True)
class PermissionTarget:
    """A directory tree and the ownership and mode it must have.

    Attributes:
        path: Root of the tree.
        uid: Owner user id.
        gid: Owner group id.
        mode: Permission bits applied to every entry.
        keep_mode: Entries whose mode is left alone; their ownership is
            still fixed.
    """

    path: Path
    uid: int
    gid: int
    mode: int = DEFAULT_MODE
    keep_mode: frozenset[Path] = field(default_factory=frozenset)


def _lookup_uid(name: str, default: int) -> int:
    try:
        return pwd.getpwnam(name).pw_uid
    except KeyError:
        return default


def _lookup_gid(name: str, default: int) -> int:
    try:
        return grp.getgrnam(name).gr_gid
    except KeyError:
        return default


def default_permission_targets(
    settings: ContainerSettings, root: Path = Path("/")
) -> list[PermissionTarget]:
    """Return the directories fixed before services start.

    Data, config and the ZoneMinder runtime tree belong to PUID:PGID; the
    log directory belongs to nobody:nogroup. The database config keeps the
    private mode it is written with.
    """
    nobody = _lookup_uid("nobody", NOBODY_ID)
    nogroup = _lookup_gid("nogroup", NOBODY_ID)
    return [
        PermissionTarget(root / "data", settings.puid, settings.pgid),
        PermissionTarget(
            root / "config",
            settings.puid,
            settings.pgid,
            keep_mode=frozenset({MaterializePaths.rooted(root).zm_db}),
        ),
        PermissionTarget(root / "zoneminder", settings.puid, settings.pgid),
        PermissionTarget(root / "log", nobody, nogroup),
    ]


def _apply(path: Path, target: PermissionTarget) -> bool:
    """Apply ownership and mode to one entry; return True if it changed."""
    info = path.lstat()
    changed = False
    if info.st_uid != target.uid or info.st_gid != target.gid:
        os.chown(path, target.uid, target.gid, follow_symlinks=False)
        changed = True
    if (
        path not in target.keep_mode
        and not stat.S_ISLNK(info.st_mode)
        and stat.S_IMODE(info.st_mode) != target.mode
    ):
        path.chmod(target.mode)
        changed = True
    return changed


def fix_target(target: PermissionTarget) -> int:
    """Create ``target.path`` if missing and fix the whole tree.

    Returns:
        Number of entries whose ownership or mode changed.

    Raises:
        PermissionFixError: If any entry cannot be created or changed.
    """
    current = target.path
    try:
        target.path.mkdir(parents=True, exist_ok=True)
        changed = int(_apply(target.path, target))
        for dirpath, dirnames, filenames in os.walk(target.path):
            for name in (*dirnames, *filenames):
                current = Path(dirpath) / name
                changed += _apply(current, target)
    except OSError as e:
        msg = f"Cannot fix permissions of {current}: {e}"
        raise PermissionFixError(msg, path=current, cause=e) from e
    return changed


def fix_permissions(
    targets: Iterable[PermissionTarget],
    *,
    logger: FilteringBoundLogger | None = None,
) -> dict[Path, int]:
    """Fix every target in order, stopping at the first failure.

    Returns:
        Number of changed entries per target path.

    Raises:
        PermissionFixError: If a target cannot be fixed.
    """
    logger = logger or get_null_logger()
    results: dict[Path, int] = {}
    for target in targets:
        changed = fix_target(target)
        results[target.path] = changed
        logger.info(
            "permissions_fixed",
            path=str(target.path),
            uid=target.uid,
            gid=target.gid,
            mode=oct(target.mode),
            changed=changed,
        )
    return results

"""Log governor: size-capped, rotated log streams for managed services.

Service output reaches disk only through a LogStream. Each stream holds the
open file handle for its active file, so rotation swaps the handle under the
same lock that writes take: a write either lands entirely in the old file
or entirely in the new one, and no bytes are lost in between.

Rotated files are named ``<stream>.log.1`` (newest) through
``<stream>.log.<max_files>`` (oldest).
"""

from __future__ import annotations

import contextlib
from typing import TYPE_CHECKING, BinaryIO, final

import anyio
import anyio.to_thread

from zminit.utils import get_null_logger

from ._models import LogPolicy

if TYPE_CHECKING:
    from pathlib import Path

    from structlog.typing import FilteringBoundLogger


@final
class LogStream:
    """One governed log file and its rotated predecessors.

    Attributes:
        stream_id: Identifier of the stream.
        path: Path of the active file.
        policy: Size and retention limits.
    """

    __slots__ = ("_handle", "_lock", "_logger", "_size", "path", "policy", "stream_id")

    def __init__(
        self,
        stream_id: str,
        path: Path,
        policy: LogPolicy,
        *,
        logger: FilteringBoundLogger | None = None,
    ) -> None:
        self.stream_id = stream_id
        self.path = path
        self.policy = policy
        self._logger = logger or get_null_logger()
        self._handle: BinaryIO | None = None
        self._size = 0
        self._lock = anyio.Lock()

    @property
    def size(self) -> int:
        """Return the size of the active file as tracked by the stream."""
        return self._size

    def rotated_path(self, index: int) -> Path:
        """Return the path of the rotated file with the given index."""
        return self.path.with_name(f"{self.path.name}.{index}")

    def rotated_files(self) -> list[Path]:
        """Return existing rotated files, newest first."""
        found: list[tuple[int, Path]] = []
        prefix = f"{self.path.name}."
        if not self.path.parent.exists():
            return []
        for candidate in self.path.parent.iterdir():
            suffix = candidate.name.removeprefix(prefix)
            if candidate.name.startswith(prefix) and suffix.isdigit():
                found.append((int(suffix), candidate))
        return [path for _, path in sorted(found)]

    def _open_locked(self) -> BinaryIO:
        if self._handle is None:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._handle = self.path.open("ab")
            self._size = self.path.stat().st_size
        return self._handle

    def _close_locked(self) -> None:
        if self._handle is not None:
            self._handle.close()
            self._handle = None

    def _prune_locked(self) -> None:
        """Delete rotated files beyond the retention limit."""
        for path in self.rotated_files():
            index = int(path.name.rsplit(".", 1)[1])
            if index > self.policy.max_files:
                path.unlink(missing_ok=True)

    def _rotate_locked(self) -> None:
        self._close_locked()

        if self.policy.max_files == 0:
            self.path.unlink(missing_ok=True)
        else:
            oldest = self.rotated_path(self.policy.max_files)
            oldest.unlink(missing_ok=True)
            for index in range(self.policy.max_files - 1, 0, -1):
                source = self.rotated_path(index)
                if source.exists():
                    _ = source.replace(self.rotated_path(index + 1))
            if self.path.exists():
                _ = self.path.replace(self.rotated_path(1))

        self._prune_locked()
        _ = self._open_locked()
        self._size = 0

        self._logger.debug("log_rotated", stream=self.stream_id, path=str(self.path))

    def _write_locked(self, data: bytes) -> None:
        handle = self._open_locked()
        view = memoryview(data)
        while view:
            if self._size > 0 and self._size + len(view) > self.policy.max_bytes:
                self._rotate_locked()
                handle = self._open_locked()
            room = self.policy.max_bytes - self._size
            chunk = view[:room]
            _ = handle.write(chunk)
            self._size += len(chunk)
            view = view[room:]
        handle.flush()

    def _check_locked(self) -> bool:
        if self._handle is None:
            if not self.path.exists():
                return False
            self._size = self.path.stat().st_size
        if self._size >= self.policy.max_bytes:
            self._rotate_locked()
            return True
        self._prune_locked()
        return False

    async def write(self, data: bytes) -> None:
        """Append bytes, rotating first whenever they would not fit.

        Data larger than ``max_bytes`` is split across consecutive files.
        File I/O runs in a worker thread while the stream lock is held.
        """
        async with self._lock:
            await anyio.to_thread.run_sync(self._write_locked, data)

    async def write_line(self, line: str) -> None:
        """Append one line of text followed by a newline."""
        await self.write(f"{line}\n".encode(errors="replace"))

    async def check(self) -> bool:
        """Rotate the active file if it has reached ``max_bytes``.

        Returns:
            True if the stream was rotated.
        """
        async with self._lock:
            return await anyio.to_thread.run_sync(self._check_locked)

    async def aclose(self) -> None:
        """Close the active file handle."""
        async with self._lock:
            self._close_locked()


@final
class LogGovernor:
    """Owns every governed log stream and sweeps them periodically.

    Streams rotate on write boundaries; the periodic sweep additionally
    rotates files that reached their limit exactly and removes rotated files
    beyond the retention count.
    """

    __slots__ = ("_default_policy", "_interval", "_logger", "_streams", "log_dir")

    def __init__(
        self,
        log_dir: Path,
        default_policy: LogPolicy | None = None,
        *,
        interval: float = 5.0,
        logger: FilteringBoundLogger | None = None,
    ) -> None:
        """Initialize the governor.

        Args:
            log_dir: Directory holding every stream's files.
            default_policy: Policy for streams registered without one.
            interval: Seconds between sweeps in ``run()``.
            logger: Logger for rotation records.
        """
        self.log_dir = log_dir
        self._default_policy = default_policy or LogPolicy()
        self._interval = interval
        self._logger = logger or get_null_logger()
        self._streams: dict[str, LogStream] = {}

    @property
    def streams(self) -> dict[str, LogStream]:
        """Return the registered streams keyed by identifier."""
        return self._streams

    def register(self, stream_id: str, policy: LogPolicy | None = None) -> LogStream:
        """Return the stream for ``stream_id``, creating it if needed."""
        stream = self._streams.get(stream_id)
        if stream is None:
            stream = LogStream(
                stream_id,
                self.log_dir / f"{stream_id}.log",
                policy or self._default_policy,
                logger=self._logger,
            )
            self._streams[stream_id] = stream
        return stream

    async def sweep(self) -> list[str]:
        """Check every stream once.

        Returns:
            Identifiers of the streams that were rotated.
        """
        rotated: list[str] = []
        for stream_id, stream in list(self._streams.items()):
            try:
                if await stream.check():
                    rotated.append(stream_id)
            except OSError as e:
                self._logger.error("log_check_failed", stream=stream_id, error=str(e))
        if rotated:
            self._logger.info("log_streams_rotated", streams=rotated)
        return rotated

    async def run(self) -> None:
        """Sweep all streams every ``interval`` seconds until cancelled."""
        while True:
            await anyio.sleep(self._interval)
            _ = await self.sweep()

    async def aclose(self) -> None:
        """Close every stream's file handle."""
        for stream in self._streams.values():
            with contextlib.suppress(OSError):
                await stream.aclose()

"""Process launcher backed by ``anyio.open_process``.

Most services run in the foreground and are supervised as direct children.
A service with a ``pidfile`` is a daemon: its command forks into the
background, and the process named in the pidfile is supervised instead.
"""

from __future__ import annotations

import contextlib
import os
import pwd
import signal
import subprocess
from pathlib import Path
from typing import TYPE_CHECKING, final

import anyio

from zminit.exceptions import ServiceStartError, ServiceStopError

if TYPE_CHECKING:
    import anyio.abc

    from ._models import ServiceSpec

# Exit status reported for a daemon that vanished without zminit seeing
# its real status (it was not zminit's child)
LOST_EXIT_CODE = 255


def _signal_group(name: str, pid: int, signum: signal.Signals) -> None:
    try:
        os.killpg(pid, signum)
    except ProcessLookupError:
        # No such group; the process itself may not lead one
        with contextlib.suppress(ProcessLookupError):
            os.kill(pid, signum)
    except PermissionError as e:
        msg = f"Cannot signal service '{name}': {e}"
        raise ServiceStopError(msg, service_name=name, cause=e) from e


@final
class AnyioProcessHandle:
    """ProcessHandle wrapping an anyio process.

    Each service runs in its own session, so signals are delivered to the
    whole process group: php-fpm and fcgiwrap workers go down with their
    master.
    """

    __slots__ = ("_name", "_process")

    def __init__(self, name: str, process: anyio.abc.Process) -> None:
        self._name = name
        self._process = process

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def returncode(self) -> int | None:
        return self._process.returncode

    @property
    def stdout(self) -> anyio.abc.ByteReceiveStream | None:
        return self._process.stdout

    @property
    def stderr(self) -> anyio.abc.ByteReceiveStream | None:
        return self._process.stderr

    async def wait(self) -> int:
        return await self._process.wait()

    def terminate(self) -> None:
        if self._process.returncode is None:
            _signal_group(self._name, self._process.pid, signal.SIGTERM)

    def kill(self) -> None:
        if self._process.returncode is None:
            _signal_group(self._name, self._process.pid, signal.SIGKILL)


def _is_zombie(pid: int) -> bool:
    try:
        stat = Path(f"/proc/{pid}/stat").read_text()
    except OSError:
        return False
    # The state field follows the parenthesized command name
    return stat.rpartition(")")[2].split()[:1] == ["Z"]


@final
class DaemonProcessHandle:
    """ProcessHandle for a daemon adopted through its pidfile.

    Output comes from the pipes handed to the start command, which the
    daemon usually inherits. When zminit is PID 1 the orphaned daemon is
    its child and its exit status is reaped; otherwise only liveness is
    observable and a vanished daemon reports ``LOST_EXIT_CODE``.
    """

    __slots__ = (
        "_name",
        "_pid",
        "_poll_interval",
        "_returncode",
        "_signalled",
        "_stderr",
        "_stdout",
    )

    def __init__(
        self,
        name: str,
        pid: int,
        *,
        stdout: anyio.abc.ByteReceiveStream | None = None,
        stderr: anyio.abc.ByteReceiveStream | None = None,
        returncode: int | None = None,
        poll_interval: float = 0.5,
    ) -> None:
        """Initialize the handle.

        Args:
            name: Service name, for error messages.
            pid: Daemon process ID, or the start command's if it failed.
            stdout: Output stream inherited from the start command.
            stderr: Error stream inherited from the start command.
            returncode: Exit status if the daemon never came up.
            poll_interval: Seconds between liveness checks.
        """
        self._name = name
        self._pid = pid
        self._stdout = stdout
        self._stderr = stderr
        self._returncode = returncode
        self._poll_interval = poll_interval
        self._signalled: signal.Signals | None = None

    @property
    def pid(self) -> int:
        return self._pid

    @property
    def returncode(self) -> int | None:
        return self._returncode

    @property
    def stdout(self) -> anyio.abc.ByteReceiveStream | None:
        return self._stdout

    @property
    def stderr(self) -> anyio.abc.ByteReceiveStream | None:
        return self._stderr

    def _poll(self) -> int | None:
        try:
            pid, status = os.waitpid(self._pid, os.WNOHANG)
        except ChildProcessError:
            pass
        else:
            return None if pid == 0 else os.waitstatus_to_exitcode(status)

        try:
            os.kill(self._pid, 0)
        except ProcessLookupError:
            pass
        except PermissionError:
            return None
        else:
            if not _is_zombie(self._pid):
                return None
        return -self._signalled if self._signalled is not None else LOST_EXIT_CODE

    async def wait(self) -> int:
        while self._returncode is None:
            self._returncode = self._poll()
            if self._returncode is None:
                await anyio.sleep(self._poll_interval)
        return self._returncode

    def _send(self, signum: signal.Signals) -> None:
        if self._returncode is not None:
            return
        self._signalled = signum
        _signal_group(self._name, self._pid, signum)

    def terminate(self) -> None:
        self._send(signal.SIGTERM)

    def kill(self) -> None:
        self._send(signal.SIGKILL)


async def read_pidfile(path: Path, *, timeout: float, interval: float = 0.1) -> int | None:
    """Wait up to ``timeout`` seconds for ``path`` to hold a process ID."""
    with anyio.move_on_after(timeout):
        while True:
            with contextlib.suppress(OSError, ValueError, IndexError):
                return int(path.read_text().split()[0])
            await anyio.sleep(interval)
    return None


@final
class AnyioProcessLauncher:
    """Launch service executables as real child processes."""

    __slots__ = ("_base_env", "_daemon_timeout")

    def __init__(
        self, base_env: dict[str, str] | None = None, *, daemon_timeout: float = 30.0
    ) -> None:
        """Initialize the launcher.

        Args:
            base_env: Environment every service inherits. Uses
                ``os.environ`` if None.
            daemon_timeout: Seconds a daemon's start command has to exit
                and write its pidfile.
        """
        self._base_env = dict(os.environ) if base_env is None else dict(base_env)
        self._daemon_timeout = daemon_timeout

    @staticmethod
    def _account(spec: ServiceSpec) -> pwd.struct_passwd | None:
        if spec.user is None:
            return None
        try:
            return pwd.getpwnam(spec.user)
        except KeyError as e:
            msg = f"Failed to start service '{spec.name}': unknown user '{spec.user}'"
            raise ServiceStartError(msg, service_name=spec.name, cause=e) from e

    def _environment(
        self, spec: ServiceSpec, account: pwd.struct_passwd | None
    ) -> dict[str, str]:
        env = {**self._base_env, **spec.env}
        if account is not None:
            if "HOME" not in spec.env:
                env["HOME"] = account.pw_dir
            env["USER"] = env["LOGNAME"] = account.pw_name
        return env

    async def launch(self, spec: ServiceSpec) -> AnyioProcessHandle | DaemonProcessHandle:
        """Start the service's executable with captured output.

        A service with a ``user`` runs with that account's uid and primary
        gid. When zminit runs as root the supplementary groups are replaced
        with the account's own.

        Raises:
            ServiceStartError: If the executable is missing, the user is
                unknown, or the process cannot be run.
        """
        account = self._account(spec)
        identity: dict[str, object] = {}
        if account is not None:
            identity = {"user": account.pw_uid, "group": account.pw_gid}
            if os.geteuid() == 0:
                identity["extra_groups"] = os.getgrouplist(account.pw_name, account.pw_gid)

        if spec.pidfile is not None:
            try:
                spec.pidfile.unlink(missing_ok=True)
            except OSError as e:
                msg = f"Failed to clear pidfile of service '{spec.name}': {e}"
                raise ServiceStartError(msg, service_name=spec.name, cause=e) from e

        try:
            process = await anyio.open_process(
                list(spec.command),
                cwd=spec.cwd,
                env=self._environment(spec, account),
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                start_new_session=True,
                **identity,  # pyright: ignore[reportArgumentType]
            )
        except OSError as e:
            msg = f"Failed to start service '{spec.name}': {e}"
            raise ServiceStartError(msg, service_name=spec.name, cause=e) from e

        if spec.pidfile is None:
            return AnyioProcessHandle(spec.name, process)
        return await self._adopt(spec.name, process, spec.pidfile)

    async def _adopt(
        self, name: str, starter: anyio.abc.Process, pidfile: Path
    ) -> DaemonProcessHandle:
        """Wait for a daemon's start command and hand over to the daemon."""
        streams = {"stdout": starter.stdout, "stderr": starter.stderr}
        deadline = anyio.current_time() + self._daemon_timeout

        with anyio.move_on_after(self._daemon_timeout):
            _ = await starter.wait()
        if starter.returncode is None:
            _signal_group(name, starter.pid, signal.SIGKILL)
            returncode = await starter.wait()
            return DaemonProcessHandle(name, starter.pid, returncode=returncode, **streams)
        if starter.returncode != 0:
            return DaemonProcessHandle(name, starter.pid, returncode=starter.returncode, **streams)

        pid = await read_pidfile(pidfile, timeout=max(0.0, deadline - anyio.current_time()))
        if pid is None:
            return DaemonProcessHandle(name, starter.pid, returncode=LOST_EXIT_CODE, **streams)
        return DaemonProcessHandle(name, pid, **streams)

"""Fakes for driving the supervisor without real processes."""

import itertools
import math
from collections import defaultdict
from dataclasses import dataclass

import anyio
import pytest

from zminit.exceptions import ServiceStartError
from zminit.supervisor import RestartSettings, ServiceEvent, ServiceEventType, ServiceSpec


@dataclass(frozen=True, slots=True)
class Script:
    """How one launch of a fake service behaves."""

    exit_code: int = 0
    exit_after: float | None = None
    ignore_term: bool = False
    term_exit_code: int = -15
    output: tuple[bytes, ...] = ()


class FakeProcess:
    """ProcessHandle that exits on a timer or when signalled."""

    def __init__(self, pid: int, script: Script) -> None:
        self.pid = pid
        self.script = script
        self.returncode: int | None = None
        self.signals: list[str] = []
        self.stdout = None
        self.stderr = None
        self._exited = anyio.Event()
        if script.output:
            send, receive = anyio.create_memory_object_stream(math.inf)
            for chunk in script.output:
                send.send_nowait(chunk)
            send.close()
            self.stdout = receive

    def _finish(self, code: int) -> None:
        if self.returncode is None:
            self.returncode = code
            self._exited.set()

    async def wait(self) -> int:
        if self.script.exit_after is not None:
            with anyio.move_on_after(self.script.exit_after):
                await self._exited.wait()
            self._finish(self.script.exit_code)
        else:
            await self._exited.wait()
        assert self.returncode is not None
        return self.returncode

    def terminate(self) -> None:
        self.signals.append("SIGTERM")
        if not self.script.ignore_term:
            self._finish(self.script.term_exit_code)

    def kill(self) -> None:
        self.signals.append("SIGKILL")
        self._finish(-9)


class FakeLauncher:
    """ProcessLauncher replaying scripted launches per service.

    The last script of a service is reused once the earlier ones are spent.
    Services without a script run until they are signalled.
    """

    def __init__(self) -> None:
        self.scripts: dict[str, list[Script]] = defaultdict(list)
        self.missing: set[str] = set()
        self.launches: list[str] = []
        self.processes: dict[str, list[FakeProcess]] = defaultdict(list)
        self._pids = itertools.count(1000)

    def program(
        self,
        name: str,
        *,
        exit_code: int = 0,
        exit_after: float | None = None,
        ignore_term: bool = False,
        term_exit_code: int = -15,
        output: tuple[bytes, ...] = (),
    ) -> "FakeLauncher":
        self.scripts[name].append(Script(exit_code, exit_after, ignore_term, term_exit_code, output))
        return self

    async def launch(self, spec: ServiceSpec) -> FakeProcess:
        if spec.name in self.missing:
            msg = f"Failed to start service '{spec.name}': No such file or directory"
            raise ServiceStartError(msg, service_name=spec.name)

        queue = self.scripts.get(spec.name)
        if not queue:
            script = Script()
        else:
            script = queue.pop(0) if len(queue) > 1 else queue[0]
        process = FakeProcess(next(self._pids), script)
        self.launches.append(spec.name)
        self.processes[spec.name].append(process)
        return process


class RecordingSink:
    """OutputSink that keeps everything it receives."""

    def __init__(self) -> None:
        self.lines: list[tuple[str, str, str]] = []
        self.events: list[ServiceEvent] = []

    async def write_line(self, service_name: str, pid: int, stream: str, line: str) -> None:
        self.lines.append((service_name, stream, line))

    async def write_event(self, service_name: str, event: ServiceEvent) -> None:
        self.events.append(event)

    def event_types(self, service_name: str) -> list[ServiceEventType]:
        return [e.event_type for e in self.events if e.service_name == service_name]


class FakeProbe:
    """Readiness probe answering for the ports listed in ``up``."""

    def __init__(self, *up: int) -> None:
        self.up: set[int] = set(up)
        self.calls: list[tuple[int, float]] = []

    async def __call__(self, host: str, port: int, *, timeout: float) -> bool:
        self.calls.append((port, anyio.current_time()))
        return port in self.up


@pytest.fixture
def launcher() -> FakeLauncher:
    return FakeLauncher()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def probe() -> FakeProbe:
    return FakeProbe()


@pytest.fixture
def fast_restart() -> RestartSettings:
    """Restart tuning with short, jitter-free delays."""
    return RestartSettings(
        max_restarts=3,
        backoff_base=0.01,
        backoff_max=0.02,
        jitter=0.0,
        min_uptime=10.0,
    )

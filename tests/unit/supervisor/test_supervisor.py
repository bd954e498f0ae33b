"""Unit tests for the multi-service supervisor."""

from __future__ import annotations

from typing import TYPE_CHECKING

import anyio
import pytest

from zminit.exceptions import ServiceNotFoundError
from zminit.supervisor import (
    LogGovernor,
    ReadinessCheck,
    ReadinessKind,
    RestartPolicy,
    RestartSettings,
    ServiceEventType,
    ServiceSpec,
    ServiceState,
    StopOutcome,
    Supervisor,
)

if TYPE_CHECKING:
    from pathlib import Path

    from tests.unit.supervisor.conftest import FakeLauncher, FakeProbe, RecordingSink


def _chain() -> list[ServiceSpec]:
    return [
        ServiceSpec("a", ("a",)),
        ServiceSpec("b", ("b",), depends_on=("a",)),
        ServiceSpec("c", ("c",), depends_on=("b",)),
    ]


def _supervisor(
    specs: list[ServiceSpec],
    launcher: FakeLauncher,
    sink: RecordingSink,
    **kwargs: object,
) -> Supervisor:
    return Supervisor(
        specs,
        launcher=launcher,
        output_sink=sink,
        handle_signals=False,
        **kwargs,  # pyright: ignore[reportArgumentType]
    )


@pytest.mark.anyio
class TestStartupOrdering:
    async def test_dependents_start_after_dependencies_run(
        self, launcher: FakeLauncher, sink: RecordingSink
    ) -> None:
        supervisor = _supervisor(_chain(), launcher, sink)

        async with anyio.create_task_group() as tg:
            tg.start_soon(supervisor.run)
            with anyio.fail_after(5):
                _ = await supervisor.get_service("c").wait_until(ServiceState.RUNNING)
            await supervisor.shutdown()

        a, b, c = (supervisor.get_service(n).status for n in "abc")
        assert (a_running := a.first_seq(ServiceState.RUNNING)) is not None
        assert (b_starting := b.first_seq(ServiceState.STARTING)) is not None
        assert (b_running := b.first_seq(ServiceState.RUNNING)) is not None
        assert (c_starting := c.first_seq(ServiceState.STARTING)) is not None
        assert a_running < b_starting
        assert b_running < c_starting
        assert launcher.launches == ["a", "b", "c"]

    async def test_dependent_waits_for_port_readiness(
        self, launcher: FakeLauncher, sink: RecordingSink, probe: FakeProbe
    ) -> None:
        specs = [
            ServiceSpec(
                "php-fpm",
                ("php-fpm",),
                readiness=ReadinessCheck(
                    kind=ReadinessKind.PORT, port=9000, timeout=5.0, interval=0.02
                ),
            ),
            ServiceSpec("nginx", ("nginx",), depends_on=("php-fpm",)),
        ]
        supervisor = _supervisor(specs, launcher, sink, probe=probe)

        async with anyio.create_task_group() as tg:
            tg.start_soon(supervisor.run)
            with anyio.fail_after(5):
                _ = await supervisor.get_service("php-fpm").wait_until(ServiceState.STARTING)
            await anyio.sleep(0.1)

            assert supervisor.get_service("nginx").state == ServiceState.WAITING
            assert launcher.launches == ["php-fpm"]

            probe.up.add(9000)
            with anyio.fail_after(5):
                _ = await supervisor.get_service("nginx").wait_until(ServiceState.RUNNING)
            await supervisor.shutdown()

        php = supervisor.get_service("php-fpm").status
        nginx = supervisor.get_service("nginx").status
        assert php.first_seq(ServiceState.RUNNING) < nginx.first_seq(ServiceState.STARTING)  # type: ignore[operator]

    async def test_transitions_are_totally_ordered(
        self, launcher: FakeLauncher, sink: RecordingSink
    ) -> None:
        supervisor = _supervisor(_chain(), launcher, sink)

        async with anyio.create_task_group() as tg:
            tg.start_soon(supervisor.run)
            with anyio.fail_after(5):
                _ = await supervisor.get_service("c").wait_until(ServiceState.RUNNING)
            await supervisor.shutdown()

        seqs = [t.seq for _, t in supervisor.transitions()]
        assert seqs == list(range(1, len(seqs) + 1))


@pytest.mark.anyio
class TestRestartPolicy:
    async def test_on_failure_ceiling_allows_exactly_n_restarts(
        self, launcher: FakeLauncher, sink: RecordingSink, fast_restart: RestartSettings
    ) -> None:
        launcher.program("zmc", exit_code=1, exit_after=0.01)
        supervisor = _supervisor([ServiceSpec("zmc", ("zmc",))], launcher, sink, restart=fast_restart)

        with anyio.fail_after(5):
            _ = await supervisor.run()

        status = supervisor.get_service("zmc").status
        assert launcher.launches.count("zmc") == fast_restart.max_restarts + 1
        assert status.restart_count == fast_restart.max_restarts
        assert status.consecutive_failures == fast_restart.max_restarts + 1
        assert status.state == ServiceState.STOPPED
        assert status.terminal_reason is not None
        assert "gave up" in status.terminal_reason
        assert ServiceEventType.GAVE_UP in sink.event_types("zmc")

    async def test_zero_ceiling_never_restarts(
        self, launcher: FakeLauncher, sink: RecordingSink
    ) -> None:
        launcher.program("zmc", exit_code=1, exit_after=0.01)
        restart = RestartSettings(max_restarts=0, backoff_base=0.01, jitter=0.0)
        supervisor = _supervisor([ServiceSpec("zmc", ("zmc",))], launcher, sink, restart=restart)

        with anyio.fail_after(5):
            _ = await supervisor.run()

        assert launcher.launches == ["zmc"]

    async def test_clean_exit_is_not_restarted(
        self, launcher: FakeLauncher, sink: RecordingSink, fast_restart: RestartSettings
    ) -> None:
        launcher.program("always", exit_code=0, exit_after=0.01)
        launcher.program("on-failure", exit_code=0, exit_after=0.01)
        specs = [
            ServiceSpec("always", ("x",), restart=RestartPolicy.ALWAYS),
            ServiceSpec("on-failure", ("y",), restart=RestartPolicy.ON_FAILURE),
        ]
        supervisor = _supervisor(specs, launcher, sink, restart=fast_restart)

        with anyio.fail_after(5):
            report = await supervisor.run()

        assert sorted(launcher.launches) == ["always", "on-failure"]
        assert report.outcomes == {}

    async def test_always_ignores_ceiling(
        self, launcher: FakeLauncher, sink: RecordingSink, fast_restart: RestartSettings
    ) -> None:
        launcher.program("nginx", exit_code=1, exit_after=0.01)
        spec = ServiceSpec("nginx", ("nginx",), restart=RestartPolicy.ALWAYS)
        supervisor = _supervisor([spec], launcher, sink, restart=fast_restart)
        service = supervisor.get_service("nginx")

        async with anyio.create_task_group() as tg:
            tg.start_soon(supervisor.run)
            with anyio.fail_after(5):
                while service.status.restart_count <= fast_restart.max_restarts + 1:
                    await anyio.sleep(0.01)
            await supervisor.shutdown()

        assert service.status.restart_count > fast_restart.max_restarts
        assert service.state == ServiceState.STOPPED

    async def test_sustained_run_resets_failure_count(
        self, launcher: FakeLauncher, sink: RecordingSink
    ) -> None:
        launcher.program("zmc", exit_code=1, exit_after=0.08)
        restart = RestartSettings(
            max_restarts=1, backoff_base=0.01, backoff_max=0.01, jitter=0.0, min_uptime=0.02
        )
        supervisor = _supervisor([ServiceSpec("zmc", ("zmc",))], launcher, sink, restart=restart)
        service = supervisor.get_service("zmc")

        async with anyio.create_task_group() as tg:
            tg.start_soon(supervisor.run)
            with anyio.fail_after(5):
                while service.status.restart_count < 3:
                    await anyio.sleep(0.01)
            await supervisor.shutdown()

        assert service.status.restart_count >= 3
        assert "gave up" not in (service.status.terminal_reason or "")


@pytest.mark.anyio
class TestBlockedServices:
    async def test_terminal_dependency_reports_start_order_error(
        self, launcher: FakeLauncher, sink: RecordingSink
    ) -> None:
        launcher.missing.add("a")
        supervisor = _supervisor(_chain()[:2], launcher, sink)
        b = supervisor.get_service("b")

        async with anyio.create_task_group() as tg:
            tg.start_soon(supervisor.run)
            with anyio.fail_after(5):
                while ServiceEventType.START_ORDER_ERROR not in sink.event_types("b"):
                    await anyio.sleep(0.01)

            assert b.state == ServiceState.WAITING
            assert b.blocked_reason is not None
            assert "'a'" in b.blocked_reason
            await supervisor.shutdown()

        assert launcher.launches == []
        assert b.state == ServiceState.STOPPED
        assert b.status.first_seq(ServiceState.STARTING) is None

    async def test_unavailable_dependency_does_not_block_others(
        self, launcher: FakeLauncher, sink: RecordingSink, probe: FakeProbe
    ) -> None:
        specs = [
            ServiceSpec(
                "zoneminder",
                ("zmpkg.pl", "start"),
                readiness=ReadinessCheck(
                    kind=ReadinessKind.DEPENDENCY, host="db", port=3306, timeout=0.1, interval=0.02
                ),
            ),
            ServiceSpec("nginx", ("nginx",)),
        ]
        supervisor = _supervisor(specs, launcher, sink, probe=probe)
        zoneminder = supervisor.get_service("zoneminder")

        async with anyio.create_task_group() as tg:
            tg.start_soon(supervisor.run)
            with anyio.fail_after(5):
                _ = await supervisor.get_service("nginx").wait_until(ServiceState.RUNNING)
                while ServiceEventType.DEPENDENCY_UNAVAILABLE not in sink.event_types("zoneminder"):
                    await anyio.sleep(0.01)

            assert zoneminder.state == ServiceState.WAITING
            assert zoneminder.blocked_reason is not None
            assert "db:3306" in zoneminder.blocked_reason
            await supervisor.shutdown()

        assert launcher.launches == ["nginx"]
        assert {port for port, _ in probe.calls} == {3306}


@pytest.mark.anyio
class TestShutdown:
    async def test_stops_in_reverse_dependency_order(
        self, launcher: FakeLauncher, sink: RecordingSink
    ) -> None:
        supervisor = _supervisor(_chain(), launcher, sink)

        async with anyio.create_task_group() as tg:
            tg.start_soon(supervisor.run)
            with anyio.fail_after(5):
                _ = await supervisor.get_service("c").wait_until(ServiceState.RUNNING)
            await supervisor.shutdown()

        report = supervisor.report
        assert report is not None
        assert list(report.outcomes) == ["c", "b", "a"]
        assert set(report.outcomes.values()) == {StopOutcome.GRACEFUL}
        assert report.ok

        a, b, c = (supervisor.get_service(n).status for n in "abc")
        assert c.last_seq(ServiceState.STOPPED) < b.first_seq(ServiceState.STOPPING)  # type: ignore[operator]
        assert b.last_seq(ServiceState.STOPPED) < a.first_seq(ServiceState.STOPPING)  # type: ignore[operator]

    async def test_no_restarts_during_shutdown(
        self, launcher: FakeLauncher, sink: RecordingSink, fast_restart: RestartSettings
    ) -> None:
        supervisor = _supervisor(_chain(), launcher, sink, restart=fast_restart)

        async with anyio.create_task_group() as tg:
            tg.start_soon(supervisor.run)
            with anyio.fail_after(5):
                _ = await supervisor.get_service("c").wait_until(ServiceState.RUNNING)
            await supervisor.shutdown()

        assert launcher.launches == ["a", "b", "c"]
        for name in "abc":
            assert supervisor.get_service(name).state == ServiceState.STOPPED

    async def test_stubborn_service_is_killed(
        self, launcher: FakeLauncher, sink: RecordingSink
    ) -> None:
        launcher.program("zmc", ignore_term=True)
        supervisor = _supervisor(
            [ServiceSpec("zmc", ("zmc",)), ServiceSpec("nginx", ("nginx",))],
            launcher,
            sink,
            grace_period=0.05,
        )

        async with anyio.create_task_group() as tg:
            tg.start_soon(supervisor.run)
            with anyio.fail_after(5):
                _ = await supervisor.get_service("zmc").wait_until(ServiceState.RUNNING)
                _ = await supervisor.get_service("nginx").wait_until(ServiceState.RUNNING)
            await supervisor.shutdown()

        report = supervisor.report
        assert report is not None
        assert report.outcomes["zmc"] == StopOutcome.FORCED
        assert report.outcomes["nginx"] == StopOutcome.GRACEFUL
        assert report.forced == ["zmc"]
        assert launcher.processes["zmc"][0].signals == ["SIGTERM", "SIGKILL"]

    async def test_escalation_kills_without_waiting_for_grace(
        self, launcher: FakeLauncher, sink: RecordingSink
    ) -> None:
        launcher.program("zmc", ignore_term=True)
        supervisor = _supervisor([ServiceSpec("zmc", ("zmc",))], launcher, sink, grace_period=30.0)

        with anyio.fail_after(5):
            async with anyio.create_task_group() as tg:
                tg.start_soon(supervisor.run)
                _ = await supervisor.get_service("zmc").wait_until(ServiceState.RUNNING)
                await supervisor.shutdown()
                _ = await supervisor.get_service("zmc").wait_until(ServiceState.STOPPING)
                assert supervisor.escalate() == ["zmc"]

        assert launcher.processes["zmc"][0].signals == ["SIGTERM", "SIGKILL"]
        assert supervisor.get_service("zmc").state == ServiceState.STOPPED

    async def test_services_are_retired_when_run_returns(
        self, launcher: FakeLauncher, sink: RecordingSink, probe: FakeProbe
    ) -> None:
        spec = ServiceSpec(
            "zoneminder",
            ("zmpkg.pl",),
            readiness=ReadinessCheck(kind=ReadinessKind.DEPENDENCY, port=3306, interval=0.02),
        )
        supervisor = _supervisor([spec], launcher, sink, probe=probe)

        async with anyio.create_task_group() as tg:
            tg.start_soon(supervisor.run)
            with anyio.fail_after(5):
                _ = await supervisor.get_service("zoneminder").wait_until(ServiceState.WAITING)
            await supervisor.shutdown()

        status = supervisor.get_service("zoneminder").status
        assert status.state == ServiceState.STOPPED
        assert status.pid is None


@pytest.mark.anyio
class TestSupervisorQueries:
    async def test_get_service_unknown_raises(
        self, launcher: FakeLauncher, sink: RecordingSink
    ) -> None:
        supervisor = _supervisor(_chain(), launcher, sink)

        with pytest.raises(ServiceNotFoundError):
            _ = supervisor.get_service("nope")

    async def test_get_status_reports_every_service(
        self, launcher: FakeLauncher, sink: RecordingSink
    ) -> None:
        supervisor = _supervisor(_chain(), launcher, sink)

        status = supervisor.get_status()

        assert list(status) == ["a", "b", "c"]
        assert status["a"]["state"] == "pending"

    async def test_output_reaches_governed_log(
        self, launcher: FakeLauncher, sink: RecordingSink, tmp_path: Path
    ) -> None:
        launcher.program("nginx", exit_code=0, exit_after=0.05, output=(b"GET /zm 200\n",))
        governor = LogGovernor(tmp_path)
        supervisor = _supervisor(
            [ServiceSpec("nginx", ("nginx",), log_stream="web")], launcher, sink, governor=governor
        )

        with anyio.fail_after(5):
            _ = await supervisor.run()

        assert (tmp_path / "web.log").read_text() == "GET /zm 200\n"

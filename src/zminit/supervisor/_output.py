"""Console output for the container log.

Service output is interleaved on the container's stdout, each line
prefixed with its service name padded to a common width and tinted with a
per-service color. Lifecycle events are printed with a timestamp and a
style chosen by event type.
"""

from __future__ import annotations

from itertools import cycle
from typing import TYPE_CHECKING, Literal, final

from rich.console import Console
from rich.style import Style
from rich.text import Text

from ._models import ServiceEventType

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator

    from ._models import ServiceEvent

SERVICE_COLORS = ("cyan", "green", "yellow", "magenta", "blue", "bright_cyan", "bright_green")

_FAILURE = Style(color="red", bold=True)
EVENT_STYLES: dict[ServiceEventType, Style] = {
    ServiceEventType.WAITING: Style(color="cyan", dim=True),
    ServiceEventType.STARTED: Style(color="green"),
    ServiceEventType.RUNNING: Style(color="green", bold=True),
    ServiceEventType.STOPPED: Style(color="yellow"),
    ServiceEventType.CRASHED: _FAILURE,
    ServiceEventType.RESTARTING: Style(color="cyan"),
    ServiceEventType.START_FAILED: _FAILURE,
    ServiceEventType.DEPENDENCY_UNAVAILABLE: Style(color="red"),
    ServiceEventType.START_ORDER_ERROR: _FAILURE,
    ServiceEventType.FORCED_STOP: Style(color="magenta"),
    ServiceEventType.GAVE_UP: _FAILURE,
}


@final
class ConsoleOutputSink:
    """Output sink printing ``name | line`` records to a rich console.

    Names seen up front (or later, on first use) each get the next color in
    ``SERVICE_COLORS``; the prefix width grows to fit the longest name.
    """

    __slots__ = ("_colors", "_console", "_echo_output", "_palette", "_width")

    def __init__(
        self,
        console: Console | None = None,
        *,
        echo_output: bool = True,
        services: Iterable[str] = (),
    ) -> None:
        """Initialize the output sink.

        Args:
            console: Console to print to. Uses a stdout console if None.
            echo_output: Whether service output lines are printed. Lifecycle
                events are always printed.
            services: Service names known in advance, used for alignment.
        """
        self._console = console or Console()
        self._echo_output = echo_output
        self._palette: Iterator[str] = cycle(SERVICE_COLORS)
        self._colors: dict[str, str] = {}
        self._width = 0
        for name in services:
            _ = self._prefix(name)

    def _prefix(self, service_name: str) -> Text:
        if service_name not in self._colors:
            self._colors[service_name] = next(self._palette)
            self._width = max(self._width, len(service_name))
        return Text(
            f"{service_name:<{self._width}} |",
            style=Style(color=self._colors[service_name], bold=True),
        )

    async def write_line(
        self,
        service_name: str,
        pid: int,
        stream: Literal["stdout", "stderr"],
        line: str,
    ) -> None:
        if not self._echo_output:
            return

        text = self._prefix(service_name)
        _ = text.append(" ")
        _ = text.append(line, style=Style(color="red", dim=True) if stream == "stderr" else "")
        self._console.print(text, soft_wrap=True)

    async def write_event(self, service_name: str, event: ServiceEvent) -> None:
        style = EVENT_STYLES.get(event.event_type, Style())

        text = Text(event.timestamp, style=Style(dim=True))
        _ = text.append(" ")
        _ = text.append_text(self._prefix(service_name))
        _ = text.append(" ")
        _ = text.append(event.event_type.value.upper(), style=style)
        if event.pid is not None:
            _ = text.append(f" pid={event.pid}", style=Style(dim=True))
        if event.exit_code is not None:
            _ = text.append(f" exit_code={event.exit_code}", style=Style(dim=True))
        if event.message:
            _ = text.append(f" {event.message}", style=style)
        self._console.print(text, soft_wrap=True)


@final
class NullOutputSink:
    """Output sink that discards everything."""

    __slots__ = ()

    async def write_line(
        self,
        service_name: str,
        pid: int,
        stream: Literal["stdout", "stderr"],
        line: str,
    ) -> None:
        return

    async def write_event(self, service_name: str, event: ServiceEvent) -> None:
        return

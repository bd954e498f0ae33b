"""Dependency waiter: block until an upstream endpoint accepts connections.

Probes happen on a fixed schedule (``k * interval`` after the call) rather
than back to back, so the number of attempts within a timeout is
predictable: a 30 second timeout with a 5 second interval makes exactly six
attempts (at 0, 5, ... 25 seconds) and gives up at 30 seconds.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Protocol

import anyio

from zminit.exceptions import DependencyUnavailableError
from zminit.utils import get_null_logger

if TYPE_CHECKING:
    from structlog.typing import FilteringBoundLogger


class Probe(Protocol):
    """A single connection attempt returning whether it succeeded."""

    def __call__(self, host: str, port: int, *, timeout: float) -> Awaitable[bool]: ...


async def probe_tcp(host: str, port: int, *, timeout: float) -> bool:
    """Attempt one TCP connection.

    Args:
        host: Target host.
        port: Target port.
        timeout: Seconds the attempt may take.

    Returns:
        True if the connection was accepted, False otherwise.
    """
    with anyio.move_on_after(timeout):
        try:
            stream = await anyio.connect_tcp(host, port)
        except OSError:
            return False
        await stream.aclose()
        return True
    return False


async def wait_for_endpoint(
    host: str,
    port: int,
    *,
    timeout: float = 0.0,
    interval: float = 5.0,
    probe: Probe | Callable[..., Awaitable[bool]] = probe_tcp,
    logger: FilteringBoundLogger | None = None,
) -> int:
    """Wait until ``host:port`` accepts a connection.

    Args:
        host: Target host.
        port: Target port.
        timeout: Maximum seconds to wait. Zero waits indefinitely.
        interval: Seconds between attempt start times; also bounds each attempt.
        probe: Connection attempt function, replaceable for tests.
        logger: Logger for attempt records.

    Returns:
        The number of attempts made, including the successful one.

    Raises:
        DependencyUnavailableError: If no attempt succeeded before ``timeout``.
        ValueError: If ``interval`` is not positive or ``timeout`` is negative.
    """
    if interval <= 0:
        msg = f"interval must be positive, got {interval}"
        raise ValueError(msg)
    if timeout < 0:
        msg = f"timeout must not be negative, got {timeout}"
        raise ValueError(msg)

    log = logger or get_null_logger()
    start = anyio.current_time()
    attempt = 0

    while True:
        scheduled = attempt * interval
        if timeout > 0 and scheduled >= timeout:
            break

        delay = start + scheduled - anyio.current_time()
        if delay > 0:
            await anyio.sleep(delay)

        attempt += 1
        budget = interval
        if timeout > 0:
            budget = max(0.0, min(interval, start + timeout - anyio.current_time()))

        if await probe(host, port, timeout=budget):
            log.info(
                "dependency_available",
                host=host,
                port=port,
                attempts=attempt,
                elapsed=round(anyio.current_time() - start, 3),
            )
            return attempt

        log.debug("dependency_probe_failed", host=host, port=port, attempt=attempt)

    remaining = start + timeout - anyio.current_time()
    if remaining > 0:
        await anyio.sleep(remaining)

    elapsed = anyio.current_time() - start
    msg = (
        f"{host}:{port} did not accept a connection within {timeout:g}s "
        f"({attempt} attempts)"
    )
    raise DependencyUnavailableError(
        msg, host=host, port=port, attempts=attempt, elapsed=elapsed
    )

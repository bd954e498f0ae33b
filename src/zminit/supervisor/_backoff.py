"""Restart delays for crashed services.

The first restart after a crash waits ``base`` seconds, each further
consecutive failure doubles the wait, and no wait exceeds ``max_delay``.
A jitter fraction spreads restarts of services that crashed together.
"""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ._models import RestartSettings

# 2**64 seconds is already far beyond any sane cap
_MAX_EXPONENT = 64


@dataclass(frozen=True, slots=True)
class RestartBackoff:
    """Delay schedule keyed by the number of consecutive failures.

    Attributes:
        base: Delay after the first failure, in seconds.
        max_delay: Upper bound on every delay, in seconds.
        jitter: Fraction of the delay to randomize (0 disables jitter).
        rng: Random source for jitter.
    """

    base: float = 1.0
    max_delay: float = 60.0
    jitter: float = 0.1
    rng: random.Random = field(default_factory=random.Random, compare=False, repr=False)

    def __post_init__(self) -> None:
        if self.base <= 0 or self.max_delay <= 0:
            msg = f"backoff delays must be positive, got base={self.base} max={self.max_delay}"
            raise ValueError(msg)
        if not 0.0 <= self.jitter <= 1.0:
            msg = f"jitter must be between 0 and 1, got {self.jitter}"
            raise ValueError(msg)

    @classmethod
    def from_settings(cls, settings: RestartSettings) -> RestartBackoff:
        """Build the schedule described by supervisor restart settings."""
        return cls(
            base=settings.backoff_base,
            max_delay=settings.backoff_max,
            jitter=settings.jitter,
        )

    def nominal(self, failures: int) -> float:
        """Return the delay before jitter for ``failures`` consecutive failures."""
        exponent = min(max(failures, 1) - 1, _MAX_EXPONENT)
        return min(self.base * 2**exponent, self.max_delay)

    def delay(self, failures: int) -> float:
        """Return the wait before restarting after ``failures`` consecutive failures.

        Args:
            failures: Consecutive failures so far, counting the latest (>= 1).

        Returns:
            Seconds to wait, never negative and never above ``max_delay``.
        """
        nominal = self.nominal(failures)
        if self.jitter == 0:
            return nominal
        spread = nominal * self.jitter / 2
        return min(self.max_delay, max(0.0, nominal + self.rng.uniform(-spread, spread)))

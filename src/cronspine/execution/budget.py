"""Cooperative time budget for one cron invocation.

WHY
───
The host kills an invocation at a hard limit (60s). Nothing can preempt a
step mid-flight, so the executor keeps its own, smaller budget (50s) and
checks it at safe points: before starting an item, between steps, and
between the sub-units of a long step. Whatever is in flight when the
budget runs out keeps its checkpoints; the next invocation resumes it.

ARCHITECTURE
────────────
::

    TimeBudget(seconds=50, clock=time.monotonic)
      ├── elapsed()     seconds since start
      ├── remaining()   seconds left (negative once expired)
      ├── exhausted()   remaining() <= 0
      └── check()       raises BudgetExhausted when exhausted

``BudgetExhausted`` is an interruption signal, not a failure.
"""

from __future__ import annotations

import time
from collections.abc import Callable

from cronspine.core.errors import BudgetExhausted


class TimeBudget:
    """Wall-clock budget measured on a monotonic clock.

    Args:
        seconds: Budget length.
        clock: Monotonic clock returning seconds (injectable for tests).
    """

    def __init__(self, seconds: float, clock: Callable[[], float] = time.monotonic) -> None:
        self.seconds = seconds
        self._clock = clock
        self._start = clock()

    def elapsed(self) -> float:
        return self._clock() - self._start

    def remaining(self) -> float:
        return self.seconds - self.elapsed()

    def exhausted(self) -> bool:
        return self.remaining() <= 0

    def check(self) -> None:
        """Raise :class:`BudgetExhausted` if no time is left."""
        remaining = self.remaining()
        if remaining <= 0:
            raise BudgetExhausted(remaining)

    def elapsed_ms(self) -> int:
        return int(self.elapsed() * 1000)

    def __repr__(self) -> str:
        return f"TimeBudget(seconds={self.seconds}, remaining={self.remaining():.3f})"


__all__ = ["TimeBudget"]

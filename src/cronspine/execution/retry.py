"""Bounded exponential backoff for calls to flaky collaborators.

Step functions wrap their provider calls (LLM, market data) in these
helpers. Only transient errors are retried; anything else propagates on
the first raise. When retries run out the last error is re-raised and the
executor decides what happens to the item.

Example:
    >>> from cronspine.execution.retry import ExponentialBackoff, RetryContext
    >>>
    >>> ctx = RetryContext(ExponentialBackoff(max_retries=3, base_delay=2.0))
    >>> answer = ctx.run(provider.complete, prompt)
"""

from __future__ import annotations

import functools
import random
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, TypeVar

from cronspine.core.errors import get_retry_after, is_retryable
from cronspine.core.logging import get_logger

if TYPE_CHECKING:
    from cronspine.execution.budget import TimeBudget

T = TypeVar("T")

logger = get_logger(__name__)


class RetryStrategy(ABC):
    """Decides whether a failed call is tried again, and after how long."""

    @abstractmethod
    def next_delay(self, attempt: int, error: BaseException | None = None) -> float:
        """Delay in seconds before retry number ``attempt`` (0-based)."""
        ...

    @abstractmethod
    def should_retry(self, attempt: int, error: BaseException | None = None) -> bool:
        """Whether another attempt is allowed after ``attempt`` failures."""
        ...


@dataclass
class ExponentialBackoff(RetryStrategy):
    """Delays of ``base_delay * multiplier ** n`` seconds, capped at ``max_delay``.

    A ``retry_after`` hint on the error (rate limits) replaces the computed
    delay, still capped. ``max_retries=2`` means three calls in total.
    ``jitter`` spreads each delay by ``± jitter_range`` of itself so
    concurrent slots do not hit a recovering provider in lockstep.
    """

    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    multiplier: float = 2.0
    jitter: bool = True
    jitter_range: float = 0.25

    def next_delay(self, attempt: int, error: BaseException | None = None) -> float:
        hinted = get_retry_after(error) if error is not None else None
        if hinted is not None:
            return float(min(hinted, self.max_delay))

        delay = min(self.base_delay * (self.multiplier ** attempt), self.max_delay)
        if self.jitter:
            jitter_amount = delay * self.jitter_range
            delay = max(0.0, delay + random.uniform(-jitter_amount, jitter_amount))
        return delay

    def should_retry(self, attempt: int, error: BaseException | None = None) -> bool:
        if attempt > self.max_retries:
            return False
        return error is None or is_retryable(error)


@dataclass
class NoRetry(RetryStrategy):
    """Single call; the first error propagates."""

    def next_delay(self, attempt: int, error: BaseException | None = None) -> float:
        return 0.0

    def should_retry(self, attempt: int, error: BaseException | None = None) -> bool:
        return False


@dataclass
class RetryContext:
    """Runs a callable under a retry strategy and records each failure.

    Attributes:
        strategy: Backoff policy.
        budget: Optional time budget; a retry whose delay would not fit in
            the remaining budget is not attempted.
        sleep: Sleep function (injectable for tests).
        on_retry: Callback ``(attempt, error, delay)`` before each sleep.
    """

    strategy: RetryStrategy
    budget: TimeBudget | None = None
    sleep: Callable[[float], None] = time.sleep
    on_retry: Callable[[int, BaseException, float], None] | None = None
    attempt: int = field(default=0, init=False)
    errors: list[BaseException] = field(default_factory=list, init=False)

    @property
    def last_error(self) -> BaseException | None:
        return self.errors[-1] if self.errors else None

    def run(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Call ``func`` until it succeeds or retries are exhausted.

        Raises:
            The last exception once no further retry is allowed.
        """
        while True:
            self.attempt += 1
            try:
                return func(*args, **kwargs)
            except Exception as e:
                self.errors.append(e)
                if not self.strategy.should_retry(self.attempt, e):
                    raise

                delay = self.strategy.next_delay(self.attempt - 1, e)
                if self.budget is not None and self.budget.remaining() <= delay:
                    logger.warning(
                        "retry.skipped_no_budget",
                        attempt=self.attempt,
                        delay=round(delay, 3),
                        error=str(e),
                    )
                    raise

                logger.info(
                    "retry.scheduled",
                    attempt=self.attempt,
                    delay=round(delay, 3),
                    error_type=type(e).__name__,
                )
                if self.on_retry:
                    self.on_retry(self.attempt, e, delay)
                self.sleep(delay)


def with_retry(
    strategy: RetryStrategy | None = None,
    on_retry: Callable[[int, BaseException, float], None] | None = None,
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """Retry every call of the decorated function under *strategy*.

    Example:
        >>> @with_retry(ExponentialBackoff(max_retries=3))
        ... def fetch_quotes(symbol):
        ...     return market_data.quotes(symbol)
    """
    if strategy is None:
        strategy = ExponentialBackoff()

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> T:
            ctx = RetryContext(strategy=strategy, on_retry=on_retry)
            return ctx.run(func, *args, **kwargs)

        return wrapper

    return decorator


__all__ = [
    "RetryStrategy",
    "ExponentialBackoff",
    "NoRetry",
    "RetryContext",
    "with_retry",
]

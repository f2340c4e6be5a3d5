"""Helpers shared by the shipped jobs."""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from cronspine.core.errors import MalformedResponseError
from cronspine.execution.pipeline import StepContext
from cronspine.execution.retry import ExponentialBackoff, RetryContext, RetryStrategy

T = TypeVar("T")
M = TypeVar("M", bound=BaseModel)


def default_retry() -> RetryStrategy:
    """Backoff used for provider calls inside step handlers."""
    return ExponentialBackoff(max_retries=3, base_delay=2.0, max_delay=20.0)


class ProviderCaller:
    """Calls a collaborator under a retry strategy bounded by the step's budget.

    Args:
        strategy: Backoff policy; defaults to :func:`default_retry`.
        sleep: Sleep function (injectable for tests).
    """

    def __init__(
        self,
        strategy: RetryStrategy | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.strategy = strategy or default_retry()
        self._sleep = sleep

    def __call__(self, ctx: StepContext, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        retry = RetryContext(self.strategy, budget=ctx.budget, sleep=self._sleep)
        return retry.run(func, *args, **kwargs)

    def decode(
        self,
        ctx: StepContext,
        model: type[M],
        func: Callable[..., Any],
        *args: Any,
        **kwargs: Any,
    ) -> M:
        """Call ``func`` and validate its payload into ``model``.

        A payload that does not validate counts as a failed call and is
        retried like any other transient provider error.
        """

        def attempt() -> M:
            raw = func(*args, **kwargs)
            try:
                return model.model_validate(raw)
            except ValidationError as e:
                raise MalformedResponseError(
                    f"{model.__name__} payload rejected: {e.error_count()} error(s)",
                    cause=e,
                ) from e

        return self(ctx, attempt)


__all__ = ["ProviderCaller", "default_retry"]

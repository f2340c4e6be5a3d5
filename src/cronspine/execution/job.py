"""Job definition — everything the executor needs to know about one job type."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import date
from typing import Any

from cronspine.core.models import FinalizeResult, WorkItem
from cronspine.core.work_items import WorkItemRepository
from cronspine.execution.pipeline import StepDefinition

FinalizeFn = Callable[[dict[str, Any], WorkItem], "FinalizeResult | str | None"]


@dataclass(frozen=True)
class JobDefinition:
    """A registered batch job.

    Attributes:
        name: Route name of the job (``"update-indices"``).
        steps: Ordered pipeline steps.
        finalize: ``(outputs, item) -> FinalizeResult | result_id | None``;
            the only place allowed to have side effects.
        variant: Optional variant (``"mark-to-market"``); variants of one
            job keep separate progress and work items.
        counter: Name of the job-specific counter in the response.
        daily: Bound to a business calendar: a batch completed today means
            nothing to do until tomorrow.
        parallel: Run items through the worker pool instead of sequentially.
        batch_size: Per-job override of the selection limit.
        seed: ``(today, items) -> int`` enqueuing the day's targets when a fresh
            batch starts; returns how many items it created.
        is_business_day: ``(today) -> bool``; daily jobs skip the run when
            it returns False.
        on_batch_complete: Called once when an invocation leaves no pending
            work behind after processing at least one item (cache
            invalidation, summary notifications).
        description: One line for ``cronspine jobs``.
    """

    name: str
    steps: tuple[StepDefinition, ...]
    finalize: FinalizeFn
    variant: str | None = None
    counter: str = "completed"
    daily: bool = False
    parallel: bool = False
    batch_size: int | None = None
    seed: Callable[[date, WorkItemRepository], int] | None = None
    is_business_day: Callable[[date], bool] | None = None
    description: str = ""
    on_batch_complete: Callable[[], None] | None = None

    @property
    def job_type(self) -> str:
        """Key used for work items, checkpoints and the lease."""
        if self.variant:
            return f"{self.name}:{self.variant}"
        return self.name


__all__ = ["JobDefinition", "FinalizeFn"]

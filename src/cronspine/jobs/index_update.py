"""
Index maintenance job (``update-indices``), one variant per daily routine.

Both variants are daily jobs on the B3 trading calendar: weekends and days
the market did not open are skipped, and a batch completed today is not
run again until tomorrow. A fresh batch seeds one work item per index.

Manifesto:
    - **mark-to-market** keeps every index's point history current. Gaps
      left by missed days are backfilled day by day under a sub-task
      checkpoint, so a long gap survives any number of timeouts.
    - **screening** re-runs each index's selection rules and rebalances
      the composition when the selected assets changed.
    - Market data and composition writes belong to the ``IndexService``;
      steps only read, finalize only writes.

Architecture:
    ::

        update-indices?job=mark-to-market            (default)
            BACKFILL   SubtaskCursor over missing trading days (ISO dates)
            MARK       points for the item's day
            finalize   {"updated": 1}
            batch end  IndexService.invalidate_cache()

        update-indices?job=screening
            SCREEN     selection rules → candidate tickers
            REBALANCE  diff against current composition (entered / exited)
            finalize   apply the diff → {"rebalanced": 0 | 1}

Tags:
    job, indices, mark-to-market, screening, daily, subtask
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any, Protocol

from pydantic import BaseModel, Field

from cronspine.core.errors import TransientError
from cronspine.core.logging import get_logger
from cronspine.core.models import FinalizeResult, WorkItem
from cronspine.core.timestamps import is_weekend
from cronspine.core.work_items import WorkItemRepository
from cronspine.execution.job import JobDefinition
from cronspine.execution.pipeline import StepContext, StepDefinition
from cronspine.jobs.common import ProviderCaller

logger = get_logger(__name__)

JOB_NAME = "update-indices"
MARK_TO_MARKET = "mark-to-market"
SCREENING = "screening"
MAX_BACKFILL_DAYS = 60


@dataclass(frozen=True, slots=True)
class IndexRef:
    index_id: str
    ticker: str


class IndexService(Protocol):
    """Market data, index history and composition for the index jobs."""

    def list_indices(self) -> list[IndexRef]: ...

    def market_was_open(self, day: date) -> bool: ...

    def last_history_date(self, index_id: str) -> date | None: ...

    def has_points(self, index_id: str, day: date) -> bool: ...

    def fill_history_day(self, index_id: str, day: date) -> None: ...

    def update_points(self, index_id: str, day: date) -> bool: ...

    def screen(self, index_id: str, day: date) -> list[str]:
        """Tickers the index's rules select on ``day``."""
        ...

    def current_composition(self, index_id: str) -> list[str]: ...

    def rebalance(
        self, index_id: str, day: date, entered: list[str], exited: list[str]
    ) -> None: ...

    def invalidate_cache(self) -> None: ...


# ---------------------------------------------------------------------------
# Step outputs
# ---------------------------------------------------------------------------


class BackfillOutput(BaseModel):
    filled_days: int = 0
    skipped_days: int = 0
    outstanding_days: int = 0


class MarkOutput(BaseModel):
    day: date
    already_marked: bool = False


class ScreenOutput(BaseModel):
    day: date
    candidates: list[str] = Field(default_factory=list)


class RebalanceOutput(BaseModel):
    entered: list[str] = Field(default_factory=list)
    exited: list[str] = Field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.entered or self.exited)


# ---------------------------------------------------------------------------
# Calendar
# ---------------------------------------------------------------------------


def is_trading_day(service: IndexService, day: date) -> bool:
    return not is_weekend(day) and service.market_was_open(day)


def missing_trading_days(
    service: IndexService,
    index_id: str,
    today: date,
    *,
    max_days: int = MAX_BACKFILL_DAYS,
) -> list[str]:
    """Trading days after the last history point and before ``today``.

    An index without any history has nothing to backfill. The look-back is
    capped at ``max_days`` calendar days.
    """
    last = service.last_history_date(index_id)
    if last is None:
        return []
    start = max(last + timedelta(days=1), today - timedelta(days=max_days))
    days: list[str] = []
    day = start
    while day < today:
        if is_trading_day(service, day):
            days.append(day.isoformat())
        day += timedelta(days=1)
    return days


# ---------------------------------------------------------------------------
# Steps
# ---------------------------------------------------------------------------


def _item_day(item: WorkItem) -> date:
    return date.fromisoformat(item.payload["day"])


class _IndexSteps:
    def __init__(self, service: IndexService, call: ProviderCaller, max_backfill_days: int) -> None:
        self._service = service
        self._call = call
        self._max_backfill_days = max_backfill_days

    def seed_for(self, job_type: str):
        def seed(today: date, items: WorkItemRepository) -> int:
            created = 0
            for index in self._service.list_indices():
                items.enqueue(
                    job_type,
                    f"index:{index.index_id}:{today.isoformat()}",
                    payload={
                        "index_id": index.index_id,
                        "ticker": index.ticker,
                        "day": today.isoformat(),
                    },
                )
                created += 1
            return created

        return seed

    def is_business_day(self, day: date) -> bool:
        return is_trading_day(self._service, day)

    # -- mark-to-market ------------------------------------------------------

    def backfill(self, ctx: StepContext) -> BackfillOutput:
        index_id = ctx.payload["index_id"]
        today = _item_day(ctx.item)
        units = missing_trading_days(
            self._service, index_id, today, max_days=self._max_backfill_days
        )

        def fill(unit: str) -> None:
            self._call(ctx, self._service.fill_history_day, index_id, date.fromisoformat(unit))

        outcome = ctx.subtask_cursor().run(units, fill)
        if outcome.processed:
            logger.info(
                "indices.backfilled",
                index_id=index_id,
                filled=outcome.processed,
                skipped=outcome.skipped,
            )
        return BackfillOutput(
            filled_days=outcome.processed,
            skipped_days=outcome.skipped,
            outstanding_days=outcome.total,
        )

    def mark(self, ctx: StepContext) -> MarkOutput:
        index_id = ctx.payload["index_id"]
        day = _item_day(ctx.item)
        if self._service.has_points(index_id, day):
            return MarkOutput(day=day, already_marked=True)
        ok = self._call(ctx, self._service.update_points, index_id, day)
        if not ok:
            raise TransientError(f"{ctx.payload.get('ticker', index_id)}: failed to update points")
        return MarkOutput(day=day)

    def finalize_mark(self, outputs: dict[str, Any], item: WorkItem) -> FinalizeResult:
        marked: MarkOutput = outputs["MARK"]
        return FinalizeResult(
            result_id=item.payload["index_id"],
            counters={"updated": 0 if marked.already_marked else 1},
        )

    # -- screening -----------------------------------------------------------

    def screen(self, ctx: StepContext) -> ScreenOutput:
        day = _item_day(ctx.item)
        candidates = self._call(ctx, self._service.screen, ctx.payload["index_id"], day)
        return ScreenOutput(day=day, candidates=sorted(set(candidates)))

    def plan_rebalance(self, ctx: StepContext) -> RebalanceOutput:
        screened: ScreenOutput = ctx.inputs["SCREEN"]
        current = set(self._service.current_composition(ctx.payload["index_id"]))
        selected = set(screened.candidates)
        return RebalanceOutput(
            entered=sorted(selected - current),
            exited=sorted(current - selected),
        )

    def finalize_screening(self, outputs: dict[str, Any], item: WorkItem) -> FinalizeResult:
        index_id = item.payload["index_id"]
        plan: RebalanceOutput = outputs["REBALANCE"]
        if not plan.changed:
            return FinalizeResult(result_id=index_id, counters={"rebalanced": 0})
        self._service.rebalance(index_id, _item_day(item), plan.entered, plan.exited)
        logger.info(
            "indices.rebalanced",
            index_id=index_id,
            entered=len(plan.entered),
            exited=len(plan.exited),
        )
        return FinalizeResult(result_id=index_id, counters={"rebalanced": 1})


def build_index_jobs(
    service: IndexService,
    *,
    caller: ProviderCaller | None = None,
    max_backfill_days: int = MAX_BACKFILL_DAYS,
    batch_size: int | None = None,
) -> tuple[JobDefinition, JobDefinition]:
    """Return the ``mark-to-market`` and ``screening`` variants, in that order."""
    steps = _IndexSteps(service, caller or ProviderCaller(), max_backfill_days)

    mark_to_market = JobDefinition(
        name=JOB_NAME,
        variant=MARK_TO_MARKET,
        steps=(
            StepDefinition("BACKFILL", steps.backfill, output_model=BackfillOutput),
            StepDefinition("MARK", steps.mark, depends_on=("BACKFILL",), output_model=MarkOutput),
        ),
        finalize=steps.finalize_mark,
        counter="updated",
        daily=True,
        batch_size=batch_size,
        seed=steps.seed_for(f"{JOB_NAME}:{MARK_TO_MARKET}"),
        is_business_day=steps.is_business_day,
        on_batch_complete=service.invalidate_cache,
        description="Backfill missing history and mark every index to market",
    )
    screening = JobDefinition(
        name=JOB_NAME,
        variant=SCREENING,
        steps=(
            StepDefinition("SCREEN", steps.screen, output_model=ScreenOutput),
            StepDefinition(
                "REBALANCE",
                steps.plan_rebalance,
                depends_on=("SCREEN",),
                output_model=RebalanceOutput,
            ),
        ),
        finalize=steps.finalize_screening,
        counter="rebalanced",
        daily=True,
        batch_size=batch_size,
        seed=steps.seed_for(f"{JOB_NAME}:{SCREENING}"),
        is_business_day=steps.is_business_day,
        description="Screen every index and rebalance changed compositions",
    )
    return mark_to_market, screening


__all__ = [
    "JOB_NAME",
    "MARK_TO_MARKET",
    "SCREENING",
    "IndexRef",
    "IndexService",
    "BackfillOutput",
    "MarkOutput",
    "ScreenOutput",
    "RebalanceOutput",
    "is_trading_day",
    "missing_trading_days",
    "build_index_jobs",
]

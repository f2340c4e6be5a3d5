"""Nested progress for steps made of many ordered sub-units.

WHY
───
Some steps are too long for one invocation: backfilling thirty missing
trading days for an index is thirty market-data round trips. The step keeps
its own marker (the last completed unit) so an interrupted backfill resumes
on the next day it had not reached, without redoing the ones it finished.

ARCHITECTURE
────────────
::

    cursor = ctx.subtask_cursor()
    cursor.run(outstanding_units, process_one)
        │
        ├── outstanding empty  → clear marker, return
        ├── skip units <= marker
        └── for each remaining unit:
              budget.check()         → BudgetExhausted (marker kept)
              process_one(unit)      → failure: SubtaskIncomplete (marker kept)
              save marker + counts
        └── all done → clear marker

Units are strings that sort in processing order (ISO dates, zero-padded
ids). The caller recomputes the outstanding list on every run; it is never
assumed to match the previous invocation's list.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass

from cronspine.core.checkpoints import CheckpointStore
from cronspine.core.errors import BudgetExhausted, SubtaskIncomplete
from cronspine.core.logging import get_logger
from cronspine.core.models import SubtaskProgress
from cronspine.execution.budget import TimeBudget

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class SubtaskOutcome:
    """What one :meth:`SubtaskCursor.run` call did."""

    processed: int
    skipped: int
    total: int


class SubtaskCursor:
    """Sub-task checkpoint for one (job_type, item, step)."""

    def __init__(
        self,
        checkpoints: CheckpointStore,
        job_type: str,
        item_id: str,
        step: str,
        budget: TimeBudget | None = None,
    ) -> None:
        self._checkpoints = checkpoints
        self.job_type = job_type
        self.item_id = item_id
        self.step = step
        self._budget = budget

    def load(self) -> SubtaskProgress | None:
        return self._checkpoints.load_subtask(self.job_type, self.item_id, self.step)

    def clear(self) -> bool:
        return self._checkpoints.clear_subtask(self.job_type, self.item_id, self.step)

    def run(self, units: Sequence[str], process: Callable[[str], None]) -> SubtaskOutcome:
        """Process outstanding ``units`` in order, persisting after each.

        Raises:
            BudgetExhausted: Time ran out between units.
            SubtaskIncomplete: A unit failed; later units were not started.
        """
        progress = self.load()
        if not units:
            if progress is not None:
                self.clear()
                logger.info("subtask.nothing_outstanding", step=self.step, item_id=self.item_id)
            return SubtaskOutcome(processed=0, skipped=0, total=0)

        marker = progress.last_completed if progress else None
        ordered = sorted(units)
        remaining = [u for u in ordered if marker is None or u > marker]
        skipped = len(ordered) - len(remaining)

        if progress is None:
            progress = SubtaskProgress(job_type=self.job_type, item_id=self.item_id, step=self.step)
        progress.total_count = progress.processed_count + len(remaining)

        if marker is not None:
            logger.info(
                "subtask.resume",
                step=self.step,
                item_id=self.item_id,
                after=marker,
                remaining=len(remaining),
            )

        processed = 0
        for unit in remaining:
            if self._budget is not None and self._budget.exhausted():
                logger.info(
                    "subtask.budget_exhausted",
                    step=self.step,
                    item_id=self.item_id,
                    last_completed=progress.last_completed,
                    remaining=len(remaining) - processed,
                )
                raise BudgetExhausted(self._budget.remaining())

            try:
                process(unit)
            except BudgetExhausted:
                raise
            except Exception as e:
                logger.warning(
                    "subtask.unit_failed",
                    step=self.step,
                    item_id=self.item_id,
                    unit=unit,
                    error=str(e),
                )
                raise SubtaskIncomplete(
                    f"{self.step}: unit {unit} failed after {processed} of {len(remaining)}",
                    cause=e,
                ).with_context(job_type=self.job_type, item_id=self.item_id, step=self.step) from e

            processed += 1
            progress.last_completed = unit
            progress.processed_count += 1
            self._checkpoints.save_subtask(progress)

        self.clear()
        logger.info(
            "subtask.completed",
            step=self.step,
            item_id=self.item_id,
            processed=processed,
            skipped=skipped,
        )
        return SubtaskOutcome(processed=processed, skipped=skipped, total=len(ordered))


__all__ = ["SubtaskCursor", "SubtaskOutcome"]

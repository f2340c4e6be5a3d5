"""
Time-boxed executor — the driver loop of every cron job.

One call to :meth:`TimeBoxedExecutor.run` is one scheduler tick. It takes
the job's lease, works through a bounded batch of items for as long as its
time budget allows, persists progress after every item, and reports whether
another tick is needed (``has_more``).

Manifesto:
    - **Stop before the host does:** the budget (50s) is checked before
      each item and between steps; the host's hard limit (60s) is never
      reached with unsaved work
    - **Finish what you start:** an item runs through all of its remaining
      steps in one go; items with a half-done sub-task come first
    - **One bad item never sinks the batch:** per-item errors are caught at
      the item boundary and reported in ``errors``
    - **Interruption is not failure:** an item cut off by the budget stays
      PROCESSING with its checkpoints and is not counted

Architecture:
    ::

        run(job)
          │
          ├── lease.acquire(job_type)            (held elsewhere → has_more)
          ├── checkpoints.migrate_null_scope()
          ├── daily job? business day? completed today?  → short-circuit
          ├── load BatchProgress, reset if stale (other calendar day)
          ├── fresh batch, or a daily batch not yet seeded today → job.seed(today)
          ├── selector.next_batch(job_type, batch_size)
          │
          ├── for item in batch:                 (or WorkerPool slots)
          │     budget exhausted? → stop, item untouched
          │     PENDING → PROCESSING
          │     loop: next_step → run_step → budget check
          │           no step left → Finalizer
          │     errors: retryable → attempts+1 (FAILED at max_attempts)
          │             structural → FAILED
          │     save BatchProgress
          │
          └── BatchReport(success, processed, <counter>, errors,
                          duration, has_more, timestamp)

Guardrails:
    ❌ DON'T: count an interrupted item as processed
    ✅ DO: count only items that reached COMPLETED or FAILED

    ❌ DON'T: let a step exception escape the item loop
    ✅ DO: record it and move on to the next item

Tags:
    executor, time-budget, resumable, batch, cron
"""

from __future__ import annotations

import contextvars
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Any

from cronspine.core.checkpoints import CheckpointStore
from cronspine.core.errors import BudgetExhausted, is_retryable
from cronspine.core.logging import LogContext, get_logger
from cronspine.core.models import BatchProgress, FinalizeResult, WorkItem, WorkItemStatus
from cronspine.core.selector import WorkSelector
from cronspine.core.settings import CronSpineSettings
from cronspine.core.timestamps import generate_ulid, local_day, utc_now
from cronspine.core.work_items import WorkItemRepository
from cronspine.execution.budget import TimeBudget
from cronspine.execution.finalizer import Finalizer
from cronspine.execution.job import JobDefinition
from cronspine.execution.lease import JobLease
from cronspine.execution.pipeline import StepPipeline
from cronspine.execution.pool import PoolItem, WorkerPool

logger = get_logger(__name__)


class ItemOutcome(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    RETRY = "retry"
    INTERRUPTED = "interrupted"


@dataclass(frozen=True, slots=True)
class ItemResult:
    item_id: str
    outcome: ItemOutcome
    error: str | None = None
    finalized: FinalizeResult | None = None
    steps_run: int = 0

    @property
    def done(self) -> bool:
        """Reached a terminal state in this invocation."""
        return self.outcome in (ItemOutcome.COMPLETED, ItemOutcome.FAILED)


@dataclass
class BatchReport:
    """Outcome of one invocation, shaped for the scheduler's response."""

    job_type: str
    counter_name: str
    success: bool = True
    processed: int = 0
    counter: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)
    duration_ms: int = 0
    has_more: bool = False
    interrupted: bool = False
    message: str | None = None
    timestamp: datetime = field(default_factory=utc_now)

    def add(self, result: ItemResult) -> None:
        if result.outcome == ItemOutcome.COMPLETED:
            self.processed += 1
            if result.finalized is not None:
                self.counter += result.finalized.counters.get(self.counter_name, 1)
        elif result.outcome == ItemOutcome.FAILED:
            self.processed += 1
            self.failed += 1
        if result.error is not None:
            self.errors.append(f"{result.item_id}: {result.error}")

    def to_response(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "success": self.success,
            "processed": self.processed,
            self.counter_name: self.counter,
        }
        if self.errors:
            body["errors"] = list(self.errors)
        if self.message:
            body["message"] = self.message
        body["duration"] = f"{self.duration_ms}ms"
        body["hasMore"] = self.has_more
        body["timestamp"] = self.timestamp.isoformat()
        return body


class TimeBoxedExecutor:
    """Drives jobs against one database connection.

    Args:
        conn: Connection shared by all stores.
        settings: Engine settings (budget, batch sizes, retries, lease).
        clock: Wall clock for timestamps and calendar days.
        monotonic: Clock for the time budget.
    """

    def __init__(
        self,
        conn: Any,
        settings: CronSpineSettings | None = None,
        *,
        clock: Callable[[], datetime] = utc_now,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self.settings = settings or CronSpineSettings()
        self._clock = clock
        self._monotonic = monotonic
        window = timedelta(hours=self.settings.dedupe_window_hours)
        self.checkpoints = CheckpointStore(conn, clock=clock)
        self.items = WorkItemRepository(conn, dedupe_window=window, clock=clock)
        self.selector = WorkSelector(conn, self.checkpoints, recency_window=window)
        self.finalizer = Finalizer(self.items, self.checkpoints)
        self.lease = (
            JobLease(conn, self.settings.lease_ttl_seconds, clock=clock)
            if self.settings.lease_enabled
            else None
        )

    def pipeline_for(self, job: JobDefinition) -> StepPipeline:
        return StepPipeline(
            job.job_type,
            job.steps,
            self.checkpoints,
            step_warn_seconds=self.settings.step_warn_seconds,
        )

    def new_budget(self) -> TimeBudget:
        """A fresh budget of ``max_execution_seconds`` for one invocation."""
        return TimeBudget(self.settings.max_execution_seconds, clock=self._monotonic)

    # -- entry point ---------------------------------------------------------

    def run(self, job: JobDefinition, budget: TimeBudget | None = None) -> BatchReport:
        """Run one time-boxed pass over ``job``'s work.

        ``budget`` is shared when one invocation drives several jobs
        (``?job=all``); a job whose turn comes after it ran out does nothing
        and reports ``has_more``.
        """
        if budget is None:
            budget = self.new_budget()
        started = self._monotonic()
        report = BatchReport(job_type=job.job_type, counter_name=job.counter)
        execution_id = generate_ulid()

        with LogContext(job_type=job.job_type, execution_id=execution_id):
            if budget.exhausted():
                logger.info("executor.no_budget_left")
                report.has_more = True
                report.interrupted = True
                report.message = "time budget exhausted before the batch started"
                return report

            if self.lease is not None and not self.lease.acquire(job.job_type, execution_id):
                report.success = False
                report.has_more = True
                report.message = "another invocation holds the lease for this job"
                report.duration_ms = int((self._monotonic() - started) * 1000)
                return report

            try:
                self._run_batch(job, budget, report)
            finally:
                if self.lease is not None:
                    self.lease.release(job.job_type, execution_id)

            report.duration_ms = int((self._monotonic() - started) * 1000)
            report.timestamp = self._clock()
            logger.info(
                "executor.batch_done",
                processed=report.processed,
                failed=report.failed,
                errors=len(report.errors),
                has_more=report.has_more,
                interrupted=report.interrupted,
                duration_ms=report.duration_ms,
            )
        return report

    # -- batch ---------------------------------------------------------------

    def _run_batch(self, job: JobDefinition, budget: TimeBudget, report: BatchReport) -> None:
        job_type = job.job_type
        pipeline = self.pipeline_for(job)
        today = local_day(self._clock(), self.settings.timezone)

        self.checkpoints.migrate_null_scope(job_type)

        if job.daily and job.is_business_day is not None and not job.is_business_day(today):
            logger.info("executor.not_business_day", day=today.isoformat())
            report.message = f"{today.isoformat()} is not a business day"
            return

        progress = self._load_progress(job, today)
        if progress is None:
            report.message = "batch already completed today"
            return

        fresh = progress.created_at is None
        # a daily batch still open after midnight also takes the new day's targets
        due = progress.seeded_day != today if job.daily else fresh
        if due and job.seed is not None:
            try:
                seeded = job.seed(today, self.items)
                progress.seeded_day = today
                logger.info("executor.seeded", day=today.isoformat(), items=seeded, fresh=fresh)
            except Exception as e:
                logger.exception("executor.seed_failed", error=str(e))
                report.errors.append(f"seed: {e}")

        pending = self.selector.count_pending(job_type)
        progress.total_count = progress.processed_count + pending
        self.checkpoints.save_progress(progress)

        batch_size = job.batch_size or self.settings.batch_size_for(job.name)
        batch = self.selector.next_batch(job_type, batch_size)
        logger.info(
            "executor.batch_start",
            items=len(batch),
            pending=pending,
            processed_so_far=progress.processed_count,
            fresh=fresh,
        )

        if job.parallel and self.settings.parallel_slots > 1:
            self._run_parallel(job, pipeline, batch, budget, progress, report)
        else:
            self._run_sequential(job, pipeline, batch, budget, progress, report)

        remaining = self.selector.count_pending(job_type)
        progress.total_count = progress.processed_count + remaining
        self.checkpoints.save_progress(progress)
        report.has_more = report.interrupted or remaining > 0

        if not report.has_more and report.processed > 0 and job.on_batch_complete is not None:
            try:
                job.on_batch_complete()
            except Exception as e:
                logger.exception("executor.batch_hook_failed", error=str(e))
                report.errors.append(f"on_batch_complete: {e}")

    def _load_progress(self, job: JobDefinition, today: date) -> BatchProgress | None:
        """Current batch progress; ``None`` means a daily job is done for today."""
        progress = self.checkpoints.load_progress(job.job_type)
        if progress is None:
            return BatchProgress(job_type=job.job_type)

        if progress.completed_at is not None:
            completed_day = local_day(progress.completed_at, self.settings.timezone)
            if completed_day != today:
                logger.info(
                    "executor.stale_progress_reset",
                    completed_day=completed_day.isoformat(),
                    today=today.isoformat(),
                )
                self.checkpoints.reset_progress(job.job_type)
                return BatchProgress(job_type=job.job_type)
            if job.daily:
                logger.info("executor.already_completed_today")
                return None
            self.checkpoints.reset_progress(job.job_type)
            return BatchProgress(job_type=job.job_type)

        return progress

    def _run_sequential(
        self,
        job: JobDefinition,
        pipeline: StepPipeline,
        batch: list[WorkItem],
        budget: TimeBudget,
        progress: BatchProgress,
        report: BatchReport,
    ) -> None:
        for item in batch:
            if budget.exhausted():
                logger.info("executor.budget_exhausted", before_item=item.item_id)
                report.interrupted = True
                break

            result = self._process_item(job, pipeline, item, budget)
            self._record(result, progress, report)
            if result.outcome == ItemOutcome.INTERRUPTED:
                report.interrupted = True
                break

    def _run_parallel(
        self,
        job: JobDefinition,
        pipeline: StepPipeline,
        batch: list[WorkItem],
        budget: TimeBudget,
        progress: BatchProgress,
        report: BatchReport,
    ) -> None:
        lock = threading.Lock()
        parent = contextvars.copy_context()

        def _work(item: WorkItem) -> ItemResult:
            return parent.copy().run(self._process_item, job, pipeline, item, budget)

        def _done(pool_item: PoolItem[WorkItem]) -> None:
            result = pool_item.result
            if result is None:
                # _process_item itself raised: storage is failing underneath us
                result = ItemResult(
                    pool_item.value.item_id, ItemOutcome.RETRY, error=str(pool_item.error)
                )
            with lock:
                self._record(result, progress, report)
                if result.outcome == ItemOutcome.INTERRUPTED:
                    report.interrupted = True

        pool = WorkerPool(self.settings.parallel_slots, should_stop=budget.exhausted)
        outcome = pool.run(batch, _work, on_done=_done)
        if outcome.skipped:
            report.interrupted = True

    def _record(self, result: ItemResult, progress: BatchProgress, report: BatchReport) -> None:
        report.add(result)
        if result.done:
            progress.record(result.item_id, result.error)
        elif result.error is not None:
            progress.add_error(f"{result.item_id}: {result.error}")
        self.checkpoints.save_progress(progress)

    # -- item ----------------------------------------------------------------

    def _process_item(
        self,
        job: JobDefinition,
        pipeline: StepPipeline,
        item: WorkItem,
        budget: TimeBudget,
    ) -> ItemResult:
        """Drive one item as far as the budget allows; never raises for step errors."""
        steps_run = 0
        with LogContext(item_id=item.item_id):
            try:
                if item.status == WorkItemStatus.PENDING:
                    self.items.mark_processing(item.item_id)
                else:
                    self.items.touch(item.item_id)

                while True:
                    step = pipeline.next_step(item.item_id)
                    if step is None:
                        finalized = self.finalizer.finalize(pipeline, item, job.finalize)
                        return ItemResult(
                            item.item_id,
                            ItemOutcome.COMPLETED,
                            finalized=finalized,
                            steps_run=steps_run,
                        )

                    pipeline.run_step(item, step, budget)
                    steps_run += 1
                    if budget.exhausted():
                        raise BudgetExhausted(budget.remaining())

            except BudgetExhausted:
                logger.info("executor.item_interrupted", steps_run=steps_run)
                return ItemResult(item.item_id, ItemOutcome.INTERRUPTED, steps_run=steps_run)

            except Exception as e:
                message = str(e) or type(e).__name__
                if is_retryable(e):
                    attempts = self.items.record_attempt(item.item_id, message)
                    if attempts < self.settings.max_attempts:
                        logger.warning(
                            "executor.item_retry_later",
                            attempts=attempts,
                            max_attempts=self.settings.max_attempts,
                            error=message,
                        )
                        return ItemResult(item.item_id, ItemOutcome.RETRY, message, steps_run=steps_run)
                    message = f"{message} (gave up after {attempts} attempts)"

                self.items.mark_failed(item.item_id, message)
                # step checkpoints stay for reset_failed; the sub-task marker is abandoned
                self.checkpoints.clear_subtasks(job.job_type, item.item_id)
                logger.error(
                    "executor.item_failed",
                    error=message,
                    error_type=type(e).__name__,
                )
                return ItemResult(item.item_id, ItemOutcome.FAILED, message, steps_run=steps_run)


__all__ = [
    "TimeBoxedExecutor",
    "BatchReport",
    "ItemResult",
    "ItemOutcome",
]

"""cronspine.execution -- driving items through their pipelines.

WHY
───
Every cron job has the same shape: pick some items, run each one's
remaining steps, checkpoint after every step, stop before the host kills
the request. This package is that shape; a job only supplies its steps
and its finalize.

ARCHITECTURE
────────────
::

    TimeBoxedExecutor.run(JobDefinition)
      ├── JobLease        ─ one invocation per job type
      ├── TimeBudget      ─ 50s soft limit under a 60s host limit
      ├── WorkSelector    ─ which items, in what order
      ├── StepPipeline    ─ next step = first without checkpoint
      │     └── SubtaskCursor ─ resumable loops inside one step
      ├── WorkerPool      ─ optional bounded fan-out
      └── Finalizer       ─ side effects, then COMPLETED
"""

from cronspine.execution.budget import TimeBudget
from cronspine.execution.executor import BatchReport, ItemOutcome, TimeBoxedExecutor
from cronspine.execution.finalizer import Finalizer
from cronspine.execution.job import JobDefinition
from cronspine.execution.lease import JobLease
from cronspine.execution.pipeline import StepContext, StepDefinition, StepPipeline
from cronspine.execution.pool import WorkerPool
from cronspine.execution.retry import ExponentialBackoff, NoRetry, RetryContext, with_retry
from cronspine.execution.subtasks import SubtaskCursor

__all__ = [
    "TimeBudget",
    "BatchReport",
    "ItemOutcome",
    "TimeBoxedExecutor",
    "Finalizer",
    "JobDefinition",
    "JobLease",
    "StepContext",
    "StepDefinition",
    "StepPipeline",
    "WorkerPool",
    "ExponentialBackoff",
    "NoRetry",
    "RetryContext",
    "with_retry",
    "SubtaskCursor",
]

"""
Value objects shared by the stores, the executor and the jobs.

Architecture:
    ::

        WorkItem ──────────── one unit of work (PENDING → PROCESSING → …)
        BatchProgress ─────── per-invocation counters under "__GLOBAL__"
        SubtaskProgress ───── marker inside a step with many sub-units
        FinalizeResult ────── what a job's finalize capability returns

        Item state machine::

            PENDING ──mark_processing──▶ PROCESSING ──finalize──▶ COMPLETED
                                            │
                                            └──structural / attempts──▶ FAILED

Tags:
    models, dataclasses, work-items, checkpoints
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum, IntEnum
from typing import Any

GLOBAL_SCOPE = "__GLOBAL__"
BATCH_STEP = "__BATCH__"
# Most recent item errors kept on the batch row.
MAX_PROGRESS_ERRORS = 50


class WorkItemStatus(str, Enum):
    """Lifecycle states of a work item."""

    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (WorkItemStatus.COMPLETED, WorkItemStatus.FAILED)


class PriorityClass(IntEnum):
    """Scheduling class of a work item; lower values are selected first."""

    PREMIUM = 0
    STANDARD = 1
    FREE = 2


class CheckpointKind(str, Enum):
    STEP = "step"
    SUBTASK = "subtask"
    BATCH = "batch"


# ---------------------------------------------------------------------------
# Work items
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class WorkItem:
    """A unit of work owned by one job type.

    Attributes:
        item_id: ULID of the item.
        job_type: Registered job name (``"ai-reports"``).
        target_key: Logical business target; duplicates share it.
        priority: Scheduling class.
        payload: Trigger context passed to steps and finalize.
        status: Current lifecycle state.
        attempts: Retryable failures recorded so far.
        error: Last error message, if any.
        result_id: Id of the artefact produced by finalize.
    """

    item_id: str
    job_type: str
    target_key: str
    priority: PriorityClass = PriorityClass.STANDARD
    payload: dict[str, Any] = field(default_factory=dict)
    status: WorkItemStatus = WorkItemStatus.PENDING
    attempts: int = 0
    error: str | None = None
    result_id: str | None = None
    created_at: datetime | None = None
    last_processed_at: datetime | None = None
    completed_at: datetime | None = None


# ---------------------------------------------------------------------------
# Progress records
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class BatchProgress:
    """Progress of the current batch for one job type.

    ``completed_at`` is never set by callers; the store sets it on save
    exactly when ``processed_count == total_count`` and ``total_count > 0``.
    ``seeded_day`` is the last calendar day the job's seed ran for this
    batch; a batch still open after midnight is seeded again for the new day.
    ``errors`` keeps only the most recent :data:`MAX_PROGRESS_ERRORS`.
    """

    job_type: str
    processed_count: int = 0
    total_count: int = 0
    last_processed_item_id: str | None = None
    errors: list[str] = field(default_factory=list)
    seeded_day: date | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def is_complete(self) -> bool:
        return self.completed_at is not None

    def record(self, item_id: str, error: str | None = None) -> None:
        """Count one item as done (completed or failed)."""
        self.processed_count += 1
        self.last_processed_item_id = item_id
        if error is not None:
            self.add_error(f"{item_id}: {error}")

    def add_error(self, message: str) -> None:
        self.errors.append(message)
        del self.errors[:-MAX_PROGRESS_ERRORS]

    def to_dict(self) -> dict[str, Any]:
        return {
            "job_type": self.job_type,
            "processed_count": self.processed_count,
            "total_count": self.total_count,
            "last_processed_item_id": self.last_processed_item_id,
            "errors": list(self.errors),
            "seeded_day": self.seeded_day.isoformat() if self.seeded_day else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


@dataclass(slots=True)
class SubtaskProgress:
    """Marker for a step that processes many ordered sub-units."""

    job_type: str
    item_id: str
    step: str
    last_completed: str | None = None
    processed_count: int = 0
    total_count: int = 0
    updated_at: datetime | None = None


@dataclass(frozen=True, slots=True)
class FinalizeResult:
    """Outcome of a job's finalize capability.

    Attributes:
        result_id: Id of the produced artefact (report, flag, index).
        counters: Extra per-item counters merged into the batch report,
            e.g. ``{"rebalanced": 1}``.
    """

    result_id: str | None = None
    counters: dict[str, int] = field(default_factory=dict)


__all__ = [
    "GLOBAL_SCOPE",
    "BATCH_STEP",
    "MAX_PROGRESS_ERRORS",
    "WorkItemStatus",
    "PriorityClass",
    "CheckpointKind",
    "WorkItem",
    "BatchProgress",
    "SubtaskProgress",
    "FinalizeResult",
]

"""
Checkpoint store — durable step outputs, sub-task markers and batch progress.

Manifesto:
    A cron invocation can be killed at any instant. Everything the engine
    needs to resume lives in ``core_checkpoints`` and nowhere else:

    - **Step checkpoints:** the output of a finished step. Presence is the
      only "done" signal; a step with a checkpoint is never recomputed.
    - **Sub-task checkpoints:** where a long step left off inside its own
      unit list. Exists only while the owning step is incomplete.
    - **Batch progress:** one row per job under the ``__GLOBAL__`` scope
      with processed / total counters and ``completed_at``.

    Writes are idempotent upserts keyed by (job_type, scope_id, step, kind),
    so replaying a save after a crash converges on the same row.

Architecture:
    ::

        CheckpointStore(conn)
            │
            ├── save / load / exists / list_steps / clear     (kind=step)
            ├── save_subtask / load_subtask / clear_subtask   (kind=subtask)
            │   scopes_with_subtasks
            ├── save_progress / load_progress / reset_progress (kind=batch)
            └── migrate_null_scope                            (legacy rows)

Guardrails:
    ❌ DON'T: set BatchProgress.completed_at yourself
    ✅ DO: let save_progress() derive it from the counters

    ❌ DON'T: leave a sub-task checkpoint behind once its step is saved
    ✅ DO: clear the item's scope in the finalizer

Tags:
    checkpoints, resumability, idempotent-upsert, batch-progress
"""

from __future__ import annotations

import json
from collections.abc import Callable
from datetime import date, datetime
from typing import Any

from cronspine.core.logging import get_logger
from cronspine.core.models import (
    BATCH_STEP,
    GLOBAL_SCOPE,
    MAX_PROGRESS_ERRORS,
    BatchProgress,
    CheckpointKind,
    SubtaskProgress,
)
from cronspine.core.timestamps import from_iso8601, to_iso8601, utc_now

logger = get_logger(__name__)

_UPSERT = (
    "INSERT INTO core_checkpoints "
    "  (job_type, scope_id, step, kind, data_json, last_processed_id, "
    "   processed_count, total_count, errors_json, completed_at, created_at, updated_at) "
    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?) "
    "ON CONFLICT(job_type, scope_id, step, kind) DO UPDATE SET "
    "  data_json = excluded.data_json, "
    "  last_processed_id = excluded.last_processed_id, "
    "  processed_count = excluded.processed_count, "
    "  total_count = excluded.total_count, "
    "  errors_json = excluded.errors_json, "
    "  completed_at = excluded.completed_at, "
    "  updated_at = excluded.updated_at"
)


class CheckpointStore:
    """Persistent checkpoint store backed by ``core_checkpoints``.

    Args:
        conn: Connection exposing ``.execute()`` and ``.commit()``.
        clock: Source of "now" (injectable for tests).

    Examples:
        >>> store = CheckpointStore(conn)
        >>> store.save("ai-reports", item_id, "RESEARCH", {"summary": "..."})
        >>> store.load("ai-reports", item_id, "RESEARCH")["summary"]
        '...'
        >>> store.load("ai-reports", item_id, "ANALYSIS") is None
        True
    """

    def __init__(self, conn: Any, clock: Callable[[], datetime] = utc_now) -> None:
        self._conn = conn
        self._clock = clock

    # -- step checkpoints ----------------------------------------------------

    def save(self, job_type: str, scope_id: str, step: str, data: dict[str, Any]) -> None:
        """Persist the output of ``step`` for ``scope_id`` (idempotent)."""
        self._upsert(
            job_type,
            scope_id,
            step,
            CheckpointKind.STEP,
            data_json=json.dumps(data, default=str),
        )
        logger.debug("checkpoint.saved", job_type=job_type, scope_id=scope_id, step=step)

    def load(self, job_type: str, scope_id: str, step: str) -> dict[str, Any] | None:
        """Return the saved output of ``step``, or ``None`` if absent."""
        row = self._conn.execute(
            "SELECT data_json FROM core_checkpoints "
            "WHERE job_type = ? AND scope_id = ? AND step = ? AND kind = ?",
            (job_type, scope_id, step, CheckpointKind.STEP.value),
        ).fetchone()
        if row is None:
            return None
        return json.loads(row[0]) if row[0] else {}

    def exists(self, job_type: str, scope_id: str, step: str) -> bool:
        return self.load(job_type, scope_id, step) is not None

    def list_steps(self, job_type: str, scope_id: str) -> dict[str, dict[str, Any]]:
        """All step outputs saved for ``scope_id``, keyed by step name."""
        rows = self._conn.execute(
            "SELECT step, data_json FROM core_checkpoints "
            "WHERE job_type = ? AND scope_id = ? AND kind = ? ORDER BY id",
            (job_type, scope_id, CheckpointKind.STEP.value),
        ).fetchall()
        return {r[0]: (json.loads(r[1]) if r[1] else {}) for r in rows}

    def clear(self, job_type: str, scope_id: str) -> int:
        """Delete every checkpoint (step and sub-task) of ``scope_id``.

        Returns:
            Number of rows removed.
        """
        cur = self._conn.execute(
            "DELETE FROM core_checkpoints WHERE job_type = ? AND scope_id = ?",
            (job_type, scope_id),
        )
        self._conn.commit()
        return cur.rowcount

    # -- sub-task checkpoints ------------------------------------------------

    def save_subtask(self, progress: SubtaskProgress) -> SubtaskProgress:
        progress.updated_at = self._clock()
        self._upsert(
            progress.job_type,
            progress.item_id,
            progress.step,
            CheckpointKind.SUBTASK,
            last_processed_id=progress.last_completed,
            processed_count=progress.processed_count,
            total_count=progress.total_count,
        )
        return progress

    def load_subtask(self, job_type: str, item_id: str, step: str) -> SubtaskProgress | None:
        row = self._conn.execute(
            "SELECT last_processed_id, processed_count, total_count, updated_at "
            "FROM core_checkpoints "
            "WHERE job_type = ? AND scope_id = ? AND step = ? AND kind = ?",
            (job_type, item_id, step, CheckpointKind.SUBTASK.value),
        ).fetchone()
        if row is None:
            return None
        return SubtaskProgress(
            job_type=job_type,
            item_id=item_id,
            step=step,
            last_completed=row[0],
            processed_count=row[1],
            total_count=row[2],
            updated_at=from_iso8601(row[3]),
        )

    def clear_subtask(self, job_type: str, item_id: str, step: str) -> bool:
        cur = self._conn.execute(
            "DELETE FROM core_checkpoints "
            "WHERE job_type = ? AND scope_id = ? AND step = ? AND kind = ?",
            (job_type, item_id, step, CheckpointKind.SUBTASK.value),
        )
        self._conn.commit()
        return cur.rowcount > 0

    def clear_subtasks(self, job_type: str, item_id: str) -> int:
        """Drop every sub-task marker of ``item_id``; step checkpoints stay."""
        cur = self._conn.execute(
            "DELETE FROM core_checkpoints WHERE job_type = ? AND scope_id = ? AND kind = ?",
            (job_type, item_id, CheckpointKind.SUBTASK.value),
        )
        self._conn.commit()
        return cur.rowcount

    def scopes_with_subtasks(self, job_type: str) -> set[str]:
        """Item ids that currently own a pending sub-task checkpoint."""
        rows = self._conn.execute(
            "SELECT DISTINCT scope_id FROM core_checkpoints "
            "WHERE job_type = ? AND kind = ? AND scope_id IS NOT NULL",
            (job_type, CheckpointKind.SUBTASK.value),
        ).fetchall()
        return {r[0] for r in rows}

    # -- batch progress ------------------------------------------------------

    def load_progress(self, job_type: str) -> BatchProgress | None:
        row = self._conn.execute(
            "SELECT last_processed_id, processed_count, total_count, errors_json, "
            "completed_at, created_at, updated_at, data_json FROM core_checkpoints "
            "WHERE job_type = ? AND scope_id = ? AND step = ? AND kind = ?",
            (job_type, GLOBAL_SCOPE, BATCH_STEP, CheckpointKind.BATCH.value),
        ).fetchone()
        if row is None:
            return None
        extra = json.loads(row[7]) if row[7] else {}
        seeded = extra.get("seeded_day") if isinstance(extra, dict) else None
        return BatchProgress(
            job_type=job_type,
            last_processed_item_id=row[0],
            processed_count=row[1],
            total_count=row[2],
            errors=json.loads(row[3]) if row[3] else [],
            seeded_day=date.fromisoformat(seeded) if seeded else None,
            completed_at=from_iso8601(row[4]),
            created_at=from_iso8601(row[5]),
            updated_at=from_iso8601(row[6]),
        )

    def save_progress(self, progress: BatchProgress) -> BatchProgress:
        """Persist ``progress``, deriving ``completed_at`` from its counters.

        ``completed_at`` is set exactly when ``processed_count == total_count``
        and ``total_count > 0``; an earlier completion timestamp is kept while
        that still holds.
        """
        now = self._clock()
        done = progress.total_count > 0 and progress.processed_count == progress.total_count
        if done:
            progress.completed_at = progress.completed_at or now
        else:
            progress.completed_at = None
        progress.updated_at = now
        if progress.created_at is None:
            progress.created_at = now
        del progress.errors[:-MAX_PROGRESS_ERRORS]

        self._upsert(
            progress.job_type,
            GLOBAL_SCOPE,
            BATCH_STEP,
            CheckpointKind.BATCH,
            data_json=(
                json.dumps({"seeded_day": progress.seeded_day.isoformat()})
                if progress.seeded_day
                else None
            ),
            last_processed_id=progress.last_processed_item_id,
            processed_count=progress.processed_count,
            total_count=progress.total_count,
            errors_json=json.dumps(progress.errors) if progress.errors else None,
            completed_at=to_iso8601(progress.completed_at),
        )
        return progress

    def reset_progress(self, job_type: str, total_count: int = 0) -> BatchProgress:
        """Start a fresh batch with zero progress."""
        self._conn.execute(
            "DELETE FROM core_checkpoints WHERE job_type = ? AND scope_id = ? AND kind = ?",
            (job_type, GLOBAL_SCOPE, CheckpointKind.BATCH.value),
        )
        fresh = BatchProgress(job_type=job_type, total_count=total_count)
        return self.save_progress(fresh)

    # -- legacy rows ---------------------------------------------------------

    def migrate_null_scope(self, job_type: str) -> int:
        """Compact legacy batch rows stored with a NULL scope.

        If no ``__GLOBAL__`` row exists, the most recently updated NULL-scope
        row becomes it. All remaining NULL-scope rows are then deleted.

        Returns:
            Number of NULL-scope rows deleted.
        """
        rows = self._conn.execute(
            "SELECT id FROM core_checkpoints WHERE job_type = ? AND scope_id IS NULL "
            "ORDER BY updated_at DESC, id DESC",
            (job_type,),
        ).fetchall()
        if not rows:
            return 0

        if self.load_progress(job_type) is None:
            self._conn.execute(
                "UPDATE core_checkpoints SET scope_id = ?, step = ?, kind = ? WHERE id = ?",
                (GLOBAL_SCOPE, BATCH_STEP, CheckpointKind.BATCH.value, rows[0][0]),
            )
            logger.info("checkpoint.legacy_promoted", job_type=job_type, row_id=rows[0][0])

        cur = self._conn.execute(
            "DELETE FROM core_checkpoints WHERE job_type = ? AND scope_id IS NULL",
            (job_type,),
        )
        self._conn.commit()
        if cur.rowcount:
            logger.info("checkpoint.legacy_deleted", job_type=job_type, rows=cur.rowcount)
        return cur.rowcount

    # -- internal ------------------------------------------------------------

    def _upsert(
        self,
        job_type: str,
        scope_id: str,
        step: str,
        kind: CheckpointKind,
        *,
        data_json: str | None = None,
        last_processed_id: str | None = None,
        processed_count: int = 0,
        total_count: int = 0,
        errors_json: str | None = None,
        completed_at: str | None = None,
    ) -> None:
        now = to_iso8601(self._clock())
        self._conn.execute(
            _UPSERT,
            (
                job_type,
                scope_id,
                step,
                kind.value,
                data_json,
                last_processed_id,
                processed_count,
                total_count,
                errors_json,
                completed_at,
                now,
                now,
            ),
        )
        self._conn.commit()


__all__ = ["CheckpointStore"]

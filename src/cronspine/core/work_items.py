"""
Work-item repository — the engine's view of the business work queue.

Upstream business triggers (a price move, a user asking for a report, the
daily index roll) enqueue items here; the executor is the only writer of
status once an item exists.

Architecture:
    ::

        enqueue() ──▶ PENDING
                        │ mark_processing()          (write ownership)
                        ▼
                    PROCESSING ──record_attempt()──▶ PROCESSING (attempts+1)
                        │                 │
                        │ mark_completed  │ mark_failed
                        ▼                 ▼
                    COMPLETED           FAILED ──reset_failed()──▶ PENDING

Guardrails:
    ❌ DON'T: flip an item back to PENDING when the time budget runs out
    ✅ DO: leave it PROCESSING; its checkpoints carry the progress

Tags:
    work-items, queue, state-machine, repository
"""

from __future__ import annotations

import json
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any

from cronspine.core.logging import get_logger
from cronspine.core.models import PriorityClass, WorkItem, WorkItemStatus
from cronspine.core.timestamps import from_iso8601, generate_ulid, to_iso8601, utc_now

logger = get_logger(__name__)

_COLUMNS = (
    "item_id, job_type, target_key, priority, payload_json, status, attempts, "
    "error, result_id, created_at, last_processed_at, completed_at"
)

_NON_TERMINAL = (WorkItemStatus.PENDING.value, WorkItemStatus.PROCESSING.value)


def row_to_item(row: Any) -> WorkItem:
    """Build a :class:`WorkItem` from a ``core_work_items`` row."""
    return WorkItem(
        item_id=row[0],
        job_type=row[1],
        target_key=row[2],
        priority=PriorityClass(row[3]),
        payload=json.loads(row[4]) if row[4] else {},
        status=WorkItemStatus(row[5]),
        attempts=row[6],
        error=row[7],
        result_id=row[8],
        created_at=from_iso8601(row[9]),
        last_processed_at=from_iso8601(row[10]),
        completed_at=from_iso8601(row[11]),
    )


class WorkItemRepository:
    """Reads and writes ``core_work_items``.

    Args:
        conn: Connection exposing ``.execute()`` and ``.commit()``.
        dedupe_window: Recency window used by :meth:`enqueue` to fold
            duplicate requests for the same target into one item.
        clock: Source of "now" (injectable for tests).
    """

    def __init__(
        self,
        conn: Any,
        *,
        dedupe_window: timedelta = timedelta(hours=24),
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._conn = conn
        self._window = dedupe_window
        self._clock = clock

    # -- creation ------------------------------------------------------------

    def enqueue(
        self,
        job_type: str,
        target_key: str,
        *,
        priority: PriorityClass = PriorityClass.STANDARD,
        payload: dict[str, Any] | None = None,
        dedupe: bool = True,
    ) -> WorkItem:
        """Create a PENDING item, or return the in-flight one for this target.

        With ``dedupe`` enabled, a non-terminal item for the same
        ``(job_type, target_key)`` created inside the recency window is
        returned unchanged instead of inserting a new row.
        """
        now = self._clock()
        if dedupe:
            existing = self._conn.execute(
                f"SELECT {_COLUMNS} FROM core_work_items "
                "WHERE job_type = ? AND target_key = ? AND status IN (?, ?) "
                "AND created_at >= ? ORDER BY created_at LIMIT 1",
                (job_type, target_key, *_NON_TERMINAL, to_iso8601(now - self._window)),
            ).fetchone()
            if existing is not None:
                logger.debug(
                    "work_items.deduplicated", job_type=job_type, target_key=target_key
                )
                return row_to_item(existing)

        item = WorkItem(
            item_id=generate_ulid(),
            job_type=job_type,
            target_key=target_key,
            priority=PriorityClass(priority),
            payload=dict(payload or {}),
            created_at=now,
        )
        self._conn.execute(
            f"INSERT INTO core_work_items ({_COLUMNS}) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                item.item_id,
                item.job_type,
                item.target_key,
                int(item.priority),
                json.dumps(item.payload, default=str),
                item.status.value,
                0,
                None,
                None,
                to_iso8601(now),
                None,
                None,
            ),
        )
        self._conn.commit()
        logger.info(
            "work_items.enqueued",
            job_type=job_type,
            item_id=item.item_id,
            target_key=target_key,
            priority=item.priority.name,
        )
        return item

    # -- reads ---------------------------------------------------------------

    def get(self, item_id: str) -> WorkItem | None:
        row = self._conn.execute(
            f"SELECT {_COLUMNS} FROM core_work_items WHERE item_id = ?",
            (item_id,),
        ).fetchone()
        return row_to_item(row) if row else None

    def list_items(self, job_type: str, status: WorkItemStatus | None = None) -> list[WorkItem]:
        if status is None:
            rows = self._conn.execute(
                f"SELECT {_COLUMNS} FROM core_work_items WHERE job_type = ? "
                "ORDER BY created_at, item_id",
                (job_type,),
            ).fetchall()
        else:
            rows = self._conn.execute(
                f"SELECT {_COLUMNS} FROM core_work_items WHERE job_type = ? AND status = ? "
                "ORDER BY created_at, item_id",
                (job_type, status.value),
            ).fetchall()
        return [row_to_item(r) for r in rows]

    def count_by_status(self, job_type: str) -> dict[str, int]:
        rows = self._conn.execute(
            "SELECT status, COUNT(*) FROM core_work_items WHERE job_type = ? GROUP BY status",
            (job_type,),
        ).fetchall()
        counts = {s.value: 0 for s in WorkItemStatus}
        counts.update({r[0]: r[1] for r in rows})
        return counts

    # -- transitions ---------------------------------------------------------

    def mark_processing(self, item_id: str) -> bool:
        """PENDING → PROCESSING. Returns False if the item was not PENDING."""
        cur = self._conn.execute(
            "UPDATE core_work_items SET status = ?, last_processed_at = ? "
            "WHERE item_id = ? AND status = ?",
            (
                WorkItemStatus.PROCESSING.value,
                to_iso8601(self._clock()),
                item_id,
                WorkItemStatus.PENDING.value,
            ),
        )
        self._conn.commit()
        return cur.rowcount > 0

    def touch(self, item_id: str) -> None:
        """Record that the executor worked on the item in this invocation."""
        self._conn.execute(
            "UPDATE core_work_items SET last_processed_at = ? WHERE item_id = ?",
            (to_iso8601(self._clock()), item_id),
        )
        self._conn.commit()

    def record_attempt(self, item_id: str, error: str) -> int:
        """Count a retryable failure; the item stays PROCESSING.

        Returns:
            The new attempt count.
        """
        self._conn.execute(
            "UPDATE core_work_items SET attempts = attempts + 1, error = ?, "
            "last_processed_at = ? WHERE item_id = ?",
            (error, to_iso8601(self._clock()), item_id),
        )
        self._conn.commit()
        row = self._conn.execute(
            "SELECT attempts FROM core_work_items WHERE item_id = ?", (item_id,)
        ).fetchone()
        return row[0] if row else 0

    def mark_completed(self, item_id: str, result_id: str | None = None) -> None:
        now = to_iso8601(self._clock())
        self._conn.execute(
            "UPDATE core_work_items SET status = ?, result_id = ?, error = NULL, "
            "completed_at = ?, last_processed_at = ? WHERE item_id = ?",
            (WorkItemStatus.COMPLETED.value, result_id, now, now, item_id),
        )
        self._conn.commit()

    def mark_failed(self, item_id: str, error: str) -> None:
        self._conn.execute(
            "UPDATE core_work_items SET status = ?, error = ?, last_processed_at = ? "
            "WHERE item_id = ?",
            (WorkItemStatus.FAILED.value, error, to_iso8601(self._clock()), item_id),
        )
        self._conn.commit()

    def reset_failed(self, job_type: str) -> int:
        """FAILED → PENDING for every failed item of ``job_type`` (operator recovery)."""
        cur = self._conn.execute(
            "UPDATE core_work_items SET status = ?, attempts = 0, error = NULL "
            "WHERE job_type = ? AND status = ?",
            (WorkItemStatus.PENDING.value, job_type, WorkItemStatus.FAILED.value),
        )
        self._conn.commit()
        if cur.rowcount:
            logger.info("work_items.reset_failed", job_type=job_type, count=cur.rowcount)
        return cur.rowcount


__all__ = ["WorkItemRepository", "row_to_item"]

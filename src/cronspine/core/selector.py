"""
Work selector — which items the next invocation should touch, in what order.

Read-only: selection never changes an item's state.

Ordering::

    1. items owning a pending sub-task checkpoint   (finish partial work first)
    2. priority class                               (PREMIUM < STANDARD < FREE)
    3. last_processed_at, never-processed first     (staleness)
    4. created_at, then item_id                     (creation order)

Duplicate suppression: among non-terminal items for the same
``(job_type, target_key)``, an item created within the recency window
after an older non-terminal sibling is skipped. Only the oldest entry of
each burst runs a pipeline; the rest wait until it reaches a terminal
state (or fall outside the window).
"""

from __future__ import annotations

from datetime import timedelta
from typing import Any

from cronspine.core.checkpoints import CheckpointStore
from cronspine.core.models import WorkItem, WorkItemStatus
from cronspine.core.work_items import row_to_item

_CANDIDATES = (
    "SELECT item_id, job_type, target_key, priority, payload_json, status, attempts, "
    "error, result_id, created_at, last_processed_at, completed_at "
    "FROM core_work_items WHERE job_type = ? AND status IN (?, ?) "
    "ORDER BY priority, last_processed_at IS NOT NULL, last_processed_at, created_at, item_id"
)


class WorkSelector:
    """Picks the next batch of work items for a job type.

    Args:
        conn: Connection exposing ``.execute()``.
        checkpoints: Store consulted for pending sub-task checkpoints.
        recency_window: Window inside which a younger duplicate of an
            in-flight target is excluded.
    """

    def __init__(
        self,
        conn: Any,
        checkpoints: CheckpointStore,
        *,
        recency_window: timedelta = timedelta(hours=24),
    ) -> None:
        self._conn = conn
        self._checkpoints = checkpoints
        self._window = recency_window

    def next_batch(self, job_type: str, limit: int) -> list[WorkItem]:
        """Return up to ``limit`` items needing processing, in run order."""
        if limit <= 0:
            return []
        candidates = self._eligible(job_type)
        partial = self._checkpoints.scopes_with_subtasks(job_type)
        if partial:
            # stable: keeps priority/staleness order inside each group
            candidates.sort(key=lambda item: item.item_id not in partial)
        return candidates[:limit]

    def count_pending(self, job_type: str) -> int:
        """Number of items the selector would still hand out."""
        return len(self._eligible(job_type))

    # -- internal ------------------------------------------------------------

    def _eligible(self, job_type: str) -> list[WorkItem]:
        rows = self._conn.execute(
            _CANDIDATES,
            (job_type, WorkItemStatus.PENDING.value, WorkItemStatus.PROCESSING.value),
        ).fetchall()
        items = [row_to_item(r) for r in rows]
        return self._drop_duplicates(items)

    def _drop_duplicates(self, items: list[WorkItem]) -> list[WorkItem]:
        by_target: dict[str, list[WorkItem]] = {}
        for item in items:
            by_target.setdefault(item.target_key, []).append(item)

        excluded: set[str] = set()
        for siblings in by_target.values():
            if len(siblings) < 2:
                continue
            siblings = sorted(siblings, key=lambda i: (i.created_at, i.item_id))
            anchor = siblings[0]
            for sibling in siblings[1:]:
                if sibling.created_at - anchor.created_at <= self._window:
                    excluded.add(sibling.item_id)
                else:
                    anchor = sibling

        return [item for item in items if item.item_id not in excluded]


__all__ = ["WorkSelector"]

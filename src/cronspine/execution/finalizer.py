"""Finalizer — terminal side effects, exactly once per item.

Once every step of an item has a checkpoint, the finalizer hands all step
outputs to the job's ``finalize`` capability (persist the report, update the
flag, rebalance the index, notify users), then marks the item COMPLETED and
clears its checkpoints.

Safe to call twice: an item that is already COMPLETED is not finalized
again, only any leftover checkpoints are removed. The status write comes
before the checkpoint delete so a crash between them leaves a COMPLETED item
with stale checkpoints (cleaned on the next attempt) rather than a
PROCESSING item whose finished steps would all be recomputed.
"""

from __future__ import annotations

from cronspine.core.checkpoints import CheckpointStore
from cronspine.core.errors import MissingCheckpointError
from cronspine.core.logging import get_logger
from cronspine.core.models import FinalizeResult, WorkItem, WorkItemStatus
from cronspine.core.work_items import WorkItemRepository
from cronspine.execution.job import FinalizeFn
from cronspine.execution.pipeline import StepPipeline

logger = get_logger(__name__)


class Finalizer:
    """Runs a job's finalize capability and closes the item."""

    def __init__(self, items: WorkItemRepository, checkpoints: CheckpointStore) -> None:
        self._items = items
        self._checkpoints = checkpoints

    def finalize(
        self,
        pipeline: StepPipeline,
        item: WorkItem,
        finalize_fn: FinalizeFn,
    ) -> FinalizeResult | None:
        """Finalize ``item``.

        Returns:
            The job's :class:`FinalizeResult`, or ``None`` when the item was
            already COMPLETED and nothing was done.

        Raises:
            MissingCheckpointError: Some step has no checkpoint yet.
        """
        job_type = pipeline.job_type
        current = self._items.get(item.item_id) or item
        if current.status == WorkItemStatus.COMPLETED:
            removed = self._checkpoints.clear(job_type, item.item_id)
            logger.info("finalizer.already_completed", item_id=item.item_id, cleared=removed)
            return None

        outputs = pipeline.outputs(item.item_id)
        missing = [s.name for s in pipeline.steps if s.name not in outputs]
        if missing:
            raise MissingCheckpointError(
                f"cannot finalize: no checkpoint for {', '.join(missing)}"
            ).with_context(job_type=job_type, item_id=item.item_id)

        result = _normalize(finalize_fn(outputs, current))

        self._items.mark_completed(item.item_id, result.result_id)
        self._checkpoints.clear(job_type, item.item_id)
        logger.info("finalizer.completed", item_id=item.item_id, result_id=result.result_id)
        return result


def _normalize(value: FinalizeResult | str | None) -> FinalizeResult:
    if isinstance(value, FinalizeResult):
        return value
    return FinalizeResult(result_id=value)


__all__ = ["Finalizer"]

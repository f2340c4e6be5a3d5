"""Tests for cronspine.execution.pool and cronspine.execution.finalizer."""

from __future__ import annotations

import threading

import pytest

from cronspine.core.errors import MissingCheckpointError
from cronspine.core.models import FinalizeResult, WorkItemStatus
from cronspine.execution.finalizer import Finalizer
from cronspine.execution.pipeline import StepDefinition, StepPipeline
from cronspine.execution.pool import WorkerPool


class TestWorkerPool:
    def test_failure_is_isolated(self):
        def square(n: int) -> int:
            if n == 3:
                raise RuntimeError("boom")
            return n * n

        result = WorkerPool(max_workers=3).run([1, 2, 3, 4, 5], square)

        assert result.succeeded == 4
        assert result.failed == 1
        assert [i.result for i in result.items] == [1, 4, None, 16, 25]
        assert isinstance(result.items[2].error, RuntimeError)

    def test_on_done_sees_every_item(self):
        seen: list[int] = []
        lock = threading.Lock()

        def record(pool_item) -> None:
            with lock:
                seen.append(pool_item.value)

        WorkerPool(max_workers=2).run(list(range(6)), lambda n: n, on_done=record)
        assert sorted(seen) == list(range(6))

    def test_should_stop_leaves_items_pending(self):
        result = WorkerPool(max_workers=4, should_stop=lambda: True).run([1, 2, 3], lambda n: n)
        assert result.skipped == 3
        assert result.succeeded == 0

    def test_stop_after_first_item(self):
        done: list[int] = []
        result = WorkerPool(max_workers=1, should_stop=lambda: len(done) >= 1).run(
            [1, 2, 3], done.append
        )
        assert done == [1]
        assert result.succeeded == 1
        assert result.skipped == 2

    def test_empty_input(self):
        result = WorkerPool().run([], lambda n: n)
        assert result.items == []

    def test_rejects_zero_workers(self):
        with pytest.raises(ValueError):
            WorkerPool(max_workers=0)


@pytest.fixture
def pipeline(checkpoints) -> StepPipeline:
    steps = [
        StepDefinition("RESEARCH", lambda ctx: {"r": 1}),
        StepDefinition("ANALYSIS", lambda ctx: {"a": 1}, depends_on=("RESEARCH",)),
    ]
    return StepPipeline("job", steps, checkpoints)


@pytest.fixture
def finalizer(items, checkpoints) -> Finalizer:
    return Finalizer(items, checkpoints)


class TestFinalizer:
    def _checkpoint_all(self, checkpoints, item_id: str) -> None:
        checkpoints.save("job", item_id, "RESEARCH", {"r": 1})
        checkpoints.save("job", item_id, "ANALYSIS", {"a": 1})

    def test_completes_item_and_clears_checkpoints(self, finalizer, pipeline, items, checkpoints):
        item = items.enqueue("job", "company:1")
        items.mark_processing(item.item_id)
        self._checkpoint_all(checkpoints, item.item_id)
        received: list[dict] = []

        def finalize(outputs, work_item):
            received.append(outputs)
            return FinalizeResult("report-1", {"reportsGenerated": 1})

        result = finalizer.finalize(pipeline, item, finalize)

        assert result.result_id == "report-1"
        assert received == [{"RESEARCH": {"r": 1}, "ANALYSIS": {"a": 1}}]
        stored = items.get(item.item_id)
        assert stored.status == WorkItemStatus.COMPLETED
        assert stored.result_id == "report-1"
        assert checkpoints.list_steps("job", item.item_id) == {}

    def test_plain_result_id_is_accepted(self, finalizer, pipeline, items, checkpoints):
        item = items.enqueue("job", "company:1")
        self._checkpoint_all(checkpoints, item.item_id)

        result = finalizer.finalize(pipeline, item, lambda outputs, work_item: "flag-7")

        assert result == FinalizeResult(result_id="flag-7")

    def test_already_completed_is_not_finalized_again(
        self, finalizer, pipeline, items, checkpoints
    ):
        item = items.enqueue("job", "company:1")
        self._checkpoint_all(checkpoints, item.item_id)
        items.mark_completed(item.item_id, "report-1")
        calls: list[str] = []

        result = finalizer.finalize(pipeline, item, lambda o, i: calls.append("x"))

        assert result is None
        assert calls == []
        assert checkpoints.list_steps("job", item.item_id) == {}
        assert items.get(item.item_id).result_id == "report-1"

    def test_missing_step_checkpoint(self, finalizer, pipeline, items, checkpoints):
        item = items.enqueue("job", "company:1")
        checkpoints.save("job", item.item_id, "RESEARCH", {"r": 1})

        with pytest.raises(MissingCheckpointError):
            finalizer.finalize(pipeline, item, lambda o, i: "never")

        assert items.get(item.item_id).status == WorkItemStatus.PENDING
        assert checkpoints.exists("job", item.item_id, "RESEARCH")

"""Bounded worker pool — fixed slots pulling from a shared work list.

WHY
───
Some jobs spend almost all their time waiting on providers, so running a
handful of items at once fits far more work into one time budget. Each
slot catches and records its own errors: one item blowing up never
cancels or poisons its siblings.

ARCHITECTURE
────────────
::

    WorkerPool(max_workers=10, should_stop=budget.exhausted)
      ├── .run(items, fn, on_done)  ─ N slot threads share one deque
      │     slot loop:
      │       should_stop()?  → stop pulling (in-flight work finishes)
      │       item = pop left
      │       fn(item) → PoolItem(status="completed" | "failed")
      │       on_done(pool_item)
      └── PoolResult               ─ items in input order, succeeded / failed

    vs AsyncBatchExecutor-style gather: no event loop needed, handlers are
    ordinary blocking functions (sqlite, HTTP clients).

Example::

    pool = WorkerPool(max_workers=5)
    result = pool.run(tickers, refresh_quote)
    print(result.succeeded, result.failed, result.skipped)
"""

from __future__ import annotations

import threading
import uuid
from collections import deque
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Generic, TypeVar

from cronspine.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass
class PoolItem(Generic[T]):
    """One input of the pool and what happened to it."""

    index: int
    value: T
    status: str = "pending"
    result: Any = None
    error: BaseException | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def duration_seconds(self) -> float | None:
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None


@dataclass
class PoolResult(Generic[T]):
    """Aggregate result of one :meth:`WorkerPool.run`."""

    pool_id: str
    items: list[PoolItem[T]] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return sum(1 for i in self.items if i.status == "completed")

    @property
    def failed(self) -> int:
        return sum(1 for i in self.items if i.status == "failed")

    @property
    def skipped(self) -> int:
        """Items never pulled because the pool was told to stop."""
        return sum(1 for i in self.items if i.status == "pending")


class WorkerPool:
    """Fixed number of slots working through a shared list.

    Parameters
    ----------
    max_workers : int
        Number of concurrent slots (default 10).
    should_stop : callable, optional
        Checked by every slot before pulling the next item; when it
        returns True no new item is started.
    """

    def __init__(
        self,
        max_workers: int = 10,
        *,
        should_stop: Callable[[], bool] | None = None,
    ) -> None:
        if max_workers < 1:
            raise ValueError("max_workers must be >= 1")
        self._max_workers = max_workers
        self._should_stop = should_stop or (lambda: False)

    def run(
        self,
        items: Sequence[T],
        fn: Callable[[T], Any],
        on_done: Callable[[PoolItem[T]], None] | None = None,
    ) -> PoolResult[T]:
        """Run ``fn`` over ``items``; never raises for an item's failure."""
        pool_id = str(uuid.uuid4())
        pool_items = [PoolItem(index=i, value=v) for i, v in enumerate(items)]
        queue: deque[PoolItem[T]] = deque(pool_items)
        lock = threading.Lock()
        slots = min(self._max_workers, len(pool_items)) or 1

        logger.info("pool.start", pool_id=pool_id, items=len(pool_items), slots=slots)

        def _slot() -> None:
            while True:
                if self._should_stop():
                    return
                with lock:
                    if not queue:
                        return
                    pool_item = queue.popleft()
                pool_item.started_at = datetime.now(UTC)
                pool_item.status = "running"
                try:
                    pool_item.result = fn(pool_item.value)
                    pool_item.status = "completed"
                except Exception as e:
                    pool_item.status = "failed"
                    pool_item.error = e
                    logger.warning(
                        "pool.item_failed",
                        pool_id=pool_id,
                        index=pool_item.index,
                        error=str(e),
                    )
                pool_item.completed_at = datetime.now(UTC)
                if on_done is not None:
                    on_done(pool_item)

        with ThreadPoolExecutor(max_workers=slots, thread_name_prefix="cronspine-slot") as ex:
            futures = [ex.submit(_slot) for _ in range(slots)]
            for future in futures:
                future.result()

        result = PoolResult(pool_id=pool_id, items=pool_items)
        logger.info(
            "pool.complete",
            pool_id=pool_id,
            succeeded=result.succeeded,
            failed=result.failed,
            skipped=result.skipped,
        )
        return result


__all__ = ["WorkerPool", "PoolItem", "PoolResult"]

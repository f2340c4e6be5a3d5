"""
Shared pytest fixtures for cronspine tests.

This module provides:
- An in-memory SQLite connection with the engine tables
- Controllable wall and monotonic clocks
- Settings isolated from the environment
- A recording three-step job for executor scenarios

Usage:
    def test_something(executor, recording_job, mono):
        job = recording_job()
        ...
"""

from __future__ import annotations

import sys
from collections import Counter
from collections.abc import Callable, Generator
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import pytest

# Ensure cronspine package is importable
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from cronspine.core.checkpoints import CheckpointStore
from cronspine.core.schema import create_core_tables
from cronspine.core.settings import CronSpineSettings
from cronspine.core.sqlite_conn import SqliteConnection
from cronspine.core.work_items import WorkItemRepository
from cronspine.execution.executor import TimeBoxedExecutor
from cronspine.execution.job import JobDefinition
from cronspine.execution.pipeline import StepContext, StepDefinition


# =============================================================================
# Clocks
# =============================================================================


class FakeClock:
    """Wall clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        # 12:00 in Sao Paulo
        self.now = start or datetime(2026, 3, 10, 15, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class FakeMonotonic:
    """Monotonic clock driving TimeBudget in tests."""

    def __init__(self) -> None:
        self.value = 1000.0

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def mono() -> FakeMonotonic:
    return FakeMonotonic()


# =============================================================================
# Storage
# =============================================================================


@pytest.fixture
def conn() -> Generator[SqliteConnection, None, None]:
    connection = SqliteConnection(":memory:")
    create_core_tables(connection)
    yield connection
    connection.close()


@pytest.fixture
def checkpoints(conn, clock) -> CheckpointStore:
    return CheckpointStore(conn, clock=clock)


@pytest.fixture
def items(conn, clock) -> WorkItemRepository:
    return WorkItemRepository(conn, dedupe_window=timedelta(hours=24), clock=clock)


@pytest.fixture
def settings() -> CronSpineSettings:
    return CronSpineSettings(
        _env_file=None,
        database_url="memory",
        cron_secret="s3cret",
        max_execution_seconds=50,
        host_timeout_seconds=60,
        default_batch_size=5,
        max_attempts=3,
        parallel_slots=1,
    )


@pytest.fixture
def executor(conn, settings, clock, mono) -> TimeBoxedExecutor:
    return TimeBoxedExecutor(conn, settings, clock=clock, monotonic=mono)


# =============================================================================
# Recording job
# =============================================================================


class RecordingSteps:
    """Step handlers that count calls and can be told to misbehave.

    ``on_call`` hooks run inside the handler, keyed by ``(target_key, step)``;
    they may advance clocks or raise.
    """

    def __init__(self, names: tuple[str, ...]) -> None:
        self.names = names
        self.calls: Counter[tuple[str, str]] = Counter()
        self.finalized: list[str] = []
        self.on_call: dict[tuple[str, str], Callable[[], None]] = {}

    def handler(self, name: str) -> Callable[[StepContext], dict[str, Any]]:
        def run(ctx: StepContext) -> dict[str, Any]:
            key = (ctx.item.target_key, name)
            self.calls[key] += 1
            hook = self.on_call.get(key) or self.on_call.get(("*", name))
            if hook is not None:
                hook()
            return {"step": name, "target": ctx.item.target_key, "inputs": sorted(ctx.inputs)}

        return run

    def finalize(self, outputs: dict[str, Any], item) -> str:
        self.finalized.append(item.target_key)
        return f"result-{item.target_key}"

    def count(self, target: str) -> int:
        return sum(n for (t, _s), n in self.calls.items() if t == target)


@pytest.fixture
def recording_job() -> Callable[..., tuple[JobDefinition, RecordingSteps]]:
    def build(
        names: tuple[str, ...] = ("RESEARCH", "ANALYSIS", "EVALUATION"),
        **overrides: Any,
    ) -> tuple[JobDefinition, RecordingSteps]:
        rec = RecordingSteps(names)
        steps = tuple(
            StepDefinition(n, rec.handler(n), depends_on=(names[i - 1],) if i else ())
            for i, n in enumerate(names)
        )
        fields: dict[str, Any] = {"name": "test-job", "steps": steps, "finalize": rec.finalize}
        fields.update(overrides)
        return JobDefinition(**fields), rec

    return build

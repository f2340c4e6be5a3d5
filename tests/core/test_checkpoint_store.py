"""Tests for cronspine.core.checkpoints."""

from __future__ import annotations

from datetime import date

from cronspine.core.models import MAX_PROGRESS_ERRORS, BatchProgress, SubtaskProgress
from cronspine.core.timestamps import to_iso8601


class TestStepCheckpoints:
    def test_load_missing_returns_none(self, checkpoints):
        assert checkpoints.load("job", "item-1", "RESEARCH") is None
        assert not checkpoints.exists("job", "item-1", "RESEARCH")

    def test_save_then_load(self, checkpoints):
        checkpoints.save("job", "item-1", "RESEARCH", {"summary": "ok", "n": 3})
        assert checkpoints.load("job", "item-1", "RESEARCH") == {"summary": "ok", "n": 3}
        assert checkpoints.exists("job", "item-1", "RESEARCH")

    def test_save_is_idempotent(self, checkpoints, conn):
        checkpoints.save("job", "item-1", "RESEARCH", {"v": 1})
        checkpoints.save("job", "item-1", "RESEARCH", {"v": 1})
        checkpoints.save("job", "item-1", "RESEARCH", {"v": 2})

        rows = conn.execute(
            "SELECT COUNT(*) FROM core_checkpoints WHERE scope_id = ?", ("item-1",)
        ).fetchone()
        assert rows[0] == 1
        assert checkpoints.load("job", "item-1", "RESEARCH") == {"v": 2}

    def test_scopes_are_isolated_per_job(self, checkpoints):
        checkpoints.save("job-a", "item-1", "RESEARCH", {"v": "a"})
        checkpoints.save("job-b", "item-1", "RESEARCH", {"v": "b"})
        assert checkpoints.load("job-a", "item-1", "RESEARCH") == {"v": "a"}
        assert checkpoints.load("job-b", "item-1", "RESEARCH") == {"v": "b"}

    def test_list_steps(self, checkpoints):
        checkpoints.save("job", "item-1", "RESEARCH", {"r": 1})
        checkpoints.save("job", "item-1", "ANALYSIS", {"a": 1})
        checkpoints.save("job", "item-2", "RESEARCH", {"r": 2})
        assert checkpoints.list_steps("job", "item-1") == {
            "RESEARCH": {"r": 1},
            "ANALYSIS": {"a": 1},
        }

    def test_clear_removes_steps_and_subtasks_of_one_scope(self, checkpoints):
        checkpoints.save("job", "item-1", "RESEARCH", {"r": 1})
        checkpoints.save_subtask(SubtaskProgress("job", "item-1", "BACKFILL", "2026-03-02", 1, 4))
        checkpoints.save("job", "item-2", "RESEARCH", {"r": 2})

        removed = checkpoints.clear("job", "item-1")

        assert removed == 2
        assert checkpoints.list_steps("job", "item-1") == {}
        assert checkpoints.load_subtask("job", "item-1", "BACKFILL") is None
        assert checkpoints.exists("job", "item-2", "RESEARCH")


class TestSubtaskCheckpoints:
    def test_round_trip_and_scope_listing(self, checkpoints):
        checkpoints.save_subtask(SubtaskProgress("job", "item-1", "BACKFILL", "2026-03-03", 2, 5))

        loaded = checkpoints.load_subtask("job", "item-1", "BACKFILL")
        assert loaded.last_completed == "2026-03-03"
        assert loaded.processed_count == 2
        assert loaded.total_count == 5
        assert checkpoints.scopes_with_subtasks("job") == {"item-1"}

    def test_clear_subtask(self, checkpoints):
        checkpoints.save_subtask(SubtaskProgress("job", "item-1", "BACKFILL", "2026-03-03"))
        assert checkpoints.clear_subtask("job", "item-1", "BACKFILL") is True
        assert checkpoints.clear_subtask("job", "item-1", "BACKFILL") is False
        assert checkpoints.scopes_with_subtasks("job") == set()

    def test_subtask_does_not_count_as_step(self, checkpoints):
        checkpoints.save_subtask(SubtaskProgress("job", "item-1", "BACKFILL", "2026-03-03"))
        assert checkpoints.list_steps("job", "item-1") == {}

    def test_clear_subtasks_keeps_step_checkpoints(self, checkpoints):
        checkpoints.save("job", "item-1", "SCREEN", {"s": 1})
        checkpoints.save_subtask(SubtaskProgress("job", "item-1", "BACKFILL", "2026-03-03"))
        checkpoints.save_subtask(SubtaskProgress("job", "item-1", "REPRICE", "VALE3"))
        checkpoints.save_subtask(SubtaskProgress("job", "item-2", "BACKFILL", "2026-03-04"))

        assert checkpoints.clear_subtasks("job", "item-1") == 2
        assert checkpoints.load_subtask("job", "item-1", "BACKFILL") is None
        assert checkpoints.list_steps("job", "item-1") == {"SCREEN": {"s": 1}}
        assert checkpoints.scopes_with_subtasks("job") == {"item-2"}


class TestBatchProgress:
    def test_completed_at_set_only_when_counts_match(self, checkpoints, clock):
        progress = BatchProgress("job", processed_count=1, total_count=3)
        checkpoints.save_progress(progress)
        assert checkpoints.load_progress("job").completed_at is None

        progress.processed_count = 3
        checkpoints.save_progress(progress)
        assert checkpoints.load_progress("job").completed_at == clock()

    def test_zero_total_is_never_complete(self, checkpoints):
        checkpoints.save_progress(BatchProgress("job"))
        assert checkpoints.load_progress("job").completed_at is None

    def test_completion_time_survives_later_saves(self, checkpoints, clock):
        progress = BatchProgress("job", processed_count=2, total_count=2)
        checkpoints.save_progress(progress)
        first = checkpoints.load_progress("job").completed_at

        clock.advance(minutes=5)
        checkpoints.save_progress(checkpoints.load_progress("job"))

        assert checkpoints.load_progress("job").completed_at == first

    def test_completion_cleared_when_total_grows(self, checkpoints):
        progress = BatchProgress("job", processed_count=2, total_count=2)
        checkpoints.save_progress(progress)
        progress.total_count = 3
        checkpoints.save_progress(progress)
        assert checkpoints.load_progress("job").completed_at is None

    def test_errors_persist(self, checkpoints):
        progress = BatchProgress("job", total_count=2)
        progress.record("item-1", "boom")
        checkpoints.save_progress(progress)

        loaded = checkpoints.load_progress("job")
        assert loaded.processed_count == 1
        assert loaded.last_processed_item_id == "item-1"
        assert loaded.errors == ["item-1: boom"]

    def test_only_recent_errors_kept(self, checkpoints):
        progress = BatchProgress("job", total_count=70)
        for n in range(60):
            progress.record(f"item-{n}", "boom")
        progress.errors.extend(["late-1", "late-2"])
        checkpoints.save_progress(progress)

        loaded = checkpoints.load_progress("job")
        assert len(loaded.errors) == MAX_PROGRESS_ERRORS
        assert loaded.errors[0] == "item-12: boom"
        assert loaded.errors[-1] == "late-2"

    def test_seeded_day_persists(self, checkpoints):
        checkpoints.save_progress(BatchProgress("job", total_count=2, seeded_day=date(2026, 3, 10)))
        assert checkpoints.load_progress("job").seeded_day == date(2026, 3, 10)

        checkpoints.reset_progress("job")
        assert checkpoints.load_progress("job").seeded_day is None

    def test_reset_progress(self, checkpoints):
        checkpoints.save_progress(BatchProgress("job", processed_count=4, total_count=4))
        checkpoints.reset_progress("job")

        loaded = checkpoints.load_progress("job")
        assert loaded.processed_count == 0
        assert loaded.completed_at is None


class TestNullScopeMigration:
    def _insert_legacy(self, conn, clock, processed: int, updated_offset_s: int) -> None:
        stamp = to_iso8601(clock.now.replace(second=updated_offset_s))
        conn.execute(
            "INSERT INTO core_checkpoints (job_type, scope_id, step, kind, processed_count, "
            "total_count, created_at, updated_at) VALUES (?, NULL, ?, ?, ?, ?, ?, ?)",
            ("job", "__BATCH__", "batch", processed, 10, stamp, stamp),
        )
        conn.commit()

    def test_newest_legacy_row_becomes_global(self, checkpoints, conn, clock):
        self._insert_legacy(conn, clock, processed=2, updated_offset_s=1)
        self._insert_legacy(conn, clock, processed=7, updated_offset_s=30)

        removed = checkpoints.migrate_null_scope("job")

        assert removed == 1
        assert checkpoints.load_progress("job").processed_count == 7
        left = conn.execute(
            "SELECT COUNT(*) FROM core_checkpoints WHERE scope_id IS NULL"
        ).fetchone()
        assert left[0] == 0

    def test_existing_global_row_wins(self, checkpoints, conn, clock):
        checkpoints.save_progress(BatchProgress("job", processed_count=1, total_count=5))
        self._insert_legacy(conn, clock, processed=9, updated_offset_s=30)

        removed = checkpoints.migrate_null_scope("job")

        assert removed == 1
        assert checkpoints.load_progress("job").processed_count == 1

    def test_nothing_to_migrate(self, checkpoints):
        assert checkpoints.migrate_null_scope("job") == 0

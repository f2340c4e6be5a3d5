"""
Tables owned by the cron engine.

Three tables back everything the engine persists between invocations:

Architecture:
    ::

        ┌────────────────────────────────────────────────────────────┐
        │ work_items        → core_work_items                        │
        │ checkpoints       → core_checkpoints                       │
        │ concurrency_locks → core_concurrency_locks                 │
        └────────────────────────────────────────────────────────────┘

        core_checkpoints holds three kinds of row, all keyed by
        (job_type, scope_id, step, kind):

        ┌──────────┬─────────────────┬────────────────────────────────┐
        │ kind     │ scope_id        │ meaning                        │
        ├──────────┼─────────────────┼────────────────────────────────┤
        │ step     │ item id         │ durable output of one step     │
        │ subtask  │ item id         │ progress marker inside a step  │
        │ batch    │ "__GLOBAL__"    │ per-invocation BatchProgress   │
        └──────────┴─────────────────┴────────────────────────────────┘

        Legacy batch rows written with a NULL scope_id are tolerated by
        the schema (NULLs never collide in a UNIQUE index) and compacted
        by CheckpointStore.migrate_null_scope().

Tags:
    schema, ddl, sqlite, checkpoints, work-items
"""

CORE_TABLES = {
    "work_items": "core_work_items",
    "checkpoints": "core_checkpoints",
    "concurrency_locks": "core_concurrency_locks",
}


CORE_DDL = {
    # =========================================================================
    # CORE_WORK_ITEMS: One row per unit of work
    #
    # target_key groups duplicate requests for the same business target.
    # priority is an integer class: lower runs first.
    # =========================================================================
    "work_items": """
        CREATE TABLE IF NOT EXISTS core_work_items (
            item_id TEXT PRIMARY KEY,
            job_type TEXT NOT NULL,
            target_key TEXT NOT NULL,
            priority INTEGER NOT NULL DEFAULT 1,
            payload_json TEXT,
            status TEXT NOT NULL DEFAULT 'PENDING',
            attempts INTEGER NOT NULL DEFAULT 0,
            error TEXT,
            result_id TEXT,
            created_at TEXT NOT NULL,
            last_processed_at TEXT,
            completed_at TEXT
        )
    """,
    "work_items_idx_selection": """
        CREATE INDEX IF NOT EXISTS idx_core_work_items_selection
        ON core_work_items(job_type, status, priority, last_processed_at)
    """,
    "work_items_idx_target": """
        CREATE INDEX IF NOT EXISTS idx_core_work_items_target
        ON core_work_items(job_type, target_key, created_at)
    """,
    # =========================================================================
    # CORE_CHECKPOINTS: Step outputs, sub-task markers and batch progress
    # =========================================================================
    "checkpoints": """
        CREATE TABLE IF NOT EXISTS core_checkpoints (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            job_type TEXT NOT NULL,
            scope_id TEXT,
            step TEXT NOT NULL,
            kind TEXT NOT NULL DEFAULT 'step',
            data_json TEXT,
            last_processed_id TEXT,
            processed_count INTEGER NOT NULL DEFAULT 0,
            total_count INTEGER NOT NULL DEFAULT 0,
            errors_json TEXT,
            completed_at TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
    """,
    "checkpoints_idx_key": """
        CREATE UNIQUE INDEX IF NOT EXISTS idx_core_checkpoints_key
        ON core_checkpoints(job_type, scope_id, step, kind)
    """,
    # =========================================================================
    # CORE_CONCURRENCY_LOCKS: One active invocation per job type
    #
    # Locks expire automatically after their TTL.
    # =========================================================================
    "concurrency_locks": """
        CREATE TABLE IF NOT EXISTS core_concurrency_locks (
            lock_key TEXT PRIMARY KEY,
            execution_id TEXT NOT NULL,
            acquired_at TEXT NOT NULL,
            expires_at TEXT NOT NULL
        )
    """,
    "concurrency_locks_idx_expires": """
        CREATE INDEX IF NOT EXISTS idx_core_concurrency_locks_expires
        ON core_concurrency_locks(expires_at)
    """,
}


def create_core_tables(conn) -> None:
    """
    Create all engine tables.

    Safe to call multiple times (CREATE IF NOT EXISTS).
    """
    for _name, ddl in CORE_DDL.items():
        conn.execute(ddl)
    conn.commit()


__all__ = ["CORE_TABLES", "CORE_DDL", "create_core_tables"]

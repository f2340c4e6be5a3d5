"""cronspine.core -- persistence, errors, logging and settings.

Architecture::

    Layer 1 -- Types & Errors
        errors.py          CronSpineError hierarchy, BudgetExhausted
        models.py          WorkItem, BatchProgress, SubtaskProgress
        timestamps.py      ULIDs, UTC and local-day helpers

    Layer 2 -- Storage
        sqlite_conn.py     Thread-safe SQLite adapter
        connection.py      create_connection(url, init_schema)
        schema.py          DDL + create_core_tables()
        work_items.py      WorkItemRepository (enqueue, transitions)
        checkpoints.py     CheckpointStore (step / subtask / batch rows)
        selector.py        WorkSelector (priority, staleness, dedupe)

    Layer 3 -- Ambient
        logging.py         structlog configuration + context binding
        settings.py        CronSpineSettings (pydantic-settings)
"""

from cronspine.core.checkpoints import CheckpointStore
from cronspine.core.connection import create_connection
from cronspine.core.errors import (
    BudgetExhausted,
    CronSpineError,
    JobNotFoundError,
    MissingCheckpointError,
    TransientError,
    is_retryable,
)
from cronspine.core.models import (
    BatchProgress,
    FinalizeResult,
    PriorityClass,
    WorkItem,
    WorkItemStatus,
)
from cronspine.core.schema import create_core_tables
from cronspine.core.selector import WorkSelector
from cronspine.core.settings import CronSpineSettings
from cronspine.core.work_items import WorkItemRepository

__all__ = [
    "CheckpointStore",
    "create_connection",
    "create_core_tables",
    "BudgetExhausted",
    "CronSpineError",
    "JobNotFoundError",
    "MissingCheckpointError",
    "TransientError",
    "is_retryable",
    "BatchProgress",
    "FinalizeResult",
    "PriorityClass",
    "WorkItem",
    "WorkItemStatus",
    "WorkSelector",
    "CronSpineSettings",
    "WorkItemRepository",
]

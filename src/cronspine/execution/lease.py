"""Job lease — at most one active invocation per job type.

WHY
───
The engine assumes a single writer per job type: two overlapping
invocations would both select the same items and both run their steps.
A scheduler retrying a slow request can break that assumption, so the
executor takes a short-lived exclusive lease before touching anything and
releases it on the way out. If the process dies instead, the lease expires
on its own after ``ttl_seconds``.

ARCHITECTURE
────────────
::

    JobLease(conn, ttl_seconds=120)
      ├── .acquire(job_type, holder)  ─ insert-or-own, expired rows reaped
      ├── .release(job_type, holder)  ─ delete if we own it
      ├── .holder(job_type)           ─ current live holder, if any
      ├── .is_held(job_type)
      └── .cleanup_expired()

    Lock key convention: "cron:<job_type>"

Example::

    lease = JobLease(conn)
    if lease.acquire("ai-reports", execution_id):
        try:
            run_batch()
        finally:
            lease.release("ai-reports", execution_id)
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any

from cronspine.core.logging import get_logger
from cronspine.core.timestamps import from_iso8601, to_iso8601, utc_now

logger = get_logger(__name__)


def lease_key(job_type: str) -> str:
    return f"cron:{job_type}"


class JobLease:
    """Expiring exclusive lease stored in ``core_concurrency_locks``.

    Args:
        conn: Connection exposing ``.execute()`` and ``.commit()``.
        ttl_seconds: Lease lifetime; should exceed the host timeout.
        clock: Source of "now" (injectable for tests).
    """

    def __init__(
        self,
        conn: Any,
        ttl_seconds: int = 120,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._conn = conn
        self.ttl_seconds = ttl_seconds
        self._clock = clock

    def acquire(self, job_type: str, holder: str) -> bool:
        """Take the lease for ``job_type``; re-acquiring our own lease extends it.

        Returns:
            True if ``holder`` now owns the lease, False if someone else does.
        """
        key = lease_key(job_type)
        now = self._clock()
        expires_at = to_iso8601(now + timedelta(seconds=self.ttl_seconds))

        self._conn.execute(
            "DELETE FROM core_concurrency_locks WHERE lock_key = ? AND expires_at < ?",
            (key, to_iso8601(now)),
        )
        cur = self._conn.execute(
            "INSERT INTO core_concurrency_locks (lock_key, execution_id, acquired_at, expires_at) "
            "VALUES (?, ?, ?, ?) ON CONFLICT(lock_key) DO NOTHING",
            (key, holder, to_iso8601(now), expires_at),
        )
        self._conn.commit()
        if cur.rowcount > 0:
            logger.debug("lease.acquired", job_type=job_type, holder=holder)
            return True

        cur = self._conn.execute(
            "UPDATE core_concurrency_locks SET expires_at = ? "
            "WHERE lock_key = ? AND execution_id = ?",
            (expires_at, key, holder),
        )
        self._conn.commit()
        if cur.rowcount > 0:
            return True

        logger.warning("lease.held_elsewhere", job_type=job_type, holder=self.holder(job_type))
        return False

    def release(self, job_type: str, holder: str | None = None) -> bool:
        """Release the lease (only ours, when ``holder`` is given)."""
        key = lease_key(job_type)
        if holder:
            cur = self._conn.execute(
                "DELETE FROM core_concurrency_locks WHERE lock_key = ? AND execution_id = ?",
                (key, holder),
            )
        else:
            cur = self._conn.execute(
                "DELETE FROM core_concurrency_locks WHERE lock_key = ?", (key,)
            )
        self._conn.commit()
        return cur.rowcount > 0

    def holder(self, job_type: str) -> str | None:
        """Execution id holding a live lease, or None."""
        row = self._conn.execute(
            "SELECT execution_id, expires_at FROM core_concurrency_locks WHERE lock_key = ?",
            (lease_key(job_type),),
        ).fetchone()
        if row is None:
            return None
        if from_iso8601(row[1]) < self._clock():
            return None
        return row[0]

    def is_held(self, job_type: str) -> bool:
        return self.holder(job_type) is not None

    def cleanup_expired(self) -> int:
        """Delete all expired leases. Returns the number removed."""
        cur = self._conn.execute(
            "DELETE FROM core_concurrency_locks WHERE expires_at < ?",
            (to_iso8601(self._clock()),),
        )
        self._conn.commit()
        return cur.rowcount


__all__ = ["JobLease", "lease_key"]

"""
Persistence Adapter for the job store.

SQLite with WAL mode, one connection per operation.

Provides:
- Append-only job log per (tenant_id, job_type)
- At most one live job (pending/processing/retry) per (tenant_id, job_type),
  enforced by a partial unique index
- "Most recently created job" lookups for dependency resolution
- Atomic claim (pending|retry -> processing) for execution
- Recovery helpers for jobs stuck in processing
"""

import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Iterator, Optional

from .entities import (
    Job,
    JobStatus,
    LIVE_STATUSES,
    from_iso,
    to_iso,
    utc_now,
)
from .errors import (
    ConcurrencyViolationError,
    InvalidOperationError,
    JobNotFoundError,
)


# Fields update_status() may write besides status
MUTABLE_FIELDS = ("attempts", "started_at", "completed_at", "scheduled_at", "error")
_DATETIME_FIELDS = ("started_at", "completed_at", "scheduled_at")

_LIVE_SQL = ", ".join(f"'{s.value}'" for s in LIVE_STATUSES)


class PersistenceAdapter:
    """
    SQLite-based job store.

    - Does NOT contain scheduling logic
    - Does NOT decide retries
    - Only validates the live-job invariant and status transitions it owns
      (the atomic claim)
    """

    def __init__(self, db_path: str | Path):
        """
        Initialize persistence adapter.

        Args:
            db_path: Path to SQLite database file. Parent directories are
                created. Each operation opens its own connection, so an
                in-memory database would not persist between calls.
        """
        self.db_path = str(db_path)
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _get_connection(self) -> sqlite3.Connection:
        """Get a database connection with WAL mode enabled."""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        return conn

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        """Context manager for database connections."""
        conn = self._get_connection()
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Context manager for database transactions."""
        conn = self._get_connection()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self) -> None:
        """Initialize database schema."""
        with self._transaction() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS jobs (
                    id TEXT PRIMARY KEY,
                    tenant_id TEXT NOT NULL,
                    job_type TEXT NOT NULL,
                    status TEXT NOT NULL,
                    payload TEXT NOT NULL DEFAULT '{}',
                    attempts INTEGER NOT NULL DEFAULT 0,
                    max_attempts INTEGER NOT NULL DEFAULT 3,
                    created_at TEXT NOT NULL,
                    started_at TEXT,
                    completed_at TEXT,
                    scheduled_at TEXT,
                    error TEXT
                )
            """)

            # Pending work ordering
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_jobs_status_created
                ON jobs (status, created_at)
            """)

            # Latest job of a type for a tenant
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_jobs_tenant_type_created
                ON jobs (tenant_id, job_type, created_at)
            """)

            # One live job per (tenant, job type)
            conn.execute(f"""
                CREATE UNIQUE INDEX IF NOT EXISTS idx_jobs_single_live
                ON jobs (tenant_id, job_type)
                WHERE status IN ({_LIVE_SQL})
            """)

    # =========================================================================
    # Job Operations
    # =========================================================================

    def create_job(self, job: Job) -> Job:
        """
        Insert a new job.

        Raises:
            InvalidOperationError: If a live job already exists for the
                same (tenant_id, job_type)
        """
        try:
            with self._transaction() as conn:
                conn.execute(
                    """
                    INSERT INTO jobs
                    (id, tenant_id, job_type, status, payload, attempts, max_attempts,
                     created_at, started_at, completed_at, scheduled_at, error)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        job.id,
                        job.tenant_id,
                        job.job_type,
                        job.status.value,
                        json.dumps(job.payload),
                        job.attempts,
                        job.max_attempts,
                        to_iso(job.created_at),
                        to_iso(job.started_at),
                        to_iso(job.completed_at),
                        to_iso(job.scheduled_at),
                        job.error,
                    ),
                )
        except sqlite3.IntegrityError as e:
            raise InvalidOperationError(
                f"Cannot enqueue {job.job_type} for tenant {job.tenant_id}: "
                f"a live job already exists ({e})"
            ) from e
        return job

    def get_job(self, job_id: str) -> Optional[Job]:
        """Get a job by ID."""
        with self._connection() as conn:
            row = conn.execute(
                "SELECT * FROM jobs WHERE id = ?",
                (job_id,),
            ).fetchone()

        if row is None:
            return None

        return self._row_to_job(row)

    def _row_to_job(self, row: sqlite3.Row) -> Job:
        """Convert a database row to a Job entity."""
        return Job(
            id=row["id"],
            tenant_id=row["tenant_id"],
            job_type=row["job_type"],
            status=JobStatus(row["status"]),
            payload=json.loads(row["payload"]),
            attempts=row["attempts"],
            max_attempts=row["max_attempts"],
            created_at=from_iso(row["created_at"]),
            started_at=from_iso(row["started_at"]),
            completed_at=from_iso(row["completed_at"]),
            scheduled_at=from_iso(row["scheduled_at"]),
            error=row["error"],
        )

    def fetch_pending(
        self,
        job_type: Optional[str] = None,
        limit: int = 100,
        now: Optional[datetime] = None,
    ) -> list[Job]:
        """
        List jobs eligible for a scheduling pass, oldest first.

        Eligible means PENDING, or RETRY whose scheduled_at has passed.
        """
        now_str = to_iso(now or utc_now())
        query = """
            SELECT * FROM jobs
            WHERE (status = ? OR (status = ? AND (scheduled_at IS NULL OR scheduled_at <= ?)))
        """
        params: list[Any] = [JobStatus.PENDING.value, JobStatus.RETRY.value, now_str]

        if job_type is not None:
            query += " AND job_type = ?"
            params.append(job_type)

        query += " ORDER BY created_at ASC, rowid ASC LIMIT ?"
        params.append(limit)

        with self._connection() as conn:
            rows = conn.execute(query, params).fetchall()

        return [self._row_to_job(row) for row in rows]

    def fetch_latest(self, tenant_id: str, job_type: str) -> Optional[Job]:
        """Get the most recently created job of a type for a tenant."""
        with self._connection() as conn:
            row = conn.execute(
                """
                SELECT * FROM jobs
                WHERE tenant_id = ? AND job_type = ?
                ORDER BY created_at DESC, rowid DESC
                LIMIT 1
                """,
                (tenant_id, job_type),
            ).fetchone()

        if row is None:
            return None

        return self._row_to_job(row)

    def fetch_live(self, tenant_id: str, job_type: str) -> Optional[Job]:
        """Get the live job of a type for a tenant, if any."""
        with self._connection() as conn:
            row = conn.execute(
                f"""
                SELECT * FROM jobs
                WHERE tenant_id = ? AND job_type = ? AND status IN ({_LIVE_SQL})
                LIMIT 1
                """,
                (tenant_id, job_type),
            ).fetchone()

        if row is None:
            return None

        return self._row_to_job(row)

    def update_status(self, job_id: str, status: JobStatus, **fields: Any) -> Job:
        """
        Update a job's status and any of MUTABLE_FIELDS.

        Fields passed explicitly as None are cleared.

        Raises:
            JobNotFoundError: If job doesn't exist
            InvalidOperationError: If an immutable field is passed
        """
        unknown = set(fields) - set(MUTABLE_FIELDS)
        if unknown:
            raise InvalidOperationError(
                f"Cannot update immutable job fields: {', '.join(sorted(unknown))}"
            )

        updates = ["status = ?"]
        values: list[Any] = [JobStatus(status).value]

        for name, value in fields.items():
            updates.append(f"{name} = ?")
            values.append(to_iso(value) if name in _DATETIME_FIELDS else value)

        values.append(job_id)
        try:
            with self._transaction() as conn:
                cursor = conn.execute(
                    f"UPDATE jobs SET {', '.join(updates)} WHERE id = ?",
                    values,
                )
                if cursor.rowcount == 0:
                    raise JobNotFoundError(job_id)
        except sqlite3.IntegrityError as e:
            raise InvalidOperationError(
                f"Cannot move job {job_id} to {JobStatus(status).value}: "
                f"another live job exists ({e})"
            ) from e

        return self.get_job(job_id)

    def claim_job(self, job_id: str, now: Optional[datetime] = None) -> Job:
        """
        Atomically transition a job PENDING|RETRY -> PROCESSING.

        Increments attempts, sets started_at and clears scheduled_at.

        Raises:
            JobNotFoundError: If job doesn't exist
            ConcurrencyViolationError: If job is not claimable (already claimed)
        """
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE jobs
                SET status = ?, attempts = attempts + 1, started_at = ?, scheduled_at = NULL
                WHERE id = ? AND status IN (?, ?)
                """,
                (
                    JobStatus.PROCESSING.value,
                    to_iso(now or utc_now()),
                    job_id,
                    JobStatus.PENDING.value,
                    JobStatus.RETRY.value,
                ),
            )

            if cursor.rowcount == 0:
                row = conn.execute(
                    "SELECT status FROM jobs WHERE id = ?",
                    (job_id,),
                ).fetchone()

                if row is None:
                    raise JobNotFoundError(job_id)

                raise ConcurrencyViolationError(
                    job_id,
                    expected_status=f"{JobStatus.PENDING.value}|{JobStatus.RETRY.value}",
                    actual_status=row["status"],
                )

            row = conn.execute(
                "SELECT * FROM jobs WHERE id = ?",
                (job_id,),
            ).fetchone()

        return self._row_to_job(row)

    def list_jobs(self, tenant_id: Optional[str] = None, limit: int = 100) -> list[Job]:
        """List jobs, newest first, optionally for one tenant."""
        with self._connection() as conn:
            if tenant_id is None:
                rows = conn.execute(
                    "SELECT * FROM jobs ORDER BY created_at DESC, rowid DESC LIMIT ?",
                    (limit,),
                ).fetchall()
            else:
                rows = conn.execute(
                    """
                    SELECT * FROM jobs WHERE tenant_id = ?
                    ORDER BY created_at DESC, rowid DESC LIMIT ?
                    """,
                    (tenant_id, limit),
                ).fetchall()

        return [self._row_to_job(row) for row in rows]

    def count_by_status(self) -> dict[str, int]:
        """Count jobs per status. Statuses without jobs report 0."""
        counts = {status.value: 0 for status in JobStatus}
        with self._connection() as conn:
            rows = conn.execute(
                "SELECT status, COUNT(*) AS count FROM jobs GROUP BY status"
            ).fetchall()

        for row in rows:
            counts[row["status"]] = row["count"]
        return counts

    # =========================================================================
    # Recovery Operations
    # =========================================================================

    def reset_stuck_jobs(self, started_before: datetime) -> list[Job]:
        """
        Return PROCESSING jobs started before `started_before` to PENDING.

        Attempts are kept; started_at is cleared.
        """
        with self._transaction() as conn:
            rows = conn.execute(
                """
                SELECT id FROM jobs
                WHERE status = ? AND (started_at IS NULL OR started_at < ?)
                """,
                (JobStatus.PROCESSING.value, to_iso(started_before)),
            ).fetchall()
            ids = [row["id"] for row in rows]

            for job_id in ids:
                conn.execute(
                    """
                    UPDATE jobs
                    SET status = ?, started_at = NULL,
                        error = 'reset after being stuck in processing'
                    WHERE id = ? AND status = ?
                    """,
                    (JobStatus.PENDING.value, job_id, JobStatus.PROCESSING.value),
                )

        return [job for job in (self.get_job(job_id) for job_id in ids) if job is not None]

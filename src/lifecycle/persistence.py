"""
Persistence for job snapshots.

JobStore is the storage contract the lifecycle service depends on:
- load_job / create_job
- save_job with an optimistic version check (conditional write)
- idempotency records for replayed transition requests, written together
  with the snapshot they describe
- list_jobs (paged) and count_by_state for queries and analytics

Two implementations:
- InMemoryJobStore: lock-guarded dictionaries, for tests and local runs
- SQLiteJobStore: SQLite with WAL mode, for a single-host deployment

Stores do NOT contain business logic. They never decide whether a
transition is legal; they only refuse writes based on stale versions.
"""

import copy
import json
import sqlite3
import threading
from abc import ABC, abstractmethod
from collections import Counter
from contextlib import contextmanager
from pathlib import Path
from typing import Iterable, Iterator, Optional, Tuple

from .entities import HistoryEntry, Job, JobState, TransitionResult, now_iso, parse_iso
from .errors import JobNotFoundError, VersionConflictError


# (record_key, fingerprint, result)
IdempotencyRecord = Tuple[str, str, TransitionResult]


def _in_range(timestamp: str, created_from: Optional[str], created_to: Optional[str]) -> bool:
    moment = parse_iso(timestamp)
    if created_from is not None and moment < parse_iso(created_from):
        return False
    if created_to is not None and moment > parse_iso(created_to):
        return False
    return True


def idempotency_record_key(job_id: str, target_state: JobState, idempotency_key: str) -> str:
    """Storage key for a (job, target state, idempotency key) triple."""
    return f"{job_id}:{target_state.value}:{idempotency_key}"


class JobStore(ABC):
    """Storage contract for job snapshots."""

    @abstractmethod
    def create_job(self, job: Job) -> Job:
        """Persist a new job. Raises ValueError if the id already exists."""

    @abstractmethod
    def load_job(self, job_id: str) -> Job:
        """
        Load the latest snapshot of a job.

        Raises:
            JobNotFoundError: If job_id doesn't exist
        """

    @abstractmethod
    def save_job(
        self,
        job: Job,
        expected_version: int,
        idempotency: Optional[IdempotencyRecord] = None,
    ) -> Job:
        """
        Replace the stored snapshot if its version is still expected_version.

        When `idempotency` is given, the (record_key, fingerprint, result)
        record is written in the same atomic step as the snapshot.

        Raises:
            JobNotFoundError: If job_id doesn't exist
            VersionConflictError: If the stored version differs
        """

    @abstractmethod
    def list_jobs(
        self,
        states: Optional[Iterable[JobState]] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list:
        """List jobs, newest first (ties by job_id), optionally filtered by state."""

    @abstractmethod
    def count_by_state(
        self,
        created_from: Optional[str] = None,
        created_to: Optional[str] = None,
    ) -> dict:
        """
        Count jobs per state, for jobs created within [created_from, created_to].

        Bounds are ISO timestamps; either may be omitted.

        Returns:
            {JobState: count} for states with at least one job
        """

    @abstractmethod
    def get_idempotency_record(self, record_key: str) -> Optional[Tuple[str, TransitionResult]]:
        """Get (fingerprint, result) stored for a key, or None."""


# =============================================================================
# In-memory store
# =============================================================================


class InMemoryJobStore(JobStore):
    """
    Dictionary-backed store.

    A single lock serializes writes, which makes save_job's compare-and-set
    atomic across request threads. Snapshots are deep-copied on the way in
    and out so callers cannot alter stored state, nested payload values
    included.
    """

    def __init__(self):
        self._jobs: dict = {}
        self._idempotency: dict = {}
        self._lock = threading.Lock()

    @staticmethod
    def _copy(job: Job) -> Job:
        return copy.deepcopy(job)

    def create_job(self, job: Job) -> Job:
        with self._lock:
            if job.job_id in self._jobs:
                raise ValueError(f"Job already exists: {job.job_id}")
            self._jobs[job.job_id] = self._copy(job)
        return job

    def load_job(self, job_id: str) -> Job:
        with self._lock:
            job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return self._copy(job)

    def save_job(
        self,
        job: Job,
        expected_version: int,
        idempotency: Optional[IdempotencyRecord] = None,
    ) -> Job:
        with self._lock:
            stored = self._jobs.get(job.job_id)
            if stored is None:
                raise JobNotFoundError(job.job_id)
            if stored.version != expected_version:
                raise VersionConflictError(job.job_id, expected_version, stored.version)
            self._jobs[job.job_id] = self._copy(job)
            if idempotency is not None:
                self._put_idempotency_record(*idempotency)
        return job

    def list_jobs(
        self,
        states: Optional[Iterable[JobState]] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list:
        wanted = set(states) if states is not None else None
        with self._lock:
            jobs = list(self._jobs.values())
        jobs = [j for j in jobs if wanted is None or j.state in wanted]
        jobs.sort(key=lambda j: (j.created_at, j.job_id), reverse=True)
        return [self._copy(j) for j in jobs[offset:offset + limit]]

    def count_by_state(
        self,
        created_from: Optional[str] = None,
        created_to: Optional[str] = None,
    ) -> dict:
        with self._lock:
            jobs = list(self._jobs.values())
        return dict(Counter(
            j.state for j in jobs if _in_range(j.created_at, created_from, created_to)
        ))

    def get_idempotency_record(self, record_key: str) -> Optional[Tuple[str, TransitionResult]]:
        with self._lock:
            record = self._idempotency.get(record_key)
        if record is None:
            return None
        fingerprint, data = record
        return fingerprint, TransitionResult.from_dict(copy.deepcopy(data), replayed=True)

    def _put_idempotency_record(self, record_key: str, fingerprint: str, result: TransitionResult) -> None:
        # Caller holds self._lock
        if record_key not in self._idempotency:
            self._idempotency[record_key] = (fingerprint, copy.deepcopy(result.to_dict()))


# =============================================================================
# SQLite store
# =============================================================================


class SQLiteJobStore(JobStore):
    """
    SQLite-based job storage.

    - jobs: one row per job, `version` column used for the conditional write
    - job_history: one row per applied transition, keyed by (job_id, version)
    - idempotency_records: serialized TransitionResult per request key

    Each operation opens its own connection, so the store is safe to share
    between request threads. The conditional UPDATE, the history insert and
    the idempotency record run in one transaction.
    """

    def __init__(self, db_path: str | Path, timeout: float = 30.0):
        """
        Initialize the store.

        Args:
            db_path: Path to SQLite database file
            timeout: Seconds to wait on a locked database
        """
        if str(db_path) == ":memory:":
            raise ValueError("SQLiteJobStore needs a file path; use InMemoryJobStore for :memory:")
        self.db_path = str(db_path)
        self.timeout = timeout
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _get_connection(self) -> sqlite3.Connection:
        """Get a database connection with WAL mode enabled."""
        conn = sqlite3.connect(self.db_path, timeout=self.timeout)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA foreign_keys=ON")
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
        """Context manager for write transactions (takes the write lock up front)."""
        conn = self._get_connection()
        conn.isolation_level = None
        try:
            conn.execute("BEGIN IMMEDIATE")
            yield conn
            conn.execute("COMMIT")
        except Exception:
            conn.execute("ROLLBACK")
            raise
        finally:
            conn.close()

    def _init_db(self) -> None:
        """Initialize database schema."""
        with self._transaction() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS jobs (
                    job_id TEXT PRIMARY KEY,
                    customer_id TEXT NOT NULL,
                    organization_id TEXT NOT NULL,
                    technician_id TEXT,
                    state TEXT NOT NULL,
                    version INTEGER NOT NULL DEFAULT 0,
                    quality_checklist TEXT NOT NULL DEFAULT '{}',
                    attributes TEXT NOT NULL DEFAULT '{}',
                    disputed_from TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)

            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_jobs_state
                ON jobs (state, created_at)
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS job_history (
                    job_id TEXT NOT NULL,
                    version INTEGER NOT NULL,
                    from_state TEXT NOT NULL,
                    to_state TEXT NOT NULL,
                    actor_id TEXT NOT NULL,
                    actor_role TEXT NOT NULL,
                    timestamp TEXT NOT NULL,
                    reason TEXT,
                    PRIMARY KEY (job_id, version),
                    FOREIGN KEY (job_id) REFERENCES jobs(job_id)
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS idempotency_records (
                    record_key TEXT PRIMARY KEY,
                    job_id TEXT NOT NULL,
                    fingerprint TEXT NOT NULL,
                    result TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
            """)

    # =========================================================================
    # Job Operations
    # =========================================================================

    def create_job(self, job: Job) -> Job:
        """Create a new job row together with any history it carries."""
        try:
            with self._transaction() as conn:
                conn.execute(
                    """
                    INSERT INTO jobs
                    (job_id, customer_id, organization_id, technician_id, state, version,
                     quality_checklist, attributes, disputed_from, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        job.job_id,
                        job.customer_id,
                        job.organization_id,
                        job.technician_id,
                        job.state.value,
                        job.version,
                        json.dumps(job.quality_checklist),
                        json.dumps(job.attributes),
                        job.disputed_from.value if job.disputed_from else None,
                        job.created_at,
                        job.updated_at,
                    ),
                )
                self._insert_history(conn, job.job_id, job.history)
        except sqlite3.IntegrityError as e:
            raise ValueError(f"Job already exists: {job.job_id}") from e
        return job

    def load_job(self, job_id: str) -> Job:
        with self._connection() as conn:
            row = conn.execute(
                "SELECT * FROM jobs WHERE job_id = ?",
                (job_id,),
            ).fetchone()
            if row is None:
                raise JobNotFoundError(job_id)
            history_rows = conn.execute(
                "SELECT * FROM job_history WHERE job_id = ? ORDER BY version ASC",
                (job_id,),
            ).fetchall()

        return self._row_to_job(row, history_rows)

    def save_job(
        self,
        job: Job,
        expected_version: int,
        idempotency: Optional[IdempotencyRecord] = None,
    ) -> Job:
        """
        Conditionally replace a job snapshot.

        The UPDATE matches only when the stored version equals
        expected_version; new history entries (version > expected_version)
        and the optional idempotency record are written in the same
        transaction.
        """
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE jobs
                SET state = ?, version = ?, technician_id = ?, quality_checklist = ?,
                    attributes = ?, disputed_from = ?, updated_at = ?
                WHERE job_id = ? AND version = ?
                """,
                (
                    job.state.value,
                    job.version,
                    job.technician_id,
                    json.dumps(job.quality_checklist),
                    json.dumps(job.attributes),
                    job.disputed_from.value if job.disputed_from else None,
                    job.updated_at,
                    job.job_id,
                    expected_version,
                ),
            )

            if cursor.rowcount == 0:
                row = conn.execute(
                    "SELECT version FROM jobs WHERE job_id = ?",
                    (job.job_id,),
                ).fetchone()
                if row is None:
                    raise JobNotFoundError(job.job_id)
                raise VersionConflictError(job.job_id, expected_version, row["version"])

            new_entries = [e for e in job.history if e.version > expected_version]
            self._insert_history(conn, job.job_id, new_entries)

            if idempotency is not None:
                self._insert_idempotency_record(conn, *idempotency)

        return job

    def list_jobs(
        self,
        states: Optional[Iterable[JobState]] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list:
        query = "SELECT job_id FROM jobs"
        params: list = []
        if states is not None:
            state_values = [s.value for s in states]
            if not state_values:
                return []
            query += f" WHERE state IN ({', '.join('?' for _ in state_values)})"
            params.extend(state_values)
        query += " ORDER BY created_at DESC, job_id DESC LIMIT ? OFFSET ?"
        params.extend([limit, offset])

        with self._connection() as conn:
            rows = conn.execute(query, params).fetchall()

        return [self.load_job(row["job_id"]) for row in rows]

    def count_by_state(
        self,
        created_from: Optional[str] = None,
        created_to: Optional[str] = None,
    ) -> dict:
        query = "SELECT state, COUNT(*) AS total FROM jobs"
        conditions = []
        params: list = []
        if created_from is not None:
            conditions.append("julianday(created_at) >= julianday(?)")
            params.append(created_from)
        if created_to is not None:
            conditions.append("julianday(created_at) <= julianday(?)")
            params.append(created_to)
        if conditions:
            query += " WHERE " + " AND ".join(conditions)
        query += " GROUP BY state"

        with self._connection() as conn:
            rows = conn.execute(query, params).fetchall()

        return {JobState(row["state"]): row["total"] for row in rows}

    def _insert_history(self, conn: sqlite3.Connection, job_id: str, entries: Iterable[HistoryEntry]) -> None:
        conn.executemany(
            """
            INSERT INTO job_history
            (job_id, version, from_state, to_state, actor_id, actor_role, timestamp, reason)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            [
                (
                    job_id,
                    entry.version,
                    entry.from_state.value,
                    entry.to_state.value,
                    entry.actor_id,
                    entry.actor_role.value,
                    entry.timestamp,
                    entry.reason,
                )
                for entry in entries
            ],
        )

    def _row_to_job(self, row: sqlite3.Row, history_rows: list) -> Job:
        return Job.from_dict({
            "job_id": row["job_id"],
            "customer_id": row["customer_id"],
            "organization_id": row["organization_id"],
            "technician_id": row["technician_id"],
            "state": row["state"],
            "version": row["version"],
            "quality_checklist": json.loads(row["quality_checklist"]),
            "attributes": json.loads(row["attributes"]),
            "disputed_from": row["disputed_from"],
            "created_at": row["created_at"],
            "updated_at": row["updated_at"],
            "history": [dict(h) for h in history_rows],
        })

    # =========================================================================
    # Idempotency Records
    # =========================================================================

    def get_idempotency_record(self, record_key: str) -> Optional[Tuple[str, TransitionResult]]:
        with self._connection() as conn:
            row = conn.execute(
                "SELECT fingerprint, result FROM idempotency_records WHERE record_key = ?",
                (record_key,),
            ).fetchone()

        if row is None:
            return None
        return row["fingerprint"], TransitionResult.from_dict(json.loads(row["result"]), replayed=True)

    def _insert_idempotency_record(
        self,
        conn: sqlite3.Connection,
        record_key: str,
        fingerprint: str,
        result: TransitionResult,
    ) -> None:
        conn.execute(
            """
            INSERT OR IGNORE INTO idempotency_records
            (record_key, job_id, fingerprint, result, created_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (
                record_key,
                result.job.job_id,
                fingerprint,
                json.dumps(result.to_dict()),
                now_iso(),
            ),
        )

"""SQLite-backed durable store for render jobs.

Each thread gets its own connection. The database runs in WAL mode with
a busy timeout so the UI/CLI can read while the scheduler writes.
Updates of missing rows are logged and reported through the return
value, never raised.
"""

import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Generator, Iterable, List, Optional, Union

from ..core.types import (
    ACTIVE_STATUSES,
    RenderJob,
    RenderJobStatus,
    RenderType,
    utc_now,
)
from ..exceptions import JobStoreError

BUSY_TIMEOUT_MS = 5000

_JOB_COLUMNS = (
    "job_id",
    "source_path",
    "output_path",
    "render_settings",
    "render_type",
    "is_two_stage",
    "intermediate_path",
    "selected_video_tracks",
    "selected_audio_tracks",
    "in_point",
    "out_point",
    "frame_rate",
    "status",
    "created_at",
    "queued_at",
    "started_at",
    "completed_at",
    "last_updated_at",
    "progress_percentage",
    "current_frame",
    "total_frames",
    "retry_count",
    "max_retries",
    "last_error",
    "error_stack_trace",
    "process_id",
    "machine_name",
    "output_file_size_bytes",
    "intermediate_file_size_bytes",
)

StatusFilter = Union[RenderJobStatus, Iterable[RenderJobStatus]]


def _job_to_row(job: RenderJob) -> Dict[str, object]:
    row: Dict[str, object] = {name: getattr(job, name) for name in _JOB_COLUMNS}
    row["status"] = job.status.value
    row["render_type"] = job.render_type.value
    row["is_two_stage"] = int(job.is_two_stage)
    return row


def _row_to_job(row: sqlite3.Row) -> RenderJob:
    data = {name: row[name] for name in _JOB_COLUMNS}
    data["status"] = RenderJobStatus(data["status"])
    data["render_type"] = RenderType(data["render_type"])
    data["is_two_stage"] = bool(data["is_two_stage"])
    return RenderJob(id=row["id"], **data)


def _status_values(statuses: StatusFilter) -> List[str]:
    if isinstance(statuses, RenderJobStatus):
        return [statuses.value]
    return [s.value for s in statuses]


class JobStore:
    """Durable record of every render job."""

    SCHEMA_VERSION = 1

    def __init__(self, db_path: Union[str, Path], logger: Optional[logging.Logger] = None):
        """Open (and create if needed) the job database.

        Args:
            db_path: Path to the SQLite file. Must be a file, not ``:memory:``,
                since every thread opens its own connection.
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._logger = logger if logger is not None else logging.getLogger(__name__)

        self._local = threading.local()
        self._connections: List[sqlite3.Connection] = []
        self._connections_lock = threading.Lock()
        self._init_db()

    def _get_conn(self) -> sqlite3.Connection:
        """Get thread-local database connection."""
        conn = getattr(self._local, "conn", None)
        if conn is None:
            try:
                conn = sqlite3.connect(
                    str(self.db_path),
                    timeout=BUSY_TIMEOUT_MS / 1000.0,
                    check_same_thread=False,
                    isolation_level=None,  # explicit transactions only
                )
                conn.row_factory = sqlite3.Row
                conn.execute(f"PRAGMA busy_timeout={BUSY_TIMEOUT_MS}")
                conn.execute("PRAGMA journal_mode=WAL")
                conn.execute("PRAGMA synchronous=NORMAL")
            except sqlite3.Error as e:
                raise JobStoreError(f"Cannot open job database {self.db_path}: {e}", cause=e)
            self._local.conn = conn
            with self._connections_lock:
                self._connections.append(conn)
        return conn

    @contextmanager
    def _transaction(self, immediate: bool = False) -> Generator[sqlite3.Cursor, None, None]:
        """Run the block in one transaction, rolling back on any error.

        ``immediate`` takes the write lock up front so that a read followed
        by a write cannot interleave with another writer.
        """
        conn = self._get_conn()
        cursor = conn.cursor()
        try:
            cursor.execute("BEGIN IMMEDIATE" if immediate else "BEGIN")
        except sqlite3.Error as e:
            raise JobStoreError(f"Cannot begin transaction: {e}", cause=e)
        try:
            yield cursor
            cursor.execute("COMMIT")
        except sqlite3.Error as e:
            cursor.execute("ROLLBACK")
            raise JobStoreError(f"Job store transaction failed: {e}", cause=e)
        except BaseException:
            cursor.execute("ROLLBACK")
            raise

    def _query(self, sql: str, params: Iterable[object] = ()) -> List[sqlite3.Row]:
        try:
            return self._get_conn().execute(sql, tuple(params)).fetchall()
        except sqlite3.Error as e:
            raise JobStoreError(f"Job store query failed: {e}", cause=e)

    def _init_db(self) -> None:
        with self._transaction() as cursor:
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS render_jobs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    job_id TEXT NOT NULL,
                    source_path TEXT NOT NULL,
                    output_path TEXT NOT NULL,
                    render_settings TEXT DEFAULT '{}',
                    render_type TEXT NOT NULL,
                    is_two_stage INTEGER DEFAULT 0,
                    intermediate_path TEXT,
                    selected_video_tracks TEXT,
                    selected_audio_tracks TEXT,
                    in_point INTEGER,
                    out_point INTEGER,
                    frame_rate REAL DEFAULT 30.0,
                    status TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    queued_at TEXT,
                    started_at TEXT,
                    completed_at TEXT,
                    last_updated_at TEXT,
                    progress_percentage REAL DEFAULT 0,
                    current_frame INTEGER DEFAULT 0,
                    total_frames INTEGER DEFAULT 0,
                    retry_count INTEGER DEFAULT 0,
                    max_retries INTEGER DEFAULT 3,
                    last_error TEXT,
                    error_stack_trace TEXT,
                    process_id INTEGER,
                    machine_name TEXT,
                    output_file_size_bytes INTEGER,
                    intermediate_file_size_bytes INTEGER
                )
            """)

            cursor.execute(
                "CREATE UNIQUE INDEX IF NOT EXISTS idx_render_jobs_job_id ON render_jobs(job_id)"
            )
            cursor.execute(
                "CREATE INDEX IF NOT EXISTS idx_render_jobs_status ON render_jobs(status)"
            )
            cursor.execute(
                "CREATE INDEX IF NOT EXISTS idx_render_jobs_owner "
                "ON render_jobs(process_id, machine_name)"
            )
            cursor.execute(
                "CREATE INDEX IF NOT EXISTS idx_render_jobs_created ON render_jobs(created_at)"
            )

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS schema_info (
                    key TEXT PRIMARY KEY,
                    value TEXT
                )
            """)
            cursor.execute(
                "INSERT OR REPLACE INTO schema_info (key, value) VALUES (?, ?)",
                ("version", str(self.SCHEMA_VERSION)),
            )

    # Reads

    def get(self, job_id: str) -> Optional[RenderJob]:
        rows = self._query("SELECT * FROM render_jobs WHERE job_id = ?", (job_id,))
        return _row_to_job(rows[0]) if rows else None

    def get_all(self) -> List[RenderJob]:
        """All jobs, newest first."""
        rows = self._query("SELECT * FROM render_jobs ORDER BY created_at DESC, id DESC")
        return [_row_to_job(row) for row in rows]

    def get_by_status(
        self, statuses: StatusFilter, newest_first: bool = False
    ) -> List[RenderJob]:
        """Jobs in any of ``statuses``, oldest first unless ``newest_first``."""
        values = _status_values(statuses)
        if not values:
            return []
        placeholders = ", ".join("?" for _ in values)
        order = "DESC" if newest_first else "ASC"
        rows = self._query(
            f"SELECT * FROM render_jobs WHERE status IN ({placeholders}) "
            f"ORDER BY created_at {order}, id {order}",
            values,
        )
        return [_row_to_job(row) for row in rows]

    def get_active(self) -> List[RenderJob]:
        """Pending, running and paused jobs, oldest first."""
        return self.get_by_status(ACTIVE_STATUSES)

    def get_crashed(self, process_id: int, machine_name: str) -> List[RenderJob]:
        """Running jobs on this machine owned by a process other than ``process_id``."""
        rows = self._query(
            "SELECT * FROM render_jobs "
            "WHERE status = ? AND machine_name = ? "
            "AND process_id IS NOT NULL AND process_id != ? "
            "ORDER BY created_at ASC, id ASC",
            (RenderJobStatus.RUNNING.value, machine_name, process_id),
        )
        return [_row_to_job(row) for row in rows]

    def count_by_status(self) -> Dict[RenderJobStatus, int]:
        rows = self._query("SELECT status, COUNT(*) AS n FROM render_jobs GROUP BY status")
        return {RenderJobStatus(row["status"]): row["n"] for row in rows}

    # Writes

    def add(self, job: RenderJob) -> RenderJob:
        """Insert a new job and assign its storage key.

        Raises:
            JobStoreError: If a job with the same job_id already exists
        """
        now = utc_now()
        job.queued_at = job.queued_at or now
        job.last_updated_at = now
        row = _job_to_row(job)

        columns = ", ".join(_JOB_COLUMNS)
        placeholders = ", ".join(f":{name}" for name in _JOB_COLUMNS)
        with self._transaction() as cursor:
            cursor.execute(
                f"INSERT INTO render_jobs ({columns}) VALUES ({placeholders})", row
            )
            job.id = cursor.lastrowid

        self._logger.debug(f"Added job {job.job_id} ({job.render_type.value})")
        return job

    def update(
        self, job: RenderJob, expected_status: Optional[RenderJobStatus] = None
    ) -> bool:
        """Write every field of ``job``.

        Args:
            job: Job to persist, matched by job_id
            expected_status: When given, the row is only written if it is
                still in this status (compare-and-set)

        Returns:
            True if a row was written
        """
        job.last_updated_at = utc_now()
        row = _job_to_row(job)
        assignments = ", ".join(f"{name} = :{name}" for name in _JOB_COLUMNS if name != "job_id")
        sql = f"UPDATE render_jobs SET {assignments} WHERE job_id = :job_id"
        if expected_status is not None:
            sql += " AND status = :expected_status"
            row["expected_status"] = expected_status.value

        with self._transaction() as cursor:
            cursor.execute(sql, row)
            updated = cursor.rowcount

        if updated == 0:
            if expected_status is not None:
                self._logger.debug(
                    f"Job {job.job_id} not updated: no longer {expected_status.value}"
                )
            else:
                self._logger.warning(f"Update skipped, job {job.job_id} not found")
            return False
        return True

    def update_progress(self, job_id: str, percentage: float, current_frame: int) -> bool:
        """Write only the progress columns of a running job."""
        percentage = min(100.0, max(0.0, percentage))
        with self._transaction() as cursor:
            cursor.execute(
                "UPDATE render_jobs SET progress_percentage = ?, current_frame = ?, "
                "last_updated_at = ? WHERE job_id = ? AND status = ?",
                (percentage, current_frame, utc_now(), job_id, RenderJobStatus.RUNNING.value),
            )
            updated = cursor.rowcount

        if updated == 0:
            self._logger.debug(f"Progress for job {job_id} dropped: job not running")
            return False
        return True

    def claim(self, job_id: str, process_id: int, machine_name: str) -> Optional[RenderJob]:
        """Move one specific pending job to running under the caller's ownership.

        Returns:
            The claimed job, or None if it was not pending
        """
        now = utc_now()
        with self._transaction(immediate=True) as cursor:
            cursor.execute(
                "UPDATE render_jobs SET status = ?, process_id = ?, machine_name = ?, "
                "started_at = ?, last_updated_at = ? WHERE job_id = ? AND status = ?",
                (
                    RenderJobStatus.RUNNING.value,
                    process_id,
                    machine_name,
                    now,
                    now,
                    job_id,
                    RenderJobStatus.PENDING.value,
                ),
            )
            claimed = cursor.rowcount == 1
            row = None
            if claimed:
                cursor.execute("SELECT * FROM render_jobs WHERE job_id = ?", (job_id,))
                row = cursor.fetchone()

        if row is None:
            self._logger.debug(f"Job {job_id} could not be claimed: not pending")
            return None
        return _row_to_job(row)

    def claim_next_pending(self, process_id: int, machine_name: str) -> Optional[RenderJob]:
        """Atomically claim the oldest pending job.

        Returns:
            The claimed job, or None when no pending job exists
        """
        now = utc_now()
        with self._transaction(immediate=True) as cursor:
            cursor.execute(
                "SELECT id FROM render_jobs WHERE status = ? "
                "ORDER BY created_at ASC, id ASC LIMIT 1",
                (RenderJobStatus.PENDING.value,),
            )
            candidate = cursor.fetchone()
            if candidate is None:
                return None

            cursor.execute(
                "UPDATE render_jobs SET status = ?, process_id = ?, machine_name = ?, "
                "started_at = ?, last_updated_at = ? WHERE id = ? AND status = ?",
                (
                    RenderJobStatus.RUNNING.value,
                    process_id,
                    machine_name,
                    now,
                    now,
                    candidate["id"],
                    RenderJobStatus.PENDING.value,
                ),
            )
            cursor.execute("SELECT * FROM render_jobs WHERE id = ?", (candidate["id"],))
            row = cursor.fetchone()

        job = _row_to_job(row)
        self._logger.debug(f"Claimed job {job.job_id} for pid {process_id} on {machine_name}")
        return job

    def delete(self, job_id: str) -> bool:
        with self._transaction() as cursor:
            cursor.execute("DELETE FROM render_jobs WHERE job_id = ?", (job_id,))
            deleted = cursor.rowcount

        if deleted == 0:
            self._logger.warning(f"Delete skipped, job {job_id} not found")
            return False
        return True

    def delete_by_status(self, statuses: StatusFilter) -> int:
        values = _status_values(statuses)
        if not values:
            return 0
        placeholders = ", ".join("?" for _ in values)
        with self._transaction() as cursor:
            cursor.execute(
                f"DELETE FROM render_jobs WHERE status IN ({placeholders})", values
            )
            return cursor.rowcount

    def close(self) -> None:
        """Close every connection opened by this store."""
        with self._connections_lock:
            connections, self._connections = self._connections, []
        for conn in connections:
            try:
                conn.close()
            except sqlite3.Error as e:
                self._logger.debug(f"Error closing connection: {e}")
        self._local = threading.local()

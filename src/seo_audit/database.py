# src/seo_audit/database.py
"""Job store: durable upsert/read of analysis jobs."""

import json
import sqlite3
import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional
import logging

from seo_audit.exceptions import ConfigurationError
from seo_audit.models import AnalysisJob, JobStatus, TERMINAL_STATUSES

logger = logging.getLogger(__name__)

CREATE_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS analysis_jobs (
    id TEXT PRIMARY KEY,
    url TEXT NOT NULL,
    analysis_type TEXT NOT NULL,
    status TEXT NOT NULL,
    created_at TIMESTAMP NOT NULL,
    updated_at TIMESTAMP NOT NULL,
    overall_score REAL,
    custom_prompt_id TEXT,
    error TEXT,
    error_reason TEXT,

    -- JSON payloads
    expected_categories TEXT NOT NULL,
    categories TEXT NOT NULL,
    validation TEXT,
    summary TEXT,
    recommendations TEXT
);
CREATE INDEX IF NOT EXISTS idx_analysis_jobs_status ON analysis_jobs (status);
CREATE INDEX IF NOT EXISTS idx_analysis_jobs_created ON analysis_jobs (created_at);
"""

# Columns added after the first release; older databases get them on open
ADDED_COLUMNS = {
    "validation": "TEXT",
    "summary": "TEXT",
    "recommendations": "TEXT",
}

_TERMINAL_SQL_LIST = ", ".join(f"'{s.value}'" for s in sorted(TERMINAL_STATUSES, key=lambda s: s.value))

# A late write of a non-terminal state never overwrites a terminal row.
UPSERT_SQL = f"""
INSERT INTO analysis_jobs (
    id, url, analysis_type, status, created_at, updated_at, overall_score,
    custom_prompt_id, error, error_reason, expected_categories, categories,
    validation, summary, recommendations
) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
ON CONFLICT(id) DO UPDATE SET
    url = excluded.url,
    analysis_type = excluded.analysis_type,
    status = excluded.status,
    updated_at = excluded.updated_at,
    overall_score = excluded.overall_score,
    custom_prompt_id = excluded.custom_prompt_id,
    error = excluded.error,
    error_reason = excluded.error_reason,
    expected_categories = excluded.expected_categories,
    categories = excluded.categories,
    validation = excluded.validation,
    summary = excluded.summary,
    recommendations = excluded.recommendations
WHERE analysis_jobs.status NOT IN ({_TERMINAL_SQL_LIST})
   OR excluded.status IN ({_TERMINAL_SQL_LIST})
"""


class AbstractJobStore(ABC):
    """Abstract base class defining the job store interface."""

    @abstractmethod
    def close(self) -> None:
        """Close the underlying connection."""
        pass

    @abstractmethod
    def upsert_job(self, job: AnalysisJob) -> None:
        """Insert or replace a job by id. Safe to repeat with identical content."""
        pass

    @abstractmethod
    def get_job(self, job_id: str) -> Optional[AnalysisJob]:
        """Return the stored job or None."""
        pass

    @abstractmethod
    def list_jobs(
        self,
        status: Optional[JobStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[AnalysisJob]:
        """Jobs newest first, optionally filtered by status."""
        pass

    @abstractmethod
    def delete_job(self, job_id: str) -> bool:
        """Delete a job. Returns True if a row was removed."""
        pass

    @abstractmethod
    def count_by_status(self) -> Dict[str, int]:
        """Number of stored jobs per status."""
        pass


class SqliteJobStore(AbstractJobStore):
    """SQLite job store.

    The connection is shared across threads (the orchestrator writes from
    worker threads) and guarded by a lock.
    """

    def __init__(self, db_url: str):
        """Initialize the SQLite store.

        Args:
            db_url: Database URL (sqlite:///path/to/db.db or sqlite:///:memory:)
        """
        self.db_url = db_url
        self.db_path = db_url.replace("sqlite:///", "", 1)
        self.conn: Optional[sqlite3.Connection] = None
        self._lock = threading.Lock()
        self.connect()
        self.create_schema()

    def connect(self) -> None:
        """Establish SQLite connection."""
        self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        logger.debug(f"Connected to SQLite job store: {self.db_path}")

    def close(self) -> None:
        """Close SQLite connection."""
        if self.conn:
            self.conn.close()
            self.conn = None
            logger.debug("Closed SQLite job store")

    def create_schema(self) -> None:
        """Create the jobs table if it doesn't exist and add missing columns."""
        with self._lock, self.conn:
            self.conn.executescript(CREATE_TABLE_SQL)
            existing = self.get_table_columns()
            for name, column_type in ADDED_COLUMNS.items():
                if name not in existing:
                    self.conn.execute(f"ALTER TABLE analysis_jobs ADD COLUMN {name} {column_type}")
                    logger.info(f"Added column {name} to analysis_jobs")
        logger.debug("Schema verified/created for SQLite job store")

    def get_table_columns(self) -> set:
        """Get column names from the jobs table."""
        cursor = self.conn.execute("PRAGMA table_info(analysis_jobs);")
        return {row["name"] for row in cursor.fetchall()}

    def upsert_job(self, job: AnalysisJob) -> None:
        data = job.to_dict()
        params = (
            data["id"],
            data["url"],
            data["analysis_type"],
            data["status"],
            data["created_at"],
            data["updated_at"],
            data["overall_score"],
            data["custom_prompt_id"],
            data["error"],
            data["error_reason"],
            json.dumps(data["expected_categories"]),
            json.dumps(data["categories"], sort_keys=True),
            json.dumps(data["validation"], sort_keys=True) if data["validation"] else None,
            data["summary"],
            json.dumps(data["recommendations"], sort_keys=True),
        )
        with self._lock, self.conn:
            self.conn.execute(UPSERT_SQL, params)
        logger.debug(f"Upserted job {job.id} (status={job.status.value})")

    def get_job(self, job_id: str) -> Optional[AnalysisJob]:
        with self._lock:
            cursor = self.conn.execute("SELECT * FROM analysis_jobs WHERE id = ?", (job_id,))
            row = cursor.fetchone()
        return self._row_to_job(row) if row else None

    def list_jobs(
        self,
        status: Optional[JobStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[AnalysisJob]:
        query_sql = "SELECT * FROM analysis_jobs"
        params: list[Any] = []
        if status is not None:
            query_sql += " WHERE status = ?"
            params.append(status.value)
        query_sql += " ORDER BY created_at DESC, id ASC LIMIT ? OFFSET ?"
        params.extend([limit, offset])

        with self._lock:
            rows = self.conn.execute(query_sql, params).fetchall()
        return [self._row_to_job(row) for row in rows]

    def delete_job(self, job_id: str) -> bool:
        with self._lock, self.conn:
            cursor = self.conn.execute("DELETE FROM analysis_jobs WHERE id = ?", (job_id,))
        return cursor.rowcount > 0

    def count_by_status(self) -> Dict[str, int]:
        with self._lock:
            rows = self.conn.execute(
                "SELECT status, COUNT(*) AS count FROM analysis_jobs GROUP BY status"
            ).fetchall()
        return {row["status"]: row["count"] for row in rows}

    @staticmethod
    def _row_to_job(row: sqlite3.Row) -> AnalysisJob:
        return AnalysisJob.from_dict({
            "id": row["id"],
            "url": row["url"],
            "analysis_type": row["analysis_type"],
            "status": row["status"],
            "created_at": row["created_at"],
            "updated_at": row["updated_at"],
            "overall_score": row["overall_score"],
            "custom_prompt_id": row["custom_prompt_id"],
            "error": row["error"],
            "error_reason": row["error_reason"],
            "expected_categories": json.loads(row["expected_categories"]),
            "categories": json.loads(row["categories"]),
            "validation": json.loads(row["validation"]) if row["validation"] else None,
            "summary": row["summary"],
            "recommendations": json.loads(row["recommendations"] or "[]"),
        })


def get_job_store(database_url: str) -> AbstractJobStore:
    """Factory function returning the store for ``database_url``.

    Raises:
        ConfigurationError: If the URL scheme is not supported
    """
    if not database_url:
        raise ConfigurationError("DATABASE_URL is required")
    if database_url.startswith("sqlite:///"):
        logger.info(f"Using SQLite job store: {database_url}")
        return SqliteJobStore(database_url)
    raise ConfigurationError(
        f"Unsupported DATABASE_URL {database_url!r}; expected sqlite:///<path>"
    )

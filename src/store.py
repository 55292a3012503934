"""
SQLite persistence for feedback records and analysis runs.

Every operation opens its own connection, so the stores can be shared across
pipeline workers. Each write is a single transaction.
"""

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional
from uuid import uuid4

from settings import DEFAULT_DB_FILE, DASHBOARD_LIMIT
from src.models import (
    AnalysisRun,
    CATEGORIES,
    FeedbackRecord,
    RUN_STATUSES,
    STEPS,
    STEP_STATUS,
)

SCHEMA = """
CREATE TABLE IF NOT EXISTS feedback (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    raw_text TEXT NOT NULL,
    category TEXT NOT NULL,
    sentiment REAL NOT NULL,
    created_at TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS analysis_runs (
    run_id TEXT PRIMARY KEY,
    input_text TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending',
    category TEXT,
    sentiment REAL,
    record_id INTEGER REFERENCES feedback(id),
    categorize_attempts INTEGER NOT NULL DEFAULT 0,
    score_attempts INTEGER NOT NULL DEFAULT 0,
    persist_attempts INTEGER NOT NULL DEFAULT 0,
    failed_step TEXT,
    error TEXT,
    created_at TEXT NOT NULL DEFAULT (datetime('now')),
    updated_at TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE INDEX IF NOT EXISTS idx_analysis_runs_status ON analysis_runs(status);
"""


def init_db(db_path: str = DEFAULT_DB_FILE) -> None:
    """Create the database file and tables if they don't exist yet."""
    path = Path(db_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(path)
    try:
        conn.executescript(SCHEMA)
    finally:
        conn.close()


class _SQLiteStore:
    def __init__(self, db_path: str = DEFAULT_DB_FILE):
        self.db_path = str(db_path)
        init_db(self.db_path)

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        # `with conn` commits on success and rolls back on error, but never closes
        conn = sqlite3.connect(self.db_path, timeout=10.0)
        conn.row_factory = sqlite3.Row
        try:
            with conn:
                yield conn
        finally:
            conn.close()


class FeedbackStore(_SQLiteStore):
    """Append-only table of completed feedback records."""

    def append(
        self,
        raw_text: str,
        category: str,
        sentiment: float,
        run_id: Optional[str] = None,
    ) -> FeedbackRecord:
        """
        Append one record. The store assigns id and created_at.

        When run_id is given, the run is marked complete in the same transaction.
        If that run already owns a record, the existing record is returned and
        nothing is appended, so repeated persist attempts of one run produce
        exactly one row.
        """
        if category not in CATEGORIES:
            raise ValueError(f"Unknown category: {category!r}")
        if not 0.0 <= sentiment <= 1.0:
            raise ValueError(f"Sentiment out of range: {sentiment!r}")

        with self._connect() as conn:
            # Take the write lock before reading the run row
            conn.execute("BEGIN IMMEDIATE")

            if run_id is not None:
                run_row = conn.execute(
                    "SELECT status, record_id FROM analysis_runs WHERE run_id = ?", (run_id,)
                ).fetchone()
                if run_row is None:
                    raise LookupError(f"Unknown run: {run_id}")
                if run_row["record_id"] is not None:
                    existing = conn.execute(
                        "SELECT * FROM feedback WHERE id = ?", (run_row["record_id"],)
                    ).fetchone()
                    return self._row_to_record(existing)
                if run_row["status"] == "failed":
                    raise ValueError(f"Run {run_id} already failed")

            cursor = conn.execute(
                "INSERT INTO feedback (raw_text, category, sentiment) VALUES (?, ?, ?)",
                (raw_text, category, sentiment),
            )
            record_id = cursor.lastrowid

            if run_id is not None:
                conn.execute(
                    """
                    UPDATE analysis_runs
                    SET status = 'complete', category = ?, sentiment = ?, record_id = ?,
                        updated_at = datetime('now')
                    WHERE run_id = ?
                    """,
                    (category, sentiment, record_id, run_id),
                )

            row = conn.execute("SELECT * FROM feedback WHERE id = ?", (record_id,)).fetchone()
            return self._row_to_record(row)

    def get(self, record_id: int) -> Optional[FeedbackRecord]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM feedback WHERE id = ?", (record_id,)).fetchone()
        if not row:
            return None
        return self._row_to_record(row)

    def recent(self, limit: int = DASHBOARD_LIMIT) -> list[FeedbackRecord]:
        """Most recent records, newest first."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM feedback ORDER BY id DESC LIMIT ?", (limit,)
            ).fetchall()
        return [self._row_to_record(row) for row in rows]

    def _row_to_record(self, row: sqlite3.Row) -> FeedbackRecord:
        return FeedbackRecord(
            id=row["id"],
            raw_text=row["raw_text"],
            category=row["category"],
            sentiment=row["sentiment"],
            created_at=row["created_at"],
        )


class RunStore(_SQLiteStore):
    """Status bookkeeping for analysis runs. Terminal runs are never updated."""

    def create(self, text: str) -> AnalysisRun:
        run_id = uuid4().hex
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO analysis_runs (run_id, input_text) VALUES (?, ?)", (run_id, text)
            )
            row = conn.execute("SELECT * FROM analysis_runs WHERE run_id = ?", (run_id,)).fetchone()
        return self._row_to_run(row)

    def get(self, run_id: str) -> Optional[AnalysisRun]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM analysis_runs WHERE run_id = ?", (run_id,)).fetchone()
        if not row:
            return None
        return self._row_to_run(row)

    def start_step(self, run_id: str, step: str) -> bool:
        """Move a run into the step's status and count one attempt of that step."""
        if step not in STEP_STATUS:
            raise ValueError(f"Unknown step: {step!r}")

        with self._connect() as conn:
            cursor = conn.execute(
                f"""
                UPDATE analysis_runs
                SET status = ?, {step}_attempts = {step}_attempts + 1, updated_at = datetime('now')
                WHERE run_id = ? AND status NOT IN ('complete', 'failed')
                """,
                (STEP_STATUS[step], run_id),
            )
            return cursor.rowcount == 1

    def fail(self, run_id: str, step: str, reason: str) -> bool:
        """Mark a non-terminal run failed. Returns False if it was already terminal."""
        with self._connect() as conn:
            cursor = conn.execute(
                """
                UPDATE analysis_runs
                SET status = 'failed', failed_step = ?, error = ?, updated_at = datetime('now')
                WHERE run_id = ? AND status NOT IN ('complete', 'failed')
                """,
                (step, reason, run_id),
            )
            return cursor.rowcount == 1

    def cancel(self, run_id: str, reason: str = "cancelled before start") -> bool:
        """Fail a run only if none of its steps has started."""
        with self._connect() as conn:
            cursor = conn.execute(
                """
                UPDATE analysis_runs
                SET status = 'failed', failed_step = 'pending', error = ?, updated_at = datetime('now')
                WHERE run_id = ? AND status = 'pending'
                """,
                (reason, run_id),
            )
            return cursor.rowcount == 1

    def list_runs(self, status: Optional[str] = None, limit: int = 100) -> list[AnalysisRun]:
        """Runs newest first, optionally filtered by status."""
        if status is not None and status not in RUN_STATUSES:
            raise ValueError(f"Unknown status: {status!r}")

        query = "SELECT * FROM analysis_runs"
        params: list = []
        if status:
            query += " WHERE status = ?"
            params.append(status)
        query += " ORDER BY created_at DESC, rowid DESC LIMIT ?"
        params.append(limit)

        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_run(row) for row in rows]

    def unfinished(self) -> list[str]:
        """Ids of runs that were scheduled but never reached a terminal state, oldest first."""
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT run_id FROM analysis_runs
                WHERE status NOT IN ('complete', 'failed')
                ORDER BY created_at, rowid
                """
            ).fetchall()
        return [row["run_id"] for row in rows]

    def _row_to_run(self, row: sqlite3.Row) -> AnalysisRun:
        return AnalysisRun(
            run_id=row["run_id"],
            input_text=row["input_text"],
            status=row["status"],
            category=row["category"],
            sentiment=row["sentiment"],
            record_id=row["record_id"],
            attempts={step: row[f"{step}_attempts"] for step in STEPS},
            failed_step=row["failed_step"],
            error=row["error"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

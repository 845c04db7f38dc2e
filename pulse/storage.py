"""SQLite Sample Store for Activity Pulse.

This module owns every table the capture-to-insight pipeline persists. It
manages SQLite connections, initializes the schema and full-text indexes,
and provides the write, aggregate and search API used by the scheduler,
the aggregation pipeline and the retention service.

The database schema stores:
- captures: raw samples, append-only, indexed on timestamp
- activity_entries: derived narrated runs, append-only, indexed on timestamp
- daily_summaries: one row per day, upserted by day
- app_usage: one row per (day, app), duration accumulated on upsert
- captures_fts / activity_entries_fts / daily_summaries_fts: FTS5 indexes
  kept in sync by triggers

Key Features:
- Short-lived connections through a context manager
- WAL journal so readers proceed while a writer holds the lock
- Single-writer discipline: one process-local lock around every write
- Multi-step writes (read-then-write accumulation) run in one
  ``BEGIN IMMEDIATE`` transaction
- Quoted per-token FTS queries; empty queries return no rows

Example:
    >>> storage = ActivityStorage("/tmp/pulse/activity.db")
    >>> storage.insert_capture(sample)
    >>> storage.search_captures("invoice", limit=30)
"""

import logging
import os
import re
import sqlite3
import threading
from contextlib import contextmanager
from datetime import date, datetime, time, timedelta
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

from .models import ActivityEntry, AppUsage, Category, DailySummary, RawSample
from .perf import OperationCategory, PerformanceLogger

logger = logging.getLogger(__name__)


class StorageError(RuntimeError):
    """Raised when the database cannot be opened, read or written."""


SCHEMA = """
CREATE TABLE IF NOT EXISTS captures (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    id TEXT NOT NULL UNIQUE,
    timestamp REAL NOT NULL,
    app_name TEXT NOT NULL,
    bundle_identifier TEXT NOT NULL DEFAULT '',
    window_title TEXT NOT NULL DEFAULT '',
    browser_url TEXT,
    image_path TEXT NOT NULL DEFAULT '',
    ocr_text TEXT,
    ocr_confidence REAL
);
CREATE INDEX IF NOT EXISTS idx_captures_timestamp ON captures(timestamp);

CREATE TABLE IF NOT EXISTS activity_entries (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    id TEXT NOT NULL UNIQUE,
    timestamp REAL NOT NULL,
    app_name TEXT NOT NULL,
    app_icon TEXT NOT NULL DEFAULT '',
    title TEXT NOT NULL DEFAULT '',
    summary TEXT NOT NULL DEFAULT '',
    category TEXT NOT NULL,
    duration REAL NOT NULL DEFAULT 0
);
CREATE INDEX IF NOT EXISTS idx_activity_entries_timestamp ON activity_entries(timestamp);

CREATE TABLE IF NOT EXISTS daily_summaries (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    id TEXT NOT NULL UNIQUE,
    day TEXT NOT NULL UNIQUE,
    total_screen_time REAL NOT NULL DEFAULT 0,
    narrative TEXT NOT NULL DEFAULT '',
    activity_count INTEGER NOT NULL DEFAULT 0,
    productivity_score REAL NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS app_usage (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    id TEXT NOT NULL UNIQUE,
    day TEXT NOT NULL,
    app_name TEXT NOT NULL,
    app_icon TEXT NOT NULL DEFAULT '',
    duration REAL NOT NULL DEFAULT 0,
    category TEXT NOT NULL,
    UNIQUE(day, app_name)
);
CREATE INDEX IF NOT EXISTS idx_app_usage_day ON app_usage(day);

CREATE VIRTUAL TABLE IF NOT EXISTS captures_fts USING fts5(
    ocr_text, app_name, window_title,
    content='captures', content_rowid='seq',
    tokenize='porter unicode61'
);
CREATE TRIGGER IF NOT EXISTS captures_fts_ai AFTER INSERT ON captures BEGIN
    INSERT INTO captures_fts(rowid, ocr_text, app_name, window_title)
    VALUES (new.seq, new.ocr_text, new.app_name, new.window_title);
END;
CREATE TRIGGER IF NOT EXISTS captures_fts_ad AFTER DELETE ON captures BEGIN
    INSERT INTO captures_fts(captures_fts, rowid, ocr_text, app_name, window_title)
    VALUES ('delete', old.seq, old.ocr_text, old.app_name, old.window_title);
END;
CREATE TRIGGER IF NOT EXISTS captures_fts_au AFTER UPDATE ON captures BEGIN
    INSERT INTO captures_fts(captures_fts, rowid, ocr_text, app_name, window_title)
    VALUES ('delete', old.seq, old.ocr_text, old.app_name, old.window_title);
    INSERT INTO captures_fts(rowid, ocr_text, app_name, window_title)
    VALUES (new.seq, new.ocr_text, new.app_name, new.window_title);
END;

CREATE VIRTUAL TABLE IF NOT EXISTS activity_entries_fts USING fts5(
    title, summary,
    content='activity_entries', content_rowid='seq',
    tokenize='porter unicode61'
);
CREATE TRIGGER IF NOT EXISTS activity_entries_fts_ai AFTER INSERT ON activity_entries BEGIN
    INSERT INTO activity_entries_fts(rowid, title, summary)
    VALUES (new.seq, new.title, new.summary);
END;
CREATE TRIGGER IF NOT EXISTS activity_entries_fts_ad AFTER DELETE ON activity_entries BEGIN
    INSERT INTO activity_entries_fts(activity_entries_fts, rowid, title, summary)
    VALUES ('delete', old.seq, old.title, old.summary);
END;
CREATE TRIGGER IF NOT EXISTS activity_entries_fts_au AFTER UPDATE ON activity_entries BEGIN
    INSERT INTO activity_entries_fts(activity_entries_fts, rowid, title, summary)
    VALUES ('delete', old.seq, old.title, old.summary);
    INSERT INTO activity_entries_fts(rowid, title, summary)
    VALUES (new.seq, new.title, new.summary);
END;

CREATE VIRTUAL TABLE IF NOT EXISTS daily_summaries_fts USING fts5(
    narrative,
    content='daily_summaries', content_rowid='seq',
    tokenize='porter unicode61'
);
CREATE TRIGGER IF NOT EXISTS daily_summaries_fts_ai AFTER INSERT ON daily_summaries BEGIN
    INSERT INTO daily_summaries_fts(rowid, narrative) VALUES (new.seq, new.narrative);
END;
CREATE TRIGGER IF NOT EXISTS daily_summaries_fts_ad AFTER DELETE ON daily_summaries BEGIN
    INSERT INTO daily_summaries_fts(daily_summaries_fts, rowid, narrative)
    VALUES ('delete', old.seq, old.narrative);
END;
CREATE TRIGGER IF NOT EXISTS daily_summaries_fts_au AFTER UPDATE ON daily_summaries BEGIN
    INSERT INTO daily_summaries_fts(daily_summaries_fts, rowid, narrative)
    VALUES ('delete', old.seq, old.narrative);
    INSERT INTO daily_summaries_fts(rowid, narrative) VALUES (new.seq, new.narrative);
END;
"""


def _epoch(value: datetime) -> float:
    return value.timestamp()


def _day(value) -> str:
    """Normalize a date or datetime to the stored ``YYYY-MM-DD`` key."""
    if isinstance(value, datetime):
        value = value.date()
    return value.isoformat()


def build_fts_query(query: Optional[str]) -> str:
    """Turn free user input into a safe FTS5 MATCH expression.

    Each whitespace-separated token is wrapped in double quotes (embedded
    quotes doubled) so FTS5 operators in user input are matched literally.
    Tokens without any word character are dropped since the tokenizer would
    discard them anyway.

    Args:
        query: Raw user input

    Returns:
        MATCH expression, or an empty string when nothing searchable remains

    Example:
        >>> build_fts_query('foo AND bar*')
        '"foo" "AND" "bar*"'
    """
    if not query:
        return ""
    tokens = [t for t in query.split() if re.search(r"\w", t)]
    return " ".join('"' + t.replace('"', '""') + '"' for t in tokens)


class ActivityStorage:
    """SQLite interface for all persisted Activity Pulse records.

    Reads open their own short-lived connection and may run concurrently.
    Writes are serialised by ``_write_lock`` and each runs inside a single
    ``BEGIN IMMEDIATE`` transaction, so a read-then-write accumulation can
    never interleave with another writer.

    Attributes:
        db_path (str): Absolute path to the SQLite database file
        perf (PerformanceLogger): Timing sink for reads, writes and searches

    Example:
        >>> storage = ActivityStorage()
        >>> storage.upsert_app_usage(AppUsage(date.today(), "Xcode", "hammer", 60, Category.DEVELOPMENT))
        >>> storage.get_app_usage_for_day(date.today())[0].duration
        60.0
    """

    def __init__(self, db_path: str = None, perf: Optional[PerformanceLogger] = None):
        """Initialize ActivityStorage and ensure the schema exists.

        Args:
            db_path (str, optional): Path to the SQLite database file. If None,
                uses ~/activity-pulse-data/activity.db
            perf: Performance logger shared with the rest of the app. A
                private one is created when omitted.

        Raises:
            StorageError: If the data directory or database cannot be created
        """
        if db_path is None:
            db_path = Path.home() / "activity-pulse-data" / "activity.db"
        db_file = Path(db_path).expanduser()
        try:
            db_file.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Cannot create data directory {db_file.parent}: {e}") from e

        self.db_path = str(db_file)
        self.perf = perf if perf is not None else PerformanceLogger()
        self._write_lock = threading.Lock()
        self.init_db()

    @contextmanager
    def get_connection(self):
        """Context manager for SQLite database connections.

        The connection runs in autocommit mode; callers that need atomicity
        go through :meth:`_transaction`.

        Yields:
            sqlite3.Connection: Connection with Row factory enabled

        Raises:
            StorageError: If the database cannot be opened or a statement fails
        """
        try:
            conn = sqlite3.connect(self.db_path, timeout=30, isolation_level=None)
            conn.row_factory = sqlite3.Row
            try:
                conn.execute("PRAGMA synchronous=NORMAL")
                yield conn
            finally:
                conn.close()
        except (sqlite3.Error, PermissionError) as e:
            raise StorageError(f"Database access error for {self.db_path}: {e}") from e

    @contextmanager
    def _transaction(self):
        """Serialised write transaction. Rolls back on any exception."""
        with self._write_lock:
            with self.get_connection() as conn:
                conn.execute("BEGIN IMMEDIATE")
                try:
                    yield conn
                except BaseException:
                    conn.execute("ROLLBACK")
                    raise
                conn.execute("COMMIT")

    def init_db(self):
        """Create tables, indexes, FTS tables and sync triggers if missing."""
        with self._write_lock:
            with self.get_connection() as conn:
                conn.execute("PRAGMA journal_mode=WAL")
                conn.executescript(SCHEMA)
        logger.debug(f"Initialized database at {self.db_path}")

    # ------------------------------------------------------------------
    # Raw samples
    # ------------------------------------------------------------------

    def insert_capture(self, sample: RawSample) -> None:
        """Append one raw sample.

        Args:
            sample: The sample to persist. Its id must be unique.

        Raises:
            StorageError: If the write fails (disk full, duplicate id, ...)
        """
        with self.perf.measure(OperationCategory.DB_WRITE, "insert_capture"):
            with self._transaction() as conn:
                conn.execute(
                    """
                    INSERT INTO captures (id, timestamp, app_name, bundle_identifier,
                        window_title, browser_url, image_path, ocr_text, ocr_confidence)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (sample.id, _epoch(sample.timestamp), sample.app_name,
                     sample.bundle_identifier, sample.window_title, sample.browser_url,
                     sample.image_path, sample.ocr_text, sample.ocr_confidence)
                )

    def get_captures(self, start: datetime, end: datetime) -> List[RawSample]:
        """Fetch raw samples with ``start <= timestamp <= end``, newest first."""
        with self.perf.measure(OperationCategory.DB_READ, "get_captures"):
            with self.get_connection() as conn:
                rows = conn.execute(
                    """
                    SELECT * FROM captures
                    WHERE timestamp >= ? AND timestamp <= ?
                    ORDER BY timestamp DESC
                    """,
                    (_epoch(start), _epoch(end))
                ).fetchall()
        return [RawSample.from_row(r) for r in rows]

    def get_capture_count(self) -> int:
        with self.get_connection() as conn:
            return conn.execute("SELECT COUNT(*) FROM captures").fetchone()[0]

    def get_capture_paths_older_than(self, cutoff: datetime) -> List[str]:
        """Image handles of samples that :meth:`delete_captures_older_than` would remove."""
        with self.get_connection() as conn:
            rows = conn.execute(
                "SELECT image_path FROM captures WHERE timestamp < ? AND image_path != ''",
                (_epoch(cutoff),)
            ).fetchall()
        return [r["image_path"] for r in rows]

    def delete_captures_older_than(self, cutoff: datetime) -> int:
        """Delete raw samples with ``timestamp < cutoff``.

        Returns:
            Number of rows deleted
        """
        with self._transaction() as conn:
            cursor = conn.execute("DELETE FROM captures WHERE timestamp < ?", (_epoch(cutoff),))
            return cursor.rowcount

    # ------------------------------------------------------------------
    # Activity entries
    # ------------------------------------------------------------------

    def _insert_entry(self, conn, entry: ActivityEntry) -> None:
        conn.execute(
            """
            INSERT INTO activity_entries (id, timestamp, app_name, app_icon, title,
                summary, category, duration)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (entry.id, _epoch(entry.timestamp), entry.app_name, entry.app_icon,
             entry.title, entry.summary, Category.parse(entry.category).value,
             entry.duration)
        )

    def insert_activity_entry(self, entry: ActivityEntry) -> None:
        with self._transaction() as conn:
            self._insert_entry(conn, entry)

    def record_activities(self, entries: Iterable[ActivityEntry], day: date) -> List[AppUsage]:
        """Insert entries and accumulate their app usage as one atomic unit.

        Either every entry and every usage increment is committed, or none
        is. This lets the aggregation pipeline retry a failed pass without
        double-counting.

        Args:
            entries: Entries produced by one aggregation pass
            day: Day the usage rows are accumulated under

        Returns:
            The resulting AppUsage rows, one per entry, in entry order
        """
        results = []
        with self.perf.measure(OperationCategory.DB_WRITE, "record_activities"):
            with self._transaction() as conn:
                for entry in entries:
                    self._insert_entry(conn, entry)
                    results.append(self._accumulate_usage(conn, AppUsage(
                        day=day,
                        app_name=entry.app_name,
                        app_icon=entry.app_icon,
                        duration=entry.duration,
                        category=entry.category,
                    )))
        return results

    def get_activity_entries(self, start: datetime, end: datetime) -> List[ActivityEntry]:
        """Fetch entries with ``start <= timestamp <= end``, newest first."""
        with self.get_connection() as conn:
            rows = conn.execute(
                """
                SELECT * FROM activity_entries
                WHERE timestamp >= ? AND timestamp <= ?
                ORDER BY timestamp DESC
                """,
                (_epoch(start), _epoch(end))
            ).fetchall()
        return [ActivityEntry.from_row(r) for r in rows]

    def get_activity_entries_for_day(self, day: date) -> List[ActivityEntry]:
        """Fetch one day's entries (``[day, day + 1)``), oldest first."""
        start = datetime.combine(day, time.min)
        end = start + timedelta(days=1)
        with self.get_connection() as conn:
            rows = conn.execute(
                """
                SELECT * FROM activity_entries
                WHERE timestamp >= ? AND timestamp < ?
                ORDER BY timestamp ASC
                """,
                (_epoch(start), _epoch(end))
            ).fetchall()
        return [ActivityEntry.from_row(r) for r in rows]

    def delete_activity_entries_older_than(self, cutoff: datetime) -> int:
        with self._transaction() as conn:
            cursor = conn.execute("DELETE FROM activity_entries WHERE timestamp < ?", (_epoch(cutoff),))
            return cursor.rowcount

    # ------------------------------------------------------------------
    # Daily summaries
    # ------------------------------------------------------------------

    def upsert_daily_summary(self, summary: DailySummary) -> DailySummary:
        """Insert or replace the summary for ``summary.day``.

        An existing row keeps its id; every other column is replaced.

        Returns:
            The stored summary
        """
        day_key = _day(summary.day)
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO daily_summaries (id, day, total_screen_time, narrative,
                    activity_count, productivity_score)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(day) DO UPDATE SET
                    total_screen_time = excluded.total_screen_time,
                    narrative = excluded.narrative,
                    activity_count = excluded.activity_count,
                    productivity_score = excluded.productivity_score
                """,
                (summary.id, day_key, summary.total_screen_time, summary.narrative,
                 summary.activity_count, summary.productivity_score)
            )
            row = conn.execute("SELECT * FROM daily_summaries WHERE day = ?", (day_key,)).fetchone()
        return DailySummary.from_row(row)

    def get_daily_summary(self, day: date) -> Optional[DailySummary]:
        with self.get_connection() as conn:
            row = conn.execute("SELECT * FROM daily_summaries WHERE day = ?", (_day(day),)).fetchone()
        return DailySummary.from_row(row) if row else None

    def get_daily_summaries(self, start_day: date, end_day: date) -> List[DailySummary]:
        """Summaries with ``start_day <= day <= end_day``, newest first."""
        with self.get_connection() as conn:
            rows = conn.execute(
                "SELECT * FROM daily_summaries WHERE day >= ? AND day <= ? ORDER BY day DESC",
                (_day(start_day), _day(end_day))
            ).fetchall()
        return [DailySummary.from_row(r) for r in rows]

    def get_all_daily_summaries(self) -> List[DailySummary]:
        with self.get_connection() as conn:
            rows = conn.execute("SELECT * FROM daily_summaries ORDER BY day DESC").fetchall()
        return [DailySummary.from_row(r) for r in rows]

    def delete_daily_summaries_older_than(self, cutoff: datetime) -> int:
        """Delete summaries whose day is before the cutoff's day."""
        with self._transaction() as conn:
            cursor = conn.execute("DELETE FROM daily_summaries WHERE day < ?", (_day(cutoff),))
            return cursor.rowcount

    # ------------------------------------------------------------------
    # App usage
    # ------------------------------------------------------------------

    def _accumulate_usage(self, conn, usage: AppUsage) -> AppUsage:
        if usage.duration < 0:
            raise ValueError(f"App usage delta must be non-negative, got {usage.duration}")
        day_key = _day(usage.day)
        category = Category.parse(usage.category)
        row = conn.execute(
            "SELECT * FROM app_usage WHERE day = ? AND app_name = ?",
            (day_key, usage.app_name)
        ).fetchone()
        if row is None:
            conn.execute(
                """
                INSERT INTO app_usage (id, day, app_name, app_icon, duration, category)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (usage.id, day_key, usage.app_name, usage.app_icon, usage.duration, category.value)
            )
            return AppUsage(day=usage.day, app_name=usage.app_name, app_icon=usage.app_icon,
                            duration=usage.duration, category=category, id=usage.id)

        total = row["duration"] + usage.duration
        conn.execute(
            "UPDATE app_usage SET duration = ?, app_icon = ?, category = ? WHERE id = ?",
            (total, usage.app_icon, category.value, row["id"])
        )
        return AppUsage(day=usage.day, app_name=usage.app_name, app_icon=usage.app_icon,
                        duration=total, category=category, id=row["id"])

    def upsert_app_usage(self, usage: AppUsage) -> AppUsage:
        """Add ``usage.duration`` to the (day, app) row, creating it if needed.

        The existing duration is read and rewritten inside one transaction,
        so concurrent accumulations for the same key never lose an update.

        Args:
            usage: Usage delta; ``duration`` is added, not assigned

        Returns:
            The row after accumulation

        Raises:
            ValueError: If the delta is negative
        """
        with self._transaction() as conn:
            return self._accumulate_usage(conn, usage)

    def get_app_usage_for_day(self, day: date) -> List[AppUsage]:
        """One day's usage rows, longest duration first."""
        with self.get_connection() as conn:
            rows = conn.execute(
                "SELECT * FROM app_usage WHERE day = ? ORDER BY duration DESC",
                (_day(day),)
            ).fetchall()
        return [AppUsage.from_row(r) for r in rows]

    def get_top_apps(self, start_day: date, end_day: date, limit: int = 10) -> List[AppUsage]:
        """Apps ranked by summed duration over an inclusive day range.

        Rows are aggregated across days, so each returned AppUsage carries
        ``start_day`` as its day and a synthetic id.
        """
        with self.get_connection() as conn:
            rows = conn.execute(
                """
                SELECT app_name, MAX(app_icon) AS app_icon, MAX(category) AS category,
                       SUM(duration) AS total
                FROM app_usage
                WHERE day >= ? AND day <= ?
                GROUP BY app_name
                ORDER BY total DESC
                LIMIT ?
                """,
                (_day(start_day), _day(end_day), limit)
            ).fetchall()
        return [
            AppUsage(day=start_day, app_name=r["app_name"], app_icon=r["app_icon"],
                     duration=r["total"], category=Category.parse(r["category"]))
            for r in rows
        ]

    def delete_app_usage_older_than(self, cutoff: datetime) -> int:
        """Delete usage rows whose day is before the cutoff's day."""
        with self._transaction() as conn:
            cursor = conn.execute("DELETE FROM app_usage WHERE day < ?", (_day(cutoff),))
            return cursor.rowcount

    # ------------------------------------------------------------------
    # Aggregates
    # ------------------------------------------------------------------

    def get_total_screen_time(self, day: date) -> float:
        return self.get_total_screen_time_in_range(day, day)

    def get_total_screen_time_in_range(self, start_day: date, end_day: date) -> float:
        with self.get_connection() as conn:
            row = conn.execute(
                "SELECT COALESCE(SUM(duration), 0) FROM app_usage WHERE day >= ? AND day <= ?",
                (_day(start_day), _day(end_day))
            ).fetchone()
        return float(row[0])

    def get_category_breakdown(self, start_day: date, end_day: date) -> Dict[Category, float]:
        """Summed usage per category over an inclusive day range."""
        with self.get_connection() as conn:
            rows = conn.execute(
                """
                SELECT category, SUM(duration) AS total
                FROM app_usage
                WHERE day >= ? AND day <= ?
                GROUP BY category
                ORDER BY total DESC
                """,
                (_day(start_day), _day(end_day))
            ).fetchall()
        breakdown: Dict[Category, float] = {}
        for r in rows:
            category = Category.parse(r["category"])
            breakdown[category] = breakdown.get(category, 0.0) + r["total"]
        return breakdown

    def get_daily_totals(self, start_day: date, end_day: date) -> List[Tuple[date, float]]:
        """Per-day screen time series over an inclusive range, oldest first."""
        with self.get_connection() as conn:
            rows = conn.execute(
                """
                SELECT day, SUM(duration) AS total
                FROM app_usage
                WHERE day >= ? AND day <= ?
                GROUP BY day
                ORDER BY day ASC
                """,
                (_day(start_day), _day(end_day))
            ).fetchall()
        return [(date.fromisoformat(r["day"]), r["total"]) for r in rows]

    # ------------------------------------------------------------------
    # Full-text search
    # ------------------------------------------------------------------

    def _search(self, table: str, query: str, limit: int, label: str):
        match = build_fts_query(query)
        if not match:
            return []
        with self.perf.measure(OperationCategory.DB_SEARCH, label):
            with self.get_connection() as conn:
                return conn.execute(
                    f"""
                    SELECT {table}.*
                    FROM {table}_fts
                    JOIN {table} ON {table}.seq = {table}_fts.rowid
                    WHERE {table}_fts MATCH ?
                    ORDER BY rank
                    LIMIT ?
                    """,
                    (match, limit)
                ).fetchall()

    def search_captures(self, query: str, limit: int = 30) -> List[RawSample]:
        """Rank raw samples by OCR text, app name and window title.

        Args:
            query: Free user input; an empty or whitespace-only query
                returns no rows
            limit: Maximum number of results

        Returns:
            Matches, most relevant first
        """
        return [RawSample.from_row(r) for r in self._search("captures", query, limit, "fts_captures")]

    def search_activity_entries(self, query: str, limit: int = 50) -> List[ActivityEntry]:
        """Rank activity entries by title and summary."""
        return [ActivityEntry.from_row(r)
                for r in self._search("activity_entries", query, limit, "fts_activity_entries")]

    def search_daily_summaries(self, query: str, limit: int = 20) -> List[DailySummary]:
        """Rank daily summaries by narrative."""
        return [DailySummary.from_row(r)
                for r in self._search("daily_summaries", query, limit, "fts_daily_summaries")]

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def total_row_count(self) -> int:
        with self.get_connection() as conn:
            row = conn.execute(
                """
                SELECT (SELECT COUNT(*) FROM captures)
                     + (SELECT COUNT(*) FROM activity_entries)
                     + (SELECT COUNT(*) FROM daily_summaries)
                     + (SELECT COUNT(*) FROM app_usage)
                """
            ).fetchone()
        return row[0]

    def delete_all_data(self) -> None:
        """Delete every row of every kind, index entries included, atomically."""
        with self._transaction() as conn:
            for table in ("captures", "activity_entries", "daily_summaries", "app_usage"):
                conn.execute(f"DELETE FROM {table}")
        logger.info("Deleted all stored activity data")

    def vacuum(self) -> None:
        """Rewrite the database file to reclaim space after bulk deletes.

        Needs up to twice the current file size in free disk space and holds
        the write lock for its whole duration. Only retention and purge
        callers run it, never the capture path.
        """
        with self.perf.measure(OperationCategory.RETENTION, "vacuum"):
            with self._write_lock:
                with self.get_connection() as conn:
                    conn.execute("VACUUM")
                    conn.execute("PRAGMA wal_checkpoint(TRUNCATE)")
        logger.info(f"Vacuumed database, size now {self.database_size_bytes()} bytes")

    def database_size_bytes(self) -> int:
        """Size of the database file plus its WAL and shared-memory files."""
        total = 0
        for suffix in ("", "-wal", "-shm"):
            path = self.db_path + suffix
            if os.path.exists(path):
                total += os.path.getsize(path)
        return total

"""
SQLite database manager for projects, translation units and jobs.
"""

import sqlite3
import json
import os
import threading
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional, Sequence


SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS projects (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL UNIQUE,
        source_path TEXT NOT NULL,
        work_dir TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'pending',
        source_language TEXT,
        target_language TEXT,
        settings JSON,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS runs (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        project_id INTEGER NOT NULL,
        status TEXT NOT NULL DEFAULT 'running',
        llm_config JSON NOT NULL,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (project_id) REFERENCES projects(id) ON DELETE CASCADE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS translation_groups (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        project_id INTEGER NOT NULL,
        group_key TEXT NOT NULL,
        position INTEGER NOT NULL,
        source_path TEXT NOT NULL,
        cursor INTEGER NOT NULL DEFAULT 0,
        unit_count INTEGER NOT NULL DEFAULT 0,
        status TEXT NOT NULL DEFAULT 'pending',
        progress INTEGER NOT NULL DEFAULT 0,
        context_summary TEXT,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        UNIQUE (project_id, group_key),
        FOREIGN KEY (project_id) REFERENCES projects(id) ON DELETE CASCADE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS translation_units (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        group_id INTEGER NOT NULL,
        unit_key TEXT NOT NULL,
        position INTEGER NOT NULL,
        protected_text TEXT NOT NULL,
        raw_markup TEXT NOT NULL,
        placeholder_map JSON NOT NULL,
        content_hash TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'pending',
        dirty INTEGER NOT NULL DEFAULT 0,
        UNIQUE (group_id, unit_key),
        UNIQUE (group_id, position),
        FOREIGN KEY (group_id) REFERENCES translation_groups(id) ON DELETE CASCADE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS block_translations (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        run_id INTEGER NOT NULL,
        unit_id INTEGER NOT NULL,
        translated_text TEXT,
        translated_markup TEXT,
        status TEXT NOT NULL,
        raw_response JSON,
        metadata JSON,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        UNIQUE (run_id, unit_id),
        FOREIGN KEY (run_id) REFERENCES runs(id) ON DELETE CASCADE,
        FOREIGN KEY (unit_id) REFERENCES translation_units(id) ON DELETE CASCADE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS jobs (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        worker TEXT NOT NULL,
        args JSON NOT NULL,
        unique_key TEXT,
        state TEXT NOT NULL DEFAULT 'available',
        attempt INTEGER NOT NULL DEFAULT 0,
        max_attempts INTEGER NOT NULL,
        scheduled_at REAL NOT NULL,
        attempted_at REAL,
        completed_at REAL,
        errors JSON NOT NULL DEFAULT '[]'
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_units_group_position ON translation_units(group_id, position)",
    "CREATE INDEX IF NOT EXISTS idx_blocks_run ON block_translations(run_id)",
    "CREATE INDEX IF NOT EXISTS idx_jobs_state ON jobs(state, scheduled_at)",
    "CREATE INDEX IF NOT EXISTS idx_jobs_unique ON jobs(unique_key, state)",
]

JSON_COLUMNS = ('settings', 'llm_config', 'placeholder_map', 'raw_response', 'metadata', 'args', 'errors')


def row_to_dict(row: Optional[sqlite3.Row]) -> Optional[Dict[str, Any]]:
    """Convert a row to a dict, decoding JSON columns."""
    if row is None:
        return None
    data = dict(row)
    for column in JSON_COLUMNS:
        if column in data and isinstance(data[column], str):
            data[column] = json.loads(data[column])
    return data


class Database:
    """
    Manages the SQLite database shared by the pipeline.
    Thread-safe for concurrent access.

    Connections run in autocommit mode; every write goes through
    :meth:`transaction`, which nests by joining the outermost transaction.
    """

    def __init__(self, db_path: str = "data/bookbatch.db"):
        """
        Initialize database connection.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path
        self._local = threading.local()
        self._lock = threading.RLock()

        # Ensure directory exists
        directory = os.path.dirname(db_path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        # Initialize schema
        self._initialize_schema()

    def _get_connection(self) -> sqlite3.Connection:
        """Get thread-local database connection."""
        if getattr(self._local, 'connection', None) is None:
            connection = sqlite3.connect(
                self.db_path,
                check_same_thread=False,
                timeout=30.0,
                isolation_level=None
            )
            connection.row_factory = sqlite3.Row
            connection.execute("PRAGMA foreign_keys = ON")
            self._local.connection = connection
            self._local.depth = 0
        return self._local.connection

    def _initialize_schema(self):
        """Create database tables if they don't exist."""
        with self.transaction() as conn:
            for statement in SCHEMA:
                conn.execute(statement)

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """
        Run a block inside one ``BEGIN IMMEDIATE`` transaction.

        Commits on success and rolls back on any exception. A nested call
        joins the enclosing transaction.
        """
        with self._lock:
            conn = self._get_connection()
            if self._local.depth > 0:
                self._local.depth += 1
                try:
                    yield conn
                finally:
                    self._local.depth -= 1
                return

            conn.execute("BEGIN IMMEDIATE")
            self._local.depth = 1
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            else:
                conn.execute("COMMIT")
            finally:
                self._local.depth = 0

    def execute(self, sql: str, params: Sequence[Any] = ()) -> sqlite3.Cursor:
        """Execute one write statement in its own (or the enclosing) transaction."""
        with self.transaction() as conn:
            return conn.execute(sql, params)

    def fetchone(self, sql: str, params: Sequence[Any] = ()) -> Optional[Dict[str, Any]]:
        with self._lock:
            return row_to_dict(self._get_connection().execute(sql, params).fetchone())

    def fetchall(self, sql: str, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
        with self._lock:
            return [row_to_dict(row) for row in self._get_connection().execute(sql, params).fetchall()]

    def close(self):
        """Close database connection."""
        if getattr(self._local, 'connection', None) is not None:
            self._local.connection.close()
            self._local.connection = None
            self._local.depth = 0


def dumps(value: Any) -> Optional[str]:
    """JSON-encode a column value, keeping None as NULL."""
    return json.dumps(value, ensure_ascii=False) if value is not None else None

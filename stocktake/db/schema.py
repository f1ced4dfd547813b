"""Database schema definitions and store lifecycle helpers."""

from __future__ import annotations

import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path

_SCHEMA_VERSION = 1

_DDL = """
CREATE TABLE IF NOT EXISTS articles (
    code TEXT PRIMARY KEY,
    internal_code TEXT NOT NULL DEFAULT '',
    description TEXT NOT NULL,
    units_per_case REAL NOT NULL DEFAULT 1,
    weighable INTEGER NOT NULL DEFAULT 0,
    weighable_by_unit INTEGER NOT NULL DEFAULT 0,
    updated_at TEXT
);

CREATE INDEX IF NOT EXISTS idx_articles_internal_code ON articles(internal_code);

CREATE TABLE IF NOT EXISTS sessions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    note TEXT NOT NULL DEFAULT '',
    kind TEXT NOT NULL DEFAULT 'plain' CHECK (kind IN ('plain', 'expiry')),
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS plain_lines (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    session_id INTEGER NOT NULL REFERENCES sessions(id) ON DELETE CASCADE,
    code TEXT NOT NULL,
    quantity REAL NOT NULL CHECK (quantity >= 0),
    updated_at TEXT NOT NULL,
    UNIQUE (session_id, code)
);

CREATE INDEX IF NOT EXISTS idx_plain_lines_session ON plain_lines(session_id);

CREATE TABLE IF NOT EXISTS expiry_lines (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    session_id INTEGER NOT NULL REFERENCES sessions(id) ON DELETE CASCADE,
    code TEXT NOT NULL,
    quantity REAL NOT NULL CHECK (quantity >= 0),
    expiry_date TEXT NOT NULL,
    lot TEXT NOT NULL DEFAULT '',
    updated_at TEXT NOT NULL,
    UNIQUE (session_id, code, expiry_date, lot)
);

CREATE INDEX IF NOT EXISTS idx_expiry_lines_session ON expiry_lines(session_id);
CREATE INDEX IF NOT EXISTS idx_expiry_lines_code ON expiry_lines(session_id, code);

CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER NOT NULL
);
"""


def now_text() -> str:
    """Local wall-clock timestamp in the format stored by every table."""
    return datetime.now().strftime("%Y-%m-%d %H:%M:%S")


def open_store(db_path: str | Path) -> sqlite3.Connection:
    """Open (or create) the database and ensure the schema is up to date.

    The returned connection is the single store handle for the process;
    pass it to ``CatalogDB`` and ``SessionDB`` and close it at shutdown.

    Args:
        db_path: Path to the SQLite database file, or ``":memory:"``.

    Returns:
        An open sqlite3.Connection with the schema applied.
    """
    if str(db_path) == ":memory:":
        conn = sqlite3.connect(":memory:")
    else:
        db_path = Path(db_path).expanduser()
        db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(db_path))
        conn.execute("PRAGMA journal_mode=WAL")

    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys=ON")

    # Check current schema version
    try:
        row = conn.execute("SELECT version FROM schema_version").fetchone()
        current_version = row["version"] if row else 0
    except sqlite3.OperationalError:
        current_version = 0

    if current_version < _SCHEMA_VERSION:
        conn.executescript(_DDL)
        conn.execute("DELETE FROM schema_version")
        conn.execute(
            "INSERT INTO schema_version (version) VALUES (?)",
            (_SCHEMA_VERSION,),
        )
        conn.commit()

    return conn


@contextmanager
def closing_store(db_path: str | Path) -> Iterator[sqlite3.Connection]:
    """Context-manager form of :func:`open_store`."""
    conn = open_store(db_path)
    try:
        yield conn
    finally:
        conn.close()

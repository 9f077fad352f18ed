"""SQLite connection and schema initialization."""

import os
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path

# Paths whose schema has been applied in this process
_schema_initialized: set[str] = set()
_schema_lock = threading.Lock()

SCHEMA_SQL = """
-- Claims (amounts stored as decimal strings)
CREATE TABLE IF NOT EXISTS claims (
    id TEXT PRIMARY KEY,
    policy_id TEXT NOT NULL,
    claimant_id TEXT,
    claimed_amount TEXT NOT NULL,
    incident_date TEXT NOT NULL,
    submission_date TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'new',
    approval_tier TEXT,
    fraud_score REAL DEFAULT 0,
    settlement_reference TEXT,
    created_at TEXT DEFAULT (datetime('now')),
    updated_at TEXT DEFAULT (datetime('now'))
);

-- Line items belong to exactly one claim
CREATE TABLE IF NOT EXISTS claim_line_items (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    claim_id TEXT NOT NULL,
    position INTEGER NOT NULL,
    description TEXT NOT NULL,
    amount TEXT NOT NULL,
    category TEXT,
    FOREIGN KEY (claim_id) REFERENCES claims(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS policies (
    id TEXT PRIMARY KEY,
    status TEXT NOT NULL,
    coverage_amount TEXT NOT NULL,
    start_date TEXT NOT NULL,
    end_date TEXT NOT NULL
);

-- Append-only audit trail
CREATE TABLE IF NOT EXISTS audit_records (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    timestamp TEXT NOT NULL,
    kind TEXT NOT NULL,
    severity TEXT NOT NULL,
    operation TEXT NOT NULL,
    claim_id TEXT,
    message TEXT,
    context TEXT
);

-- Notification outbox
CREATE TABLE IF NOT EXISTS notifications (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    subject TEXT NOT NULL,
    body TEXT,
    severity TEXT,
    context TEXT,
    created_at TEXT DEFAULT (datetime('now'))
);
CREATE INDEX IF NOT EXISTS idx_claims_policy ON claims(policy_id);
CREATE INDEX IF NOT EXISTS idx_line_items_claim ON claim_line_items(claim_id);
CREATE INDEX IF NOT EXISTS idx_audit_claim ON audit_records(claim_id);
"""


def get_db_path() -> str:
    """Return path to SQLite database from CLAIMS_DB_PATH env or default data/claims.db."""
    return os.environ.get("CLAIMS_DB_PATH", "data/claims.db")


def init_db(path: str | None = None) -> None:
    """Create tables if they do not exist."""
    db_path = path or get_db_path()
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    with sqlite3.connect(db_path) as conn:
        conn.executescript(SCHEMA_SQL)
    with _schema_lock:
        _schema_initialized.add(db_path)


def _ensure_schema(db_path: str) -> None:
    with _schema_lock:
        ready = db_path in _schema_initialized
    if not ready:
        init_db(db_path)  # CREATE IF NOT EXISTS is idempotent if two threads race here


@contextmanager
def get_connection(path: str | None = None):
    """Context manager yielding a database connection. Commits on success, rolls back on error."""
    db_path = path or get_db_path()
    _ensure_schema(db_path)
    conn = sqlite3.connect(db_path, timeout=30.0)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    try:
        yield conn
        conn.commit()
    except BaseException:
        conn.rollback()
        raise
    finally:
        conn.close()

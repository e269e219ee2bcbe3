"""
SQLite persistence for the key-value overlay backend, idempotency ledger, confirmation tokens and audit log.
"""

import sqlite3
from contextlib import contextmanager
from typing import Generator

from . import config
from .errors import BackingStoreUnavailable

REQUIRED_TABLES = ['kv', 'execute_events', 'confirm_tokens', 'audit_events']


@contextmanager
def get_db(db_path: str = None) -> Generator[sqlite3.Connection, None, None]:
    """Get a SQLite database connection.

    Connection and operational failures are surfaced as BackingStoreUnavailable
    so callers can tell a transient store outage from a logic error.
    """
    path = db_path or config.DB_PATH
    try:
        conn = sqlite3.connect(path, timeout=5.0)
    except sqlite3.Error as e:
        raise BackingStoreUnavailable(f"Database unavailable: {e}")
    try:
        yield conn
    except sqlite3.OperationalError as e:
        raise BackingStoreUnavailable(f"Database operation failed: {e}")
    finally:
        conn.close()


def init_db(db_path: str = None):
    """Initialize the database with required tables."""
    config.ensure_db_directory(db_path)
    with get_db(db_path) as conn:
        cursor = conn.cursor()

        # Overlay index and blobs live here when SHADOW_BACKEND=sqlite
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS kv (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        ''')

        # Idempotency ledger: one row per (action, idempotency_key), write-once
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS execute_events (
                event_id TEXT PRIMARY KEY,
                ts TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                action TEXT NOT NULL,
                idempotency_key TEXT NOT NULL,
                trace_id TEXT,
                status INTEGER NOT NULL,
                response_json TEXT NOT NULL,
                UNIQUE(action, idempotency_key)
            )
        ''')

        # Only sha256(token) is stored
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS confirm_tokens (
                token_hash TEXT PRIMARY KEY,
                action TEXT NOT NULL,
                idempotency_key TEXT NOT NULL,
                trace_id TEXT,
                expires_at TEXT NOT NULL,
                used_at TEXT
            )
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS audit_events (
                id TEXT PRIMARY KEY,
                ts TEXT NOT NULL,
                actor TEXT NOT NULL,
                action TEXT NOT NULL,
                details_json TEXT NOT NULL
            )
        ''')

        cursor.execute('CREATE INDEX IF NOT EXISTS idx_execute_events_ts ON execute_events(ts DESC)')
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_audit_events_ts ON audit_events(ts DESC)')

        conn.commit()


def health_check(db_path: str = None):
    """Check database health."""
    try:
        with get_db(db_path) as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT name FROM sqlite_master WHERE type='table';")
            table_names = [table[0] for table in cursor.fetchall()]
            return all(table in table_names for table in REQUIRED_TABLES)
    except Exception:
        return False

"""SQLite connection and schema shared by the ledger, roster and resolution tables."""

import contextlib
import logging
import sqlite3
from pathlib import Path

from .errors import LedgerError

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS events (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    identity TEXT NOT NULL,
    direction TEXT NOT NULL CHECK (direction IN ('enter', 'exit')),
    timestamp REAL NOT NULL,
    machine_id TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS mentors (
    name TEXT PRIMARY KEY NOT NULL
) WITHOUT ROWID;

CREATE TABLE IF NOT EXISTS students (
    name TEXT PRIMARY KEY NOT NULL
) WITHOUT ROWID;

CREATE TABLE IF NOT EXISTS resolution (
    machine_id TEXT NOT NULL,
    device_role TEXT NOT NULL,
    device_ref TEXT NOT NULL,
    PRIMARY KEY (machine_id, device_role)
) WITHOUT ROWID;

CREATE TRIGGER IF NOT EXISTS events_no_update
BEFORE UPDATE ON events
BEGIN
    SELECT RAISE(ABORT, 'events are append-only');
END;

CREATE TRIGGER IF NOT EXISTS events_no_delete
BEFORE DELETE ON events
BEGIN
    SELECT RAISE(ABORT, 'events are append-only');
END;
"""


def connect(path: str | Path | None) -> sqlite3.Connection:
    """
    Open the tracker database and make sure every table exists.

    ``None`` opens a private in-memory database. File databases use WAL
    journaling so a report can read while the tracker appends.
    """
    target = ":memory:" if path is None else str(path)
    try:
        # Transactions are managed explicitly with BEGIN/COMMIT
        conn = sqlite3.connect(target, isolation_level=None)
        if path is not None:
            conn.execute("PRAGMA journal_mode=WAL;")
            conn.execute("PRAGMA synchronous=FULL;")
        conn.executescript(SCHEMA)
    except sqlite3.Error as exc:
        raise LedgerError(f"Cannot open database {target}: {exc}") from exc
    logger.debug("Opened database %s", target)
    return conn


def checkpoint(conn: sqlite3.Connection) -> None:
    """Fold the WAL back into the main file, e.g. before copying it off the host."""
    conn.execute("PRAGMA wal_checkpoint(PASSIVE);")


def rollback(conn: sqlite3.Connection) -> None:
    # The original error is what gets reported; a failed rollback adds nothing
    with contextlib.suppress(sqlite3.Error):
        if conn.in_transaction:
            conn.execute("ROLLBACK;")

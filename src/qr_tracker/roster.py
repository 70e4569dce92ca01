"""
Read-only, time-bounded view of the roster tables.

The tracker never edits the roster while running; the ``roster`` CLI
command stands in for the manual maintenance process.
"""

import logging
import sqlite3
import time
from dataclasses import dataclass
from typing import Callable, Optional

from .errors import ConfigurationError, LedgerError

logger = logging.getLogger(__name__)

ROSTER_TABLES = {"student": "students", "mentor": "mentors"}


@dataclass(frozen=True)
class RosterSnapshot:
    students: frozenset[str]
    mentors: frozenset[str]


class RosterStore:
    """Caches the students/mentors tables for ``cache_seconds``."""

    def __init__(
        self,
        conn: sqlite3.Connection,
        cache_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._conn = conn
        self.cache_seconds = cache_seconds
        self._clock = clock
        self._snapshot: Optional[RosterSnapshot] = None
        self._loaded_at: Optional[float] = None

    def snapshot(self) -> RosterSnapshot:
        now = self._clock()
        if (
            self._snapshot is None
            or self._loaded_at is None
            or now - self._loaded_at >= self.cache_seconds
        ):
            self._snapshot = self._load()
            self._loaded_at = now
        return self._snapshot

    def invalidate(self) -> None:
        self._snapshot = None
        self._loaded_at = None

    def _load(self) -> RosterSnapshot:
        try:
            students = frozenset(
                row[0] for row in self._conn.execute("SELECT name FROM students;")
            )
            mentors = frozenset(
                row[0] for row in self._conn.execute("SELECT name FROM mentors;")
            )
        except sqlite3.Error as exc:
            raise LedgerError(f"Cannot read roster: {exc}") from exc
        logger.debug("Roster loaded: %d students, %d mentors", len(students), len(mentors))
        return RosterSnapshot(students=students, mentors=mentors)


def _table_for(role: str) -> str:
    try:
        return ROSTER_TABLES[role]
    except KeyError:
        raise ConfigurationError(
            f"Unknown roster role {role!r}; expected one of {sorted(ROSTER_TABLES)}"
        ) from None


def add_member(conn: sqlite3.Connection, name: str, role: str) -> bool:
    """Insert ``name`` into the roster; returns False when already listed."""
    if not name or not name.strip():
        raise ConfigurationError("Roster names must not be blank")
    table = _table_for(role)
    cur = conn.execute(f"INSERT OR IGNORE INTO {table} (name) VALUES (?);", (name,))
    return cur.rowcount > 0


def remove_member(conn: sqlite3.Connection, name: str, role: str) -> bool:
    table = _table_for(role)
    cur = conn.execute(f"DELETE FROM {table} WHERE name = ?;", (name,))
    return cur.rowcount > 0


def list_members(conn: sqlite3.Connection) -> list[tuple[str, str]]:
    rows = [
        (name, role)
        for role, table in ROSTER_TABLES.items()
        for (name,) in conn.execute(f"SELECT name FROM {table} ORDER BY name;")
    ]
    return sorted(rows, key=lambda r: (r[1], r[0]))

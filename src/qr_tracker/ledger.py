"""
Append-only event ledger backed by the ``events`` table.

Every accepted presence transition is written here and nothing is ever
updated or deleted; corrections are appended as compensating events.
"""

import enum
import logging
import sqlite3
from dataclasses import dataclass, replace
from typing import Iterator, Optional

from . import db
from .errors import LedgerError, LedgerWriteError

logger = logging.getLogger(__name__)


class Direction(str, enum.Enum):
    ENTER = "enter"
    EXIT = "exit"


@dataclass(frozen=True)
class PresenceEvent:
    identity: str
    direction: Direction
    timestamp: float
    machine_id: str
    seq: Optional[int] = None  # assigned by the ledger on append


class EventLedger:
    def __init__(self, conn: sqlite3.Connection, page_size: int = 500):
        self._conn = conn
        self.page_size = page_size

    def append(self, event: PresenceEvent) -> PresenceEvent:
        """
        Durably write ``event`` in its own transaction.

        Returns the stored event with its insertion sequence number. Any
        storage failure rolls the transaction back and raises
        LedgerWriteError, so an event is either fully recorded or absent.
        """
        direction = Direction(event.direction)
        try:
            self._conn.execute("BEGIN IMMEDIATE;")
            cur = self._conn.execute(
                "INSERT INTO events (identity, direction, timestamp, machine_id) "
                "VALUES (?, ?, ?, ?);",
                (event.identity, direction.value, float(event.timestamp), event.machine_id),
            )
            self._conn.execute("COMMIT;")
        except sqlite3.Error as exc:
            db.rollback(self._conn)
            raise LedgerWriteError(
                f"Failed to record {direction.value} for {event.identity}: {exc}"
            ) from exc
        stored = replace(event, direction=direction, seq=cur.lastrowid)
        logger.debug("Appended %s", stored)
        return stored

    def read_all(self) -> Iterator[PresenceEvent]:
        """
        Yield every event in insertion order.

        Rows are fetched in pages keyed on ``seq``, so a reader never holds
        a transaction open across the whole scan and events appended while
        iterating are picked up at the end. Each call starts over.
        """
        last_seq = 0
        while True:
            try:
                rows = self._conn.execute(
                    "SELECT seq, identity, direction, timestamp, machine_id "
                    "FROM events WHERE seq > ? ORDER BY seq LIMIT ?;",
                    (last_seq, self.page_size),
                ).fetchall()
            except sqlite3.Error as exc:
                raise LedgerError(f"Cannot read events: {exc}") from exc
            if not rows:
                return
            for seq, identity, direction, timestamp, machine_id in rows:
                yield PresenceEvent(
                    identity=identity,
                    direction=Direction(direction),
                    timestamp=timestamp,
                    machine_id=machine_id,
                    seq=seq,
                )
            last_seq = rows[-1][0]

    def __iter__(self) -> Iterator[PresenceEvent]:
        return self.read_all()

    def count(self) -> int:
        return self._conn.execute("SELECT COUNT(*) FROM events;").fetchone()[0]


    def last_timestamp(self, machine_id: str) -> Optional[float]:
        """Newest timestamp recorded by ``machine_id``, or None."""
        try:
            row = self._conn.execute(
                "SELECT MAX(timestamp) FROM events WHERE machine_id = ?;", (machine_id,)
            ).fetchone()
        except sqlite3.Error as exc:
            raise LedgerError(f"Cannot read events: {exc}") from exc
        return row[0]

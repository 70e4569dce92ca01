from __future__ import annotations

import sqlite3

import pytest

from qr_tracker import db
from qr_tracker.errors import LedgerWriteError
from qr_tracker.ledger import Direction, EventLedger, PresenceEvent


def _event(name: str, direction: str, ts: float, machine: str = "m1") -> PresenceEvent:
    return PresenceEvent(name, Direction(direction), ts, machine)


def test_append_then_read_preserves_order(ledger) -> None:
    written = [
        _event("Alice", "enter", 10.0),
        _event("Bob", "enter", 11.5),
        _event("Bob", "exit", 9.0),  # out of time order on purpose
        _event("Guest-3", "enter", 12.0, machine="m2"),
        _event("Alice", "exit", 13.0),
    ]
    stored = [ledger.append(e) for e in written]
    assert [s.seq for s in stored] == sorted(s.seq for s in stored)

    read = list(ledger.read_all())
    assert read == stored
    assert [(e.identity, e.direction, e.timestamp, e.machine_id) for e in read] == [
        (e.identity, e.direction, e.timestamp, e.machine_id) for e in written
    ]
    assert ledger.count() == 5


def test_read_all_is_lazy_and_restartable(conn) -> None:
    ledger = EventLedger(conn, page_size=2)
    for i in range(5):
        ledger.append(_event(f"Guest-{i}", "enter", float(i)))

    first = list(ledger.read_all())
    second = list(ledger.read_all())
    assert len(first) == 5
    assert first == second

    reader = ledger.read_all()
    assert next(reader).identity == "Guest-0"
    ledger.append(_event("Guest-late", "enter", 99.0))
    assert [e.identity for e in reader][-1] == "Guest-late"


def test_events_cannot_be_updated_or_deleted(ledger, conn) -> None:
    ledger.append(_event("Alice", "enter", 1.0))
    with pytest.raises(sqlite3.DatabaseError):
        conn.execute("UPDATE events SET direction = 'exit';")
    with pytest.raises(sqlite3.DatabaseError):
        conn.execute("DELETE FROM events;")
    assert ledger.count() == 1


def test_write_failure_is_raised_not_dropped() -> None:
    conn = db.connect(None)
    ledger = EventLedger(conn)
    conn.close()
    with pytest.raises(LedgerWriteError):
        ledger.append(_event("Alice", "enter", 1.0))


def test_invalid_direction_rejected(ledger) -> None:
    with pytest.raises(ValueError):
        ledger.append(PresenceEvent("Alice", "sideways", 1.0, "m1"))


def test_reader_sees_writes_from_another_connection(tmp_path) -> None:
    path = tmp_path / "ledger.db"
    writer = db.connect(path)
    reader = db.connect(path)
    try:
        write_ledger = EventLedger(writer)
        read_ledger = EventLedger(reader, page_size=1)

        write_ledger.append(_event("Alice", "enter", 1.0))
        iterator = read_ledger.read_all()
        assert next(iterator).identity == "Alice"

        # the writer is not blocked by a reader part-way through a scan
        write_ledger.append(_event("Bob", "enter", 2.0))
        assert [e.identity for e in iterator] == ["Bob"]
    finally:
        writer.close()
        reader.close()

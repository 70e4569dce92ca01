from __future__ import annotations

import pytest

from qr_tracker import db
from qr_tracker.identity import GuestSession, IdentityResolver
from qr_tracker.ledger import EventLedger
from qr_tracker.roster import RosterStore, add_member


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def conn():
    connection = db.connect(None)
    yield connection
    connection.close()


@pytest.fixture
def roster_conn(conn):
    add_member(conn, "Alice", "mentor")
    add_member(conn, "Carol", "mentor")
    add_member(conn, "Bob", "student")
    add_member(conn, "Dana", "student")
    return conn


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def resolver(roster_conn, clock) -> IdentityResolver:
    roster = RosterStore(roster_conn, cache_seconds=60, clock=clock)
    return IdentityResolver(roster, GuestSession())


@pytest.fixture
def ledger(conn) -> EventLedger:
    return EventLedger(conn)

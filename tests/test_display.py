from __future__ import annotations

from datetime import datetime

from qr_tracker.display import format_evenly, group_by_role
from qr_tracker.identity import Identity, Role


def test_format_evenly_aligns_times() -> None:
    t = datetime(2024, 3, 5, 18, 7, 9).timestamp()
    lines = format_evenly([("Al", t), ("Bobby", t)])
    assert lines == [
        "Al    03-05-2024 06:07:09 PM",
        "Bobby 03-05-2024 06:07:09 PM",
    ]
    assert format_evenly([]) == []


def test_group_by_role() -> None:
    present = [
        (Identity("Alice", Role.MENTOR, True), 1.0),
        (Identity("Bob", Role.STUDENT, False), 2.0),
        (Identity("Guest-1", Role.GUEST, False), 3.0),
    ]
    groups = group_by_role(present)
    assert groups[Role.MENTOR] == [("Alice", 1.0)]
    assert groups[Role.STUDENT] == [("Bob", 2.0)]
    assert groups[Role.GUEST] == [("Guest-1", 3.0)]

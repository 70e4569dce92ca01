from __future__ import annotations

import time

import numpy as np
import pytest

from qr_tracker import db
from qr_tracker.ledger import Direction, EventLedger, PresenceEvent
from qr_tracker.main import main
from qr_tracker.qr_detector import QRCodeDetection
from qr_tracker.resolution import ResolutionEntry, ResolutionTable


@pytest.fixture
def config_path(tmp_path):
    path = tmp_path / "config.toml"
    db_path = (tmp_path / "tracker.db").as_posix()
    path.write_text(
        f'[database]\npath = "{db_path}"\n[machine]\nid = "test-host"\n',
        encoding="utf-8",
    )
    return path


def _run(config_path, *args) -> int:
    return main(["--config", str(config_path), *args])


def _db_path(config_path) -> str:
    return str(config_path.parent / "tracker.db")


def test_roster_commands(config_path, capsys) -> None:
    assert _run(config_path, "roster", "add", "Alice", "--role", "mentor") == 0
    assert _run(config_path, "roster", "add", "Bob", "--role", "student") == 0
    assert _run(config_path, "roster", "list") == 0
    out = capsys.readouterr().out
    assert "mentor   Alice" in out
    assert "student  Bob" in out

    assert _run(config_path, "roster", "remove", "Bob", "--role", "student") == 0
    assert _run(config_path, "roster", "list") == 0
    assert "Bob" not in capsys.readouterr().out


def test_roster_add_needs_role(config_path) -> None:
    assert _run(config_path, "roster", "add", "Alice") == 1


def test_report_lists_violations_without_failing(config_path, capsys) -> None:
    _run(config_path, "roster", "add", "Alice", "--role", "mentor")
    _run(config_path, "roster", "add", "Bob", "--role", "student")
    conn = db.connect(_db_path(config_path))
    ledger = EventLedger(conn)
    for name, direction, ts in (
        ("Alice", "enter", 1000.0),
        ("Bob", "enter", 1060.0),
        ("Alice", "exit", 1120.0),
    ):
        ledger.append(PresenceEvent(name, Direction(direction), ts, "test-host"))
    conn.close()
    capsys.readouterr()

    assert _run(config_path, "report", "--min-adults", "1") == 0
    out = capsys.readouterr().out
    assert "1 supervision violation(s)" in out
    assert "trigger: Alice exit" in out
    assert "Totals:" in out


def test_correct_and_present(config_path, capsys) -> None:
    _run(config_path, "roster", "add", "Alice", "--role", "mentor")
    assert _run(config_path, "correct", "Alice", "enter", "--at", "2024-01-01T18:00:00") == 0
    assert _run(config_path, "present") == 0
    out = capsys.readouterr().out
    assert "Alice" in out
    assert "mentor" in out

    assert _run(config_path, "correct", "Alice", "exit") == 0
    capsys.readouterr()
    assert _run(config_path, "present") == 0
    assert "Alice" not in capsys.readouterr().out


def test_bad_timestamp_is_reported(config_path) -> None:
    assert _run(config_path, "report", "--since", "yesterday") == 1


def test_resolution_show_and_clear(config_path, capsys) -> None:
    conn = db.connect(_db_path(config_path))
    ResolutionTable(conn, "old-host").bind("tracking", "0")
    conn.close()

    assert _run(config_path, "resolution", "show") == 0
    out = capsys.readouterr().out
    assert "This machine: test-host" in out
    assert "(other machine)" in out

    # binding on a moved database is refused until the table is cleared
    assert _run(config_path, "resolution", "bind", "--device", "0") == 2

    assert _run(config_path, "resolution", "clear") == 0
    conn = db.connect(_db_path(config_path))
    assert ResolutionTable(conn, "test-host").entries() == []
    conn.close()


def test_explicit_missing_config(tmp_path) -> None:
    assert main(["--config", str(tmp_path / "missing.toml"), "present"]) == 2


def test_badges_command(config_path, tmp_path) -> None:
    _run(config_path, "roster", "add", "Alice", "--role", "mentor")
    output = tmp_path / "out.pdf"
    assert _run(config_path, "badges", "--guests", "2", "--output", str(output)) == 0
    assert output.read_bytes().startswith(b"%PDF")


def test_correct_refuses_double_enter(config_path) -> None:
    _run(config_path, "roster", "add", "Alice", "--role", "mentor")
    assert _run(config_path, "correct", "Alice", "enter") == 0
    assert _run(config_path, "correct", "Alice", "enter") == 1

    conn = db.connect(_db_path(config_path))
    assert EventLedger(conn).count() == 1
    conn.close()


def test_correct_refuses_unknown_or_absent(config_path) -> None:
    _run(config_path, "roster", "add", "Alice", "--role", "mentor")
    assert _run(config_path, "correct", "Nobody", "exit") == 1
    assert _run(config_path, "correct", "Alice", "exit") == 1
    assert _run(config_path, "correct", "Guest-5", "enter") == 0

    conn = db.connect(_db_path(config_path))
    assert [e.identity for e in EventLedger(conn).read_all()] == ["Guest-5"]
    conn.close()


def test_correct_keeps_an_epoch_timestamp(config_path, monkeypatch) -> None:
    _run(config_path, "roster", "add", "Alice", "--role", "mentor")
    monkeypatch.setattr("qr_tracker.main._parse_time", lambda value: 0.0)
    assert _run(config_path, "correct", "Alice", "enter", "--at", "epoch") == 0

    conn = db.connect(_db_path(config_path))
    assert [e.timestamp for e in EventLedger(conn).read_all()] == [0.0]
    conn.close()


class _FakeCapture:
    def read(self):
        time.sleep(0.001)
        return True, np.zeros((48, 64, 3), dtype=np.uint8)

    def release(self) -> None:
        pass


def test_track_exits_with_error_when_ledger_fails(config_path, monkeypatch) -> None:
    _run(config_path, "roster", "add", "Alice", "--role", "mentor")
    opened = []
    real_connect = db.connect

    def _connect(path):
        conn = real_connect(path)
        opened.append(conn)
        return conn

    class _StoreLostDetector:
        def __init__(self, **kwargs) -> None:
            pass

        def detect(self, frame):
            # storage disappears between the roster load and the first append
            opened[-1].close()
            return [QRCodeDetection(text="Alice", points=[])]

    monkeypatch.setattr(db, "connect", _connect)
    monkeypatch.setattr(
        "qr_tracker.main.resolve_device",
        lambda *args, **kwargs: ResolutionEntry("test-host", "tracking", "0"),
    )
    monkeypatch.setattr("qr_tracker.main.open_camera", lambda *args: _FakeCapture())
    monkeypatch.setattr("qr_tracker.main.QRDetector", _StoreLostDetector)

    assert _run(config_path, "track", "--no-display") == 1

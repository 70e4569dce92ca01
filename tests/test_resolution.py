from __future__ import annotations

import pytest

from qr_tracker.errors import CameraError, ResolutionError
from qr_tracker.resolution import ResolutionTable, current_machine_id, resolve_device


def _usable_refs(available: set[str]):
    calls: list[str] = []

    def usable(ref: str) -> bool:
        calls.append(ref)
        return ref in available

    usable.calls = calls
    return usable


def test_first_start_binds_first_available_device(conn) -> None:
    table = ResolutionTable(conn, "host-a")
    usable = _usable_refs({"2", "3"})
    entry = resolve_device(table, "tracking", usable, ["0", "1", "2", "3"])
    assert entry.device_ref == "2"
    assert usable.calls == ["0", "1", "2"]
    assert table.lookup("tracking") == entry


def test_existing_entry_is_reused(conn) -> None:
    table = ResolutionTable(conn, "host-a")
    table.bind("tracking", "1")
    usable = _usable_refs({"0", "1"})
    entry = resolve_device(table, "tracking", usable, ["0", "1"])
    assert entry.device_ref == "1"
    assert usable.calls == ["1"]


def test_missing_bound_device_is_fatal_not_substituted(conn) -> None:
    table = ResolutionTable(conn, "host-a")
    table.bind("tracking", "1")
    with pytest.raises(ResolutionError):
        resolve_device(table, "tracking", _usable_refs({"0"}), ["0", "1"])
    assert table.lookup("tracking").device_ref == "1"


def test_entries_from_another_machine_refuse_startup(conn) -> None:
    ResolutionTable(conn, "old-host").bind("tracking", "0")
    table = ResolutionTable(conn, "new-host")
    with pytest.raises(ResolutionError):
        resolve_device(table, "tracking", _usable_refs({"0"}), ["0"])

    assert table.clear() == 1
    entry = resolve_device(table, "tracking", _usable_refs({"0"}), ["0"])
    assert entry.machine_id == "new-host"


def test_configured_device_disagreeing_with_binding(conn) -> None:
    table = ResolutionTable(conn, "host-a")
    table.bind("tracking", "0")
    with pytest.raises(ResolutionError):
        resolve_device(table, "tracking", _usable_refs({"0", "4"}), explicit_ref="4")


def test_configured_device_is_bound_when_available(conn) -> None:
    table = ResolutionTable(conn, "host-a")
    entry = resolve_device(table, "tracking", _usable_refs({"4"}), ["0"], explicit_ref="4")
    assert entry.device_ref == "4"


def test_no_device_available(conn) -> None:
    table = ResolutionTable(conn, "host-a")
    with pytest.raises(CameraError):
        resolve_device(table, "tracking", _usable_refs(set()), ["0", "1"])
    with pytest.raises(CameraError):
        resolve_device(table, "tracking", _usable_refs(set()), explicit_ref="/dev/video9")
    assert table.entries() == []


def test_machine_id_override_and_fallback() -> None:
    assert current_machine_id("shop-laptop") == "shop-laptop"
    assert current_machine_id()

"""
Machine resolution table: which physical device plays which role on this host.

Entries are only meaningful on the machine that wrote them. A database
carried to another host must have its resolution table cleared first;
startup refuses to run when it finds entries for a different machine or
an entry whose device is missing.
"""

import logging
import socket
import sqlite3
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, Optional

from . import db
from .errors import CameraError, LedgerError, ResolutionError

logger = logging.getLogger(__name__)

MACHINE_ID_FILES = ("/etc/machine-id", "/var/lib/dbus/machine-id")


@dataclass(frozen=True)
class ResolutionEntry:
    machine_id: str
    device_role: str
    device_ref: str


def current_machine_id(override: Optional[str] = None) -> str:
    if override:
        return override
    for candidate in MACHINE_ID_FILES:
        try:
            value = Path(candidate).read_text(encoding="utf-8").strip()
        except OSError:
            continue
        if value:
            return value
    return socket.gethostname()


class ResolutionTable:
    def __init__(self, conn: sqlite3.Connection, machine_id: str):
        self._conn = conn
        self.machine_id = machine_id

    def entries(self) -> list[ResolutionEntry]:
        rows = self._conn.execute(
            "SELECT machine_id, device_role, device_ref FROM resolution "
            "ORDER BY machine_id, device_role;"
        )
        return [ResolutionEntry(*row) for row in rows]

    def lookup(self, role: str) -> Optional[ResolutionEntry]:
        row = self._conn.execute(
            "SELECT machine_id, device_role, device_ref FROM resolution "
            "WHERE machine_id = ? AND device_role = ?;",
            (self.machine_id, role),
        ).fetchone()
        return ResolutionEntry(*row) if row else None

    def bind(self, role: str, device_ref: str) -> ResolutionEntry:
        try:
            self._conn.execute("BEGIN IMMEDIATE;")
            self._conn.execute(
                "INSERT OR REPLACE INTO resolution (machine_id, device_role, device_ref) "
                "VALUES (?, ?, ?);",
                (self.machine_id, role, device_ref),
            )
            self._conn.execute("COMMIT;")
        except sqlite3.Error as exc:
            db.rollback(self._conn)
            raise LedgerError(f"Cannot store resolution entry: {exc}") from exc
        entry = ResolutionEntry(self.machine_id, role, device_ref)
        logger.info("Bound %s to device %s on %s", role, device_ref, self.machine_id)
        return entry

    def clear(self) -> int:
        """Delete every entry, for all machines. Required before relocating."""
        cur = self._conn.execute("DELETE FROM resolution;")
        logger.info("Cleared %d resolution entries", cur.rowcount)
        return cur.rowcount

    def validate(self) -> None:
        foreign = [e for e in self.entries() if e.machine_id != self.machine_id]
        if foreign:
            machines = ", ".join(sorted({e.machine_id for e in foreign}))
            raise ResolutionError(
                f"Resolution table holds entries from other machine(s) ({machines}). "
                "This database was moved; run 'qr-tracker resolution clear' "
                "and re-bind on this host."
            )


def resolve_device(
    table: ResolutionTable,
    role: str,
    usable: Callable[[str], bool],
    candidates: Iterable[str] = (),
    explicit_ref: Optional[str] = None,
) -> ResolutionEntry:
    """
    Return the trusted device entry for ``role``, binding one if needed.

    An existing entry is never replaced silently: if its device is gone,
    or the configuration names a different device, ResolutionError is
    raised. With no entry, ``explicit_ref`` is bound when given, else the
    first candidate the check accepts.
    """
    table.validate()
    entry = table.lookup(role)
    if entry is not None:
        if explicit_ref is not None and explicit_ref != entry.device_ref:
            raise ResolutionError(
                f"{role} is bound to device {entry.device_ref} but the configuration "
                f"asks for {explicit_ref}; clear the resolution table to re-bind."
            )
        if not usable(entry.device_ref):
            raise ResolutionError(
                f"{role} is bound to device {entry.device_ref}, which is not "
                "available on this host. Refusing to track with another device; "
                "reconnect it or clear the resolution table to re-bind."
            )
        return entry

    if explicit_ref is not None:
        if not usable(explicit_ref):
            raise CameraError(f"Configured device {explicit_ref} is not available")
        return table.bind(role, explicit_ref)

    for ref in candidates:
        logger.info("Trying device %s for %s", ref, role)
        if usable(ref):
            return table.bind(role, ref)
    raise CameraError(f"No usable device found for {role}")

"""
Identity model and resolution of raw QR payloads.

A payload resolves to a roster member (mentor or student), to a guest
identity when it matches the guest pattern, or to nothing at all.
"""

import enum
import logging
from dataclasses import dataclass
from typing import Iterable, Optional

from .roster import RosterSnapshot, RosterStore

logger = logging.getLogger(__name__)


class Role(str, enum.Enum):
    STUDENT = "student"
    MENTOR = "mentor"
    GUEST = "guest"


@dataclass(frozen=True)
class Identity:
    name: str
    role: Role
    is_adult: bool


def is_guest_name(name: str, prefix: str = "Guest") -> bool:
    """``prefix`` followed by at least one distinguishing character."""
    return name.startswith(prefix) and len(name) > len(prefix)


def classify(
    name: str,
    roster: RosterSnapshot,
    guest_prefix: str = "Guest",
    adult_guests: Iterable[str] = (),
) -> Optional[Identity]:
    # Mentors win when a name is listed in both tables
    if name in roster.mentors:
        return Identity(name, Role.MENTOR, True)
    if name in roster.students:
        return Identity(name, Role.STUDENT, False)
    if is_guest_name(name, guest_prefix):
        return Identity(name, Role.GUEST, name in set(adult_guests))
    return None


class GuestSession:
    """Guest identities seen by one running tracker."""

    def __init__(self, prefix: str = "Guest", adult_guests: Iterable[str] = ()):
        self.prefix = prefix
        self.adult_guests = frozenset(adult_guests)
        self._guests: dict[str, Identity] = {}

    def matches(self, name: str) -> bool:
        return is_guest_name(name, self.prefix)

    def get_or_create(self, name: str) -> Identity:
        guest = self._guests.get(name)
        if guest is None:
            guest = Identity(name, Role.GUEST, name in self.adult_guests)
            self._guests[name] = guest
            logger.info("New guest this session: %s", name)
        return guest

    def known(self) -> list[Identity]:
        return list(self._guests.values())


class IdentityResolver:
    def __init__(self, roster: RosterStore, session: GuestSession):
        self.roster = roster
        self.session = session

    def resolve(self, payload: str) -> Optional[Identity]:
        """Map a decoded payload to an identity, or None when unrecognized."""
        snapshot = self.roster.snapshot()
        identity = classify(payload, snapshot, self.session.prefix)
        if identity is None:
            logger.info("Rejected unrecognized QR payload: %r", payload)
            return None
        if identity.role is Role.GUEST:
            return self.session.get_or_create(payload)
        return identity

"""
Presence tracking for resolved QR sightings with cooldown-based debouncing.

A single code toggles its holder between absent and present. A code held
in front of the camera is seen on many consecutive frames, so sightings
of the same identity are coalesced until it has been out of view for the
cooldown window.
"""

import enum
import logging
from dataclasses import dataclass
from typing import Iterable, Optional

from .identity import Identity
from .ledger import Direction

logger = logging.getLogger(__name__)


class Presence(enum.Enum):
    ABSENT = "absent"
    PRESENT = "present"


@dataclass
class IdentityState:
    """Current state for one identity."""

    presence: Presence = Presence.ABSENT
    last_seen: Optional[float] = None
    since: Optional[float] = None


@dataclass
class TransitionEvent:
    """Fired when a sighting toggles an identity."""

    identity: Identity
    direction: Direction


class PresenceStateMachine:
    """
    Tracks presence per identity.

    Timing behavior:
    - cooldown_seconds: minimum gap since the previous sighting of the same
      identity before another sighting counts. Every sighting refreshes the
      timer, so a code left in view never toggles twice.
    """

    def __init__(self, cooldown_seconds: float):
        self.cooldown_seconds = cooldown_seconds
        self._states: dict[str, IdentityState] = {}
        self._identities: dict[str, Identity] = {}

    def seed(self, present: Iterable[tuple[Identity, float]]) -> None:
        """Mark identities as already present, e.g. from a ledger replay."""
        for identity, since in present:
            self._identities[identity.name] = identity
            self._states[identity.name] = IdentityState(
                presence=Presence.PRESENT, since=since
            )

    def update(self, identity: Identity, now: float) -> Optional[TransitionEvent]:
        state = self._states.setdefault(identity.name, IdentityState())
        self._identities[identity.name] = identity

        previous = state.last_seen
        state.last_seen = now
        if previous is not None and (now - previous) < self.cooldown_seconds:
            logger.debug("Debounced sighting of %s", identity.name)
            return None

        if state.presence is Presence.ABSENT:
            state.presence = Presence.PRESENT
            state.since = now
            return TransitionEvent(identity, Direction.ENTER)

        state.presence = Presence.ABSENT
        return TransitionEvent(identity, Direction.EXIT)

    def state_of(self, name: str) -> IdentityState:
        return self._states.get(name, IdentityState())

    def present(self) -> list[tuple[Identity, float]]:
        """Present identities with the time they entered, oldest first."""
        rows = [
            (self._identities[name], state.since)
            for name, state in self._states.items()
            if state.presence is Presence.PRESENT
        ]
        return sorted(rows, key=lambda r: (r[1] or 0.0, r[0].name))

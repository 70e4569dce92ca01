"""Scan processing: decoded payload -> identity -> transition -> ledger."""

import logging
from typing import Optional

from .auditor import current_presence
from .identity import GuestSession, IdentityResolver, Role, classify
from .ledger import Direction, EventLedger, PresenceEvent
from .state_tracker import PresenceStateMachine

logger = logging.getLogger(__name__)


class ScanPipeline:
    def __init__(
        self,
        resolver: IdentityResolver,
        machine: PresenceStateMachine,
        ledger: EventLedger,
        machine_id: str,
    ):
        self.resolver = resolver
        self.machine = machine
        self.ledger = ledger
        self.machine_id = machine_id
        self.last_change: Optional[str] = None
        # Newest stamp written by this machine; stamps never go backwards
        self.last_stamp: Optional[float] = None

    def seed_from_ledger(self) -> int:
        """
        Replay the ledger and mark everyone it still shows as present.

        Names no longer in the roster (and not guests) are skipped, so
        their next scan is rejected like any other unknown code.
        """
        self.last_stamp = self.ledger.last_timestamp(self.machine_id)
        session: GuestSession = self.resolver.session
        snapshot = self.resolver.roster.snapshot()
        seeded = []
        for name, since in current_presence(self.ledger.read_all()):
            identity = classify(name, snapshot, session.prefix, session.adult_guests)
            if identity is None:
                logger.warning("%s is present in the ledger but no longer known", name)
                continue
            if identity.role is Role.GUEST:
                identity = session.get_or_create(name)
            seeded.append((identity, since))
        self.machine.seed(seeded)
        if seeded:
            logger.info("Carried over %d present identities from the ledger", len(seeded))
        return len(seeded)

    def handle(self, payload: str, now: float) -> Optional[PresenceEvent]:
        """
        Process one decoded payload seen at wall-clock time ``now``.

        The stored timestamp is clamped to the newest one this machine has
        written, so a clock stepped backwards cannot order an exit before
        its enter. LedgerWriteError propagates; the caller must stop tracking.
        """
        identity = self.resolver.resolve(payload)
        if identity is None:
            return None
        transition = self.machine.update(identity, now)
        if transition is None:
            return None
        stamp = now if self.last_stamp is None else max(now, self.last_stamp)
        stored = self.ledger.append(
            PresenceEvent(
                identity=identity.name,
                direction=transition.direction,
                timestamp=stamp,
                machine_id=self.machine_id,
            )
        )
        self.last_stamp = stamp
        verb = "ADDED" if transition.direction is Direction.ENTER else "REMOVED"
        self.last_change = f"{verb} {identity.name}"
        logger.info("%s (%s)", self.last_change, identity.role.value)
        return stored

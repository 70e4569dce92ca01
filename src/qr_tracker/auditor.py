"""
Offline reconstruction of presence from the event ledger.

The auditor replays events in time order and checks the supervision
ratio: whenever a student is present, at least ``min_adults`` adults
must be present too. Every violation is reported; none stops the sweep.
A violation window stays open until the ratio holds again, and every
breach seen while it is open is recorded in that one window.

Ordering: events are sorted by timestamp, then machine id, then ledger
insertion order. All events sharing a timestamp are applied before the
invariant is evaluated for that instant, so a mentor handing over to
another mentor within the same second is not a violation. Clocks of
different machines are assumed to be skewed by less than the spacing
between meaningful events; skew beyond that is not corrected.
"""

import logging
from dataclasses import dataclass, field, replace
from itertools import groupby
from typing import Callable, Iterable, Optional

from .identity import Identity, Role, classify
from .ledger import Direction, PresenceEvent
from .roster import RosterSnapshot

logger = logging.getLogger(__name__)

Classifier = Callable[[str], Optional[Identity]]


@dataclass(frozen=True)
class Breach:
    """One instant at which the ratio was found broken, with who was present."""

    event: PresenceEvent
    students: frozenset[str]
    adults: frozenset[str]
    others: frozenset[str] = frozenset()

    @property
    def present(self) -> frozenset[str]:
        return self.students | self.adults | self.others


@dataclass(frozen=True)
class Violation:
    """
    One continuous window during which the ratio did not hold.

    Later students arriving, or adults leaving, while the window is open
    are added to ``breaches`` instead of opening an overlapping window.
    """

    start: float
    end: Optional[float]  # None while still open at the end of the ledger
    breaches: tuple[Breach, ...]

    @property
    def trigger(self) -> PresenceEvent:
        return self.breaches[0].event

    @property
    def students(self) -> frozenset[str]:
        return self.breaches[0].students

    @property
    def adults(self) -> frozenset[str]:
        return self.breaches[0].adults

    @property
    def others(self) -> frozenset[str]:
        return self.breaches[0].others

    @property
    def present(self) -> frozenset[str]:
        return self.breaches[0].present


@dataclass(frozen=True)
class PresenceInterval:
    identity: str
    start: float
    end: Optional[float]

    def duration(self, now: float) -> float:
        end = self.end if self.end is not None else now
        return max(0.0, end - self.start)

    def overlaps(self, since: Optional[float], until: Optional[float]) -> bool:
        if until is not None and self.start > until:
            return False
        if since is not None and self.end is not None and self.end < since:
            return False
        return True


@dataclass
class AuditReport:
    min_adults: int
    violations: list[Violation] = field(default_factory=list)
    intervals: list[PresenceInterval] = field(default_factory=list)
    anomalies: list[str] = field(default_factory=list)
    event_count: int = 0

    @property
    def ok(self) -> bool:
        return not self.violations

    def between(
        self, since: Optional[float] = None, until: Optional[float] = None
    ) -> "AuditReport":
        """Violations and intervals overlapping ``[since, until]``."""

        def _keep_violation(v: Violation) -> bool:
            if until is not None and v.start > until:
                return False
            if since is not None and v.end is not None and v.end < since:
                return False
            return True

        return AuditReport(
            min_adults=self.min_adults,
            violations=[v for v in self.violations if _keep_violation(v)],
            intervals=[i for i in self.intervals if i.overlaps(since, until)],
            anomalies=list(self.anomalies),
            event_count=self.event_count,
        )

    def total_time(self, now: float) -> dict[str, float]:
        totals: dict[str, float] = {}
        for interval in self.intervals:
            totals[interval.identity] = totals.get(
                interval.identity, 0.0
            ) + interval.duration(now)
        return totals


def make_classifier(
    roster: RosterSnapshot, guest_prefix: str = "Guest", adult_guests: Iterable[str] = ()
) -> Classifier:
    adult_guests = frozenset(adult_guests)

    def _classify(name: str) -> Optional[Identity]:
        return classify(name, roster, guest_prefix, adult_guests)

    return _classify


def sweep_order(events: Iterable[PresenceEvent]) -> list[PresenceEvent]:
    return sorted(
        events,
        key=lambda e: (e.timestamp, e.machine_id, e.seq if e.seq is not None else 0),
    )


def audit(
    events: Iterable[PresenceEvent], classifier: Classifier, min_adults: int = 2
) -> AuditReport:
    report = AuditReport(min_adults=min_adults)
    present: dict[str, float] = {}
    roles: dict[str, Optional[Identity]] = {}
    open_index: Optional[int] = None

    def _identity(name: str) -> Optional[Identity]:
        if name not in roles:
            roles[name] = classifier(name)
            if roles[name] is None:
                report.anomalies.append(
                    f"{name!r} is not in the roster; counted as a non-adult visitor"
                )
        return roles[name]

    ordered = sweep_order(events)
    report.event_count = len(ordered)

    for instant, group in groupby(ordered, key=lambda e: e.timestamp):
        trigger: Optional[PresenceEvent] = None
        for event in group:
            identity = _identity(event.identity)
            is_student = identity is not None and identity.role is Role.STUDENT
            is_adult = identity is not None and identity.is_adult

            if event.direction is Direction.ENTER:
                if event.identity in present:
                    report.anomalies.append(
                        f"{event.identity!r} entered at {instant} while already present"
                    )
                    continue
                present[event.identity] = instant
                if is_student and trigger is None:
                    trigger = event
            else:
                if event.identity not in present:
                    report.anomalies.append(
                        f"{event.identity!r} exited at {instant} without entering"
                    )
                    continue
                start = present.pop(event.identity)
                report.intervals.append(PresenceInterval(event.identity, start, instant))
                if is_adult and trigger is None:
                    trigger = event

        students, adults, others = _partition(present, _identity)
        if not students or len(adults) >= min_adults:
            if open_index is not None:
                report.violations[open_index] = replace(
                    report.violations[open_index], end=instant
                )
                open_index = None
        elif trigger is not None:
            breach = Breach(trigger, students, adults, others)
            if open_index is None:
                open_index = len(report.violations)
                report.violations.append(Violation(instant, None, (breach,)))
            else:
                current = report.violations[open_index]
                report.violations[open_index] = replace(
                    current, breaches=current.breaches + (breach,)
                )
            logger.debug(
                "Violation at %s: %d students with %d adults",
                instant,
                len(students),
                len(adults),
            )

    for name, start in present.items():
        report.intervals.append(PresenceInterval(name, start, None))
    report.intervals.sort(key=lambda i: (i.start, i.identity))

    for anomaly in report.anomalies:
        logger.warning(anomaly)
    return report


def current_presence(events: Iterable[PresenceEvent]) -> list[tuple[str, float]]:
    """Replay ``events`` and return who is present, with entry times."""
    present: dict[str, float] = {}
    for event in sweep_order(events):
        if event.direction is Direction.ENTER:
            present.setdefault(event.identity, event.timestamp)
        else:
            present.pop(event.identity, None)
    return sorted(present.items(), key=lambda item: (item[1], item[0]))


def alternation_error(
    events: Iterable[PresenceEvent], name: str, direction: Direction, at: float
) -> Optional[str]:
    """
    Explain why appending ``direction`` for ``name`` at ``at`` would break
    the enter/exit alternation, or return None when it keeps it.
    """
    ordered = [e for e in sweep_order(events) if e.identity == name]
    present = any(
        n == name for n, _ in current_presence(e for e in ordered if e.timestamp <= at)
    )
    if direction is Direction.ENTER and present:
        return f"{name!r} is already present at that time"
    if direction is Direction.EXIT and not present:
        return f"{name!r} is not present at that time"
    later = next((e for e in ordered if e.timestamp > at), None)
    if later is not None and later.direction is direction:
        return f"{name!r} already has a later {direction.value} at {later.timestamp}"
    return None


def _partition(
    present: dict[str, float], identify: Classifier
) -> tuple[frozenset[str], frozenset[str], frozenset[str]]:
    students, adults, others = set(), set(), set()
    for name in present:
        identity = identify(name)
        if identity is not None and identity.role is Role.STUDENT:
            students.add(name)
        elif identity is not None and identity.is_adult:
            adults.add(name)
        else:
            others.add(name)
    return frozenset(students), frozenset(adults), frozenset(others)


"""
QR presence tracker - records who is in the shop by scanning badge QR codes.

Main application orchestrating:
- Camera binding through the machine resolution table
- Threaded camera capture (latest frame only)
- QR decoding, identity resolution and presence toggling
- Append-only event ledger in SQLite
- Offline supervision audit and attendance reports

Architecture:
    Capture Thread → Main Thread
         ↓               ↓
    Latest Frame    Decode → Resolve → Toggle → Ledger (+ display)
"""

import argparse
import logging
import threading
import time
from datetime import datetime
from typing import Optional

import cv2

from . import db
from .auditor import (
    AuditReport,
    alternation_error,
    audit,
    current_presence,
    make_classifier,
)
from .badges import guest_names, write_badge_sheet
from .camera import candidate_refs, open_camera, camera_usable
from .config import TrackerSettings, load_config_or_defaults, settings_from_config
from .display import PresenceDisplay
from .errors import ConfigurationError, ResolutionError, TrackerError
from .identity import GuestSession, IdentityResolver
from .ledger import Direction, EventLedger, PresenceEvent
from .logs import setup_logging
from .pipeline import ScanPipeline
from .qr_detector import QRDetector
from .resolution import ResolutionTable, current_machine_id, resolve_device
from .roster import RosterStore, add_member, list_members, remove_member
from .state_tracker import PresenceStateMachine

logger = logging.getLogger(__name__)

REPORT_TIME_FORMAT = "%Y-%m-%d %H:%M:%S"


class _LatestFrame:
    """Thread-safe storage for latest captured frame with version tracking."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._frame = None
        self._version = 0

    def update(self, frame) -> None:
        with self._lock:
            self._frame = frame
            self._version += 1

    def snapshot(self):
        with self._lock:
            return self._frame, self._version


def _start_capture_thread(
    cap,
    latest: _LatestFrame,
    stop: threading.Event,
    *,
    mirror: bool = False,
) -> threading.Thread:
    """
    Start camera capture thread that continuously reads frames.

    Only the newest frame is kept, so frames that piled up while a code
    was being decoded are dropped instead of re-triggering the same scan.
    """

    def run() -> None:
        while not stop.is_set():
            ok, frame = cap.read()
            if not ok:
                time.sleep(0.01)
                continue
            if mirror:
                frame = cv2.flip(frame, 1)
            latest.update(frame)

    thread = threading.Thread(target=run, daemon=True)
    thread.start()
    return thread


def _fmt_time(ts: Optional[float]) -> str:
    if ts is None:
        return "still open"
    return datetime.fromtimestamp(ts).strftime(REPORT_TIME_FORMAT)


def _parse_time(value: Optional[str]) -> Optional[float]:
    if value is None:
        return None
    try:
        return datetime.fromisoformat(value).timestamp()
    except ValueError as exc:
        raise ConfigurationError(f"Invalid ISO timestamp: {value!r}") from exc


def _fmt_duration(seconds: float) -> str:
    minutes, _ = divmod(int(seconds), 60)
    hours, minutes = divmod(minutes, 60)
    return f"{hours}h{minutes:02d}m"


def run_tracking(settings: TrackerSettings, conn, show_display: bool) -> int:
    machine_id = current_machine_id(settings.machine_id)
    table = ResolutionTable(conn, machine_id)
    explicit = str(settings.camera_index) if settings.camera_index is not None else None
    entry = resolve_device(
        table,
        settings.camera_role,
        camera_usable,
        candidate_refs(settings.max_index),
        explicit_ref=explicit,
    )

    roster = RosterStore(conn, cache_seconds=settings.roster_cache_seconds)
    session = GuestSession(settings.guest_prefix, settings.adult_guests)
    pipeline = ScanPipeline(
        IdentityResolver(roster, session),
        PresenceStateMachine(settings.cooldown_seconds),
        EventLedger(conn),
        machine_id,
    )
    pipeline.seed_from_ledger()

    detector = QRDetector(backend=settings.qr_backend, scales=settings.qr_scales)
    cap = open_camera(entry.device_ref, settings.preferred_width, settings.preferred_height)
    display = PresenceDisplay(settings.message_seconds) if show_display else None

    latest_frame = _LatestFrame()
    stop_event = threading.Event()
    cap_thread = _start_capture_thread(
        cap, latest_frame, stop_event, mirror=settings.mirror
    )
    logger.info("Tracking on %s with camera %s", machine_id, entry.device_ref)

    last_frame_version = -1
    try:
        while True:
            frame, frame_version = latest_frame.snapshot()
            if frame is None or frame_version == last_frame_version:
                if display:
                    if not display.process_events():
                        break
                else:
                    time.sleep(0.005)
                continue
            last_frame_version = frame_version

            detections = detector.detect(frame)
            for det in detections:
                event = pipeline.handle(det.text, time.time())
                if event and display:
                    display.announce(pipeline.last_change)

            if display:
                if not display.render(
                    frame.copy(), detections, pipeline.machine.present()
                ):
                    break
    except KeyboardInterrupt:
        logger.info("Interrupted, stopping")
    finally:
        stop_event.set()
        cap_thread.join(timeout=1.0)
        cap.release()
        if display:
            display.close()
    # Only after a clean stop; a failed store must surface its own error
    db.checkpoint(conn)
    return 0


def print_report(report: AuditReport, now: float) -> None:
    print(f"Events audited: {report.event_count}")
    print(f"Supervision rule: at least {report.min_adults} adult(s) with any student")
    if report.ok:
        print("No supervision violations.")
    else:
        print(f"{len(report.violations)} supervision violation(s):")
        for v in report.violations:
            print(f"  {_fmt_time(v.start)} -> {_fmt_time(v.end)}")
            for breach in v.breaches:
                print(
                    f"    {_fmt_time(breach.event.timestamp)}  "
                    f"trigger: {breach.event.identity} {breach.event.direction.value}  "
                    f"students: {', '.join(sorted(breach.students))}  "
                    f"adults: {', '.join(sorted(breach.adults)) or '-'}"
                )
    for anomaly in report.anomalies:
        print(f"  note: {anomaly}")

    print()
    print("Attendance:")
    for interval in report.intervals:
        print(
            f"  {interval.identity:<24} {_fmt_time(interval.start)} -> "
            f"{_fmt_time(interval.end)}"
        )
    print()
    print("Totals:")
    for name, seconds in sorted(report.total_time(now).items()):
        print(f"  {name:<24} {_fmt_duration(seconds)}")


def _classifier(settings: TrackerSettings, conn):
    snapshot = RosterStore(conn, cache_seconds=0).snapshot()
    return make_classifier(snapshot, settings.guest_prefix, settings.adult_guests)


def cmd_report(args, settings: TrackerSettings, conn) -> int:
    min_adults = args.min_adults if args.min_adults is not None else settings.min_adults
    report = audit(
        EventLedger(conn).read_all(), _classifier(settings, conn), min_adults=min_adults
    )
    report = report.between(_parse_time(args.since), _parse_time(args.until))
    print_report(report, time.time())
    return 0


def cmd_present(args, settings: TrackerSettings, conn) -> int:
    classify = _classifier(settings, conn)
    for name, since in current_presence(EventLedger(conn).read_all()):
        identity = classify(name)
        role = identity.role.value if identity else "unknown"
        print(f"{name:<24} {role:<8} since {_fmt_time(since)}")
    return 0


def cmd_correct(args, settings: TrackerSettings, conn) -> int:
    ledger = EventLedger(conn)
    direction = Direction(args.direction)
    at = _parse_time(args.at)
    if at is None:
        at = time.time()
    if _classifier(settings, conn)(args.name) is None:
        raise ConfigurationError(f"{args.name!r} is neither on the roster nor a guest")
    reason = alternation_error(ledger.read_all(), args.name, direction, at)
    if reason is not None:
        raise ConfigurationError(f"Refusing correction: {reason}")

    event = ledger.append(
        PresenceEvent(
            identity=args.name,
            direction=direction,
            timestamp=at,
            machine_id=current_machine_id(settings.machine_id),
        )
    )
    logger.info("Appended compensating event #%d", event.seq)
    return 0


def cmd_roster(args, settings: TrackerSettings, conn) -> int:
    if args.action == "list":
        for name, role in list_members(conn):
            print(f"{role:<8} {name}")
        return 0
    if not args.name or not args.role:
        raise ConfigurationError("roster add/remove need --role and a name")
    if args.action == "add":
        changed = add_member(conn, args.name, args.role)
    else:
        changed = remove_member(conn, args.name, args.role)
    if not changed:
        logger.warning("Roster unchanged for %s (%s)", args.name, args.role)
    return 0


def cmd_resolution(args, settings: TrackerSettings, conn) -> int:
    table = ResolutionTable(conn, current_machine_id(settings.machine_id))
    if args.action == "show":
        print(f"This machine: {table.machine_id}")
        for entry in table.entries():
            marker = "" if entry.machine_id == table.machine_id else "  (other machine)"
            print(f"  {entry.device_role}: {entry.device_ref} @ {entry.machine_id}{marker}")
        return 0
    if args.action == "clear":
        table.clear()
        db.checkpoint(conn)
        return 0
    explicit = args.device
    if explicit is None and settings.camera_index is not None:
        explicit = str(settings.camera_index)
    entry = resolve_device(
        table,
        settings.camera_role,
        camera_usable,
        candidate_refs(settings.max_index),
        explicit_ref=explicit,
    )
    print(f"{entry.device_role}: {entry.device_ref}")
    return 0


def cmd_badges(args, settings: TrackerSettings, conn, config: dict) -> int:
    badges_cfg = config.get("badges", {})
    output_pdf = args.output or badges_cfg.get("output_pdf", "badges.pdf")
    members = list_members(conn)
    guests = guest_names(args.guests, settings.guest_prefix)
    write_badge_sheet(members, guests, output_pdf, badges_cfg)
    print(f"Wrote {output_pdf}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="QR presence tracker")
    parser.add_argument("--config", help="Path to config TOML (default: config.toml)")
    parser.add_argument("--log-level", help="Logging level (overrides config)")
    sub = parser.add_subparsers(dest="command", required=True)

    track = sub.add_parser("track", help="Scan QR codes and record presence")
    track.add_argument("--no-display", action="store_true", help="Disable the window")

    report = sub.add_parser("report", help="Audit supervision and attendance")
    report.add_argument("--min-adults", type=int, help="Adults required per student")
    report.add_argument("--since", help="ISO start of the reporting window")
    report.add_argument("--until", help="ISO end of the reporting window")

    sub.add_parser("present", help="Show who the ledger says is present")

    correct = sub.add_parser("correct", help="Append a compensating event")
    correct.add_argument("name")
    correct.add_argument("direction", choices=[d.value for d in Direction])
    correct.add_argument("--at", help="ISO time of the event (default: now)")

    roster = sub.add_parser("roster", help="Maintain students and mentors")
    roster.add_argument("action", choices=["add", "remove", "list"])
    roster.add_argument("name", nargs="?")
    roster.add_argument("--role", choices=["student", "mentor"])

    resolution = sub.add_parser("resolution", help="Machine device bindings")
    resolution.add_argument("action", choices=["show", "bind", "clear"])
    resolution.add_argument("--device", help="Camera index or path to bind")

    badges = sub.add_parser("badges", help="Render printable QR badges")
    badges.add_argument("--guests", type=int, default=0, help="Guest passes to add")
    badges.add_argument("--output", help="Output PDF path (overrides config)")
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    """Main application entry point."""
    args = build_parser().parse_args(argv)

    try:
        config = load_config_or_defaults(
            args.config or "config.toml", explicit=args.config is not None
        )
        settings = settings_from_config(config)
    except (FileNotFoundError, TrackerError) as exc:
        setup_logging(args.log_level or "INFO")
        logger.error("%s", exc)
        return 2
    setup_logging(args.log_level or settings.log_level, settings.log_file)

    try:
        conn = db.connect(settings.database)
    except TrackerError as exc:
        logger.error("%s", exc)
        return 1

    try:
        if args.command == "track":
            show = settings.show_display and not args.no_display
            return run_tracking(settings, conn, show)
        if args.command == "report":
            return cmd_report(args, settings, conn)
        if args.command == "present":
            return cmd_present(args, settings, conn)
        if args.command == "correct":
            return cmd_correct(args, settings, conn)
        if args.command == "roster":
            return cmd_roster(args, settings, conn)
        if args.command == "resolution":
            return cmd_resolution(args, settings, conn)
        return cmd_badges(args, settings, conn, config)
    except ResolutionError as exc:
        logger.error("Configuration error: %s", exc)
        return 2
    except TrackerError as exc:
        logger.error("%s", exc)
        return 1
    finally:
        conn.close()


if __name__ == "__main__":
    raise SystemExit(main())

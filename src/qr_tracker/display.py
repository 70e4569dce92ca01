"""
OpenCV presence display for the tracking station.

Shows the live camera feed with:
- QR detection outlines (green)
- Mentors, Students and Guests currently present, with entry times
- The most recent change ("ADDED name" / "REMOVED name")

Controls:
- Press 'q' to stop tracking
"""

import time
from datetime import datetime
from typing import Iterable, Optional, Sequence

import cv2
import numpy as np

from .identity import Identity, Role
from .qr_detector import QRCodeDetection

TIME_FORMAT = "%m-%d-%Y %I:%M:%S %p"


def format_evenly(entries: Sequence[tuple[str, float]]) -> list[str]:
    """Pad names so the entry times line up in one column."""
    if not entries:
        return []
    longest = max(len(name) for name, _ in entries)
    return [
        f"{name.ljust(longest)} {datetime.fromtimestamp(since).strftime(TIME_FORMAT)}"
        for name, since in entries
    ]


def group_by_role(
    present: Iterable[tuple[Identity, float]],
) -> dict[Role, list[tuple[str, float]]]:
    groups: dict[Role, list[tuple[str, float]]] = {role: [] for role in Role}
    for identity, since in present:
        groups[identity.role].append((identity.name, since))
    return groups


class PresenceDisplay:
    """Camera view with a side panel listing who is present."""

    def __init__(self, message_seconds: float = 60.0, panel_width: int = 520):
        self.neon = (57, 255, 20)
        self.blue = (255, 128, 0)
        self.window_name = "QR Attendance Tracker"
        self.message_seconds = message_seconds
        self.panel_width = panel_width
        self._message: Optional[str] = None
        self._message_at: Optional[float] = None
        cv2.namedWindow(self.window_name, cv2.WINDOW_NORMAL)

    def announce(self, message: str, now: Optional[float] = None) -> None:
        self._message = message
        self._message_at = time.monotonic() if now is None else now

    def current_message(self, now: float) -> Optional[str]:
        if self._message_at is None or now - self._message_at > self.message_seconds:
            return None
        return self._message

    def render(
        self,
        frame,
        detections: Iterable[QRCodeDetection],
        present: Iterable[tuple[Identity, float]],
        now: Optional[float] = None,
    ) -> bool:
        """
        Render frame and presence panel in the window.

        Returns:
            True to continue, False if the user quit
        """
        if now is None:
            now = time.monotonic()
        for det in detections:
            pts = [(int(x), int(y)) for x, y in det.points]
            cv2.polylines(frame, [np.array(pts, dtype="int32")], True, self.neon, 4)

        height = frame.shape[0]
        panel = np.full((height, self.panel_width, 3), 255, dtype=np.uint8)
        y = 36
        message = self.current_message(now)
        if message:
            cv2.putText(
                panel, message, (10, y), cv2.FONT_HERSHEY_SIMPLEX, 0.8, self.blue, 2, cv2.LINE_AA
            )
        y += 40

        groups = group_by_role(present)
        for title, role in (("Mentors", Role.MENTOR), ("Students", Role.STUDENT), ("Guests", Role.GUEST)):
            cv2.putText(
                panel, title, (10, y), cv2.FONT_HERSHEY_SIMPLEX, 0.9, (0, 0, 0), 2, cv2.LINE_AA
            )
            y += 30
            for line in format_evenly(groups[role]):
                cv2.putText(
                    panel, line, (10, y), cv2.FONT_HERSHEY_PLAIN, 1.1, (0, 0, 0), 1, cv2.LINE_AA
                )
                y += 20
            y += 16

        try:
            cv2.imshow(self.window_name, np.hstack([frame, panel]))
            return self.process_events()
        except cv2.error:
            return True

    def process_events(self) -> bool:
        """Poll the keyboard; returns False when the user pressed 'q'."""
        key = cv2.waitKey(1) & 0xFF
        return key != ord("q")

    def close(self) -> None:
        cv2.destroyWindow(self.window_name)

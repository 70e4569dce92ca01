"""Camera capture configuration, availability checks and initialization."""

import logging

import cv2

from .errors import CameraError

logger = logging.getLogger(__name__)


def _device(ref: str):
    """Numeric refs are camera indices; anything else is a device path."""
    return int(ref) if ref.isdigit() else ref


def camera_usable(ref: str) -> bool:
    """Return True when ``ref`` opens and yields a frame."""
    cap = cv2.VideoCapture(_device(ref))
    try:
        if not cap.isOpened():
            return False
        ok, _ = cap.read()
        return bool(ok)
    finally:
        cap.release()


def candidate_refs(max_index: int) -> list[str]:
    return [str(index) for index in range(max_index)]


def open_camera(
    ref: str, preferred_width: int, preferred_height: int
) -> cv2.VideoCapture:
    """
    Open and configure a camera device for QR scanning.

    Args:
        ref: Camera index ("0") or device path ("/dev/video2")
        preferred_width: Desired frame width (0 = smallest the driver offers)
        preferred_height: Desired frame height (0 = smallest the driver offers)

    Returns:
        Configured VideoCapture object ready for threaded reading

    Note:
        - MJPG keeps USB 2.0 webcams at full frame rate
        - Buffer size is minimized (1 frame) so scans are processed promptly
    """
    cap = cv2.VideoCapture(_device(ref))
    if not cap.isOpened():
        raise CameraError(f"Failed to open camera {ref}")

    cap.set(cv2.CAP_PROP_FOURCC, cv2.VideoWriter_fourcc(*"MJPG"))

    if preferred_width and preferred_height:
        cap.set(cv2.CAP_PROP_FRAME_WIDTH, preferred_width)
        cap.set(cv2.CAP_PROP_FRAME_HEIGHT, preferred_height)
    else:
        # Small frames decode fastest; badges are held close to the lens.
        cap.set(cv2.CAP_PROP_FRAME_WIDTH, 1)
        cap.set(cv2.CAP_PROP_FRAME_HEIGHT, 1)

    cap.set(cv2.CAP_PROP_BUFFERSIZE, 1)
    logger.info(
        "Camera %s open at %dx%d",
        ref,
        int(cap.get(cv2.CAP_PROP_FRAME_WIDTH)),
        int(cap.get(cv2.CAP_PROP_FRAME_HEIGHT)),
    )
    return cap

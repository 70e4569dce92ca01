import logging
from dataclasses import dataclass
from typing import List, Sequence, Tuple

import cv2
import numpy as np

logger = logging.getLogger(__name__)


@dataclass
class QRCodeDetection:
    text: str
    points: List[Tuple[float, float]]


class QRDetector:
    """
    Decodes QR payloads from camera frames.

    Each frame is tried at the configured downscale factors in order and
    the first scale that yields a non-blank payload wins; small factors
    catch distant codes, large ones are cheap and tolerate blur.
    """

    def __init__(self, backend: str = "opencv", scales: Sequence[int] = (1, 2, 4, 8)):
        self.backend = backend
        self.scales = list(scales)
        self._opencv = None
        self._pyzbar = None
        self._zxingcpp = None

        if backend == "pyzbar":
            try:
                from pyzbar import pyzbar  # type: ignore
            except ImportError as exc:
                raise RuntimeError(
                    "pyzbar is not installed; install it or use backend=opencv"
                ) from exc
            self._pyzbar = pyzbar
        elif backend == "zxingcpp":
            try:
                import zxingcpp  # type: ignore
            except ImportError as exc:
                raise RuntimeError(
                    "zxing-cpp is not installed; pip install zxing-cpp"
                ) from exc
            self._zxingcpp = zxingcpp
        elif backend == "opencv_aruco":
            self._opencv = cv2.QRCodeDetectorAruco()
        else:
            self._opencv = cv2.QRCodeDetector()

    def detect(self, frame) -> List[QRCodeDetection]:
        if frame is None or frame.size == 0:
            logger.warning("Empty frame skipped")
            return []
        gray = frame if frame.ndim == 2 else cv2.cvtColor(frame, cv2.COLOR_BGR2GRAY)
        for scale in self.scales:
            scaled = _downscale(gray, scale)
            if scaled is None:
                continue
            detections = [
                _rescale(det, scale) for det in self._detect_once(scaled) if det.text.strip()
            ]
            if detections:
                logger.debug("Decoded %d code(s) at 1/%d scale", len(detections), scale)
                return detections
        return []

    def decode(self, frame) -> List[str]:
        return [det.text for det in self.detect(frame)]

    def _detect_once(self, gray) -> List[QRCodeDetection]:
        if self.backend == "pyzbar":
            return _detect_pyzbar(gray, self._pyzbar)
        if self.backend == "zxingcpp":
            return _detect_zxingcpp(gray, self._zxingcpp)
        return _detect_opencv(gray, self._opencv)


def _downscale(gray: np.ndarray, scale: int):
    if scale == 1:
        return gray
    h, w = gray.shape[:2]
    if h // scale < 21 or w // scale < 21:
        # Smaller than a version 1 QR code
        return None
    return cv2.resize(gray, (w // scale, h // scale), interpolation=cv2.INTER_AREA)


def _rescale(det: QRCodeDetection, scale: int) -> QRCodeDetection:
    det.points = [(x * scale, y * scale) for x, y in det.points]
    return det


def _detect_opencv(frame, detector: cv2.QRCodeDetector) -> List[QRCodeDetection]:
    detections: List[QRCodeDetection] = []
    try:
        ok, decoded_info, points, _ = detector.detectAndDecodeMulti(frame)
    except cv2.error:
        ok, decoded_info, points = False, (), None
    if ok and decoded_info and points is not None:
        for text, quad in zip(decoded_info, points):
            if not text:
                continue
            detections.append(
                QRCodeDetection(text=text, points=[(float(x), float(y)) for x, y in quad])
            )
        return detections
    try:
        result = detector.detectAndDecode(frame)
    except cv2.error:
        return detections
    if len(result) == 3:
        text, points, _ = result
    else:
        text, points = result
    if text and points is not None:
        detections.append(
            QRCodeDetection(
                text=text, points=[(float(x), float(y)) for x, y in points[0]]
            )
        )
    return detections


def _detect_pyzbar(frame, pyzbar) -> List[QRCodeDetection]:
    detections: List[QRCodeDetection] = []
    for obj in pyzbar.decode(frame):
        text = obj.data.decode("utf-8", errors="replace")
        if obj.polygon:
            quad_points = [(float(p.x), float(p.y)) for p in obj.polygon]
        else:
            rect = obj.rect
            quad_points = [
                (float(rect.left), float(rect.top)),
                (float(rect.left + rect.width), float(rect.top)),
                (float(rect.left + rect.width), float(rect.top + rect.height)),
                (float(rect.left), float(rect.top + rect.height)),
            ]
        detections.append(QRCodeDetection(text=text, points=quad_points))
    return detections


def _detect_zxingcpp(frame, zxingcpp) -> List[QRCodeDetection]:
    detections: List[QRCodeDetection] = []
    for result in zxingcpp.read_barcodes(frame):
        if not result.text:
            continue
        pos = result.position
        detections.append(
            QRCodeDetection(
                text=result.text,
                points=[
                    (float(pos.top_left.x), float(pos.top_left.y)),
                    (float(pos.top_right.x), float(pos.top_right.y)),
                    (float(pos.bottom_right.x), float(pos.bottom_right.y)),
                    (float(pos.bottom_left.x), float(pos.bottom_left.y)),
                ],
            )
        )
    return detections

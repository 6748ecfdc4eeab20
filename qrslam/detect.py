from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Iterable

import cv2
import numpy as np

from .types import Detection

logger = logging.getLogger(__name__)


def is_valid_detection(det) -> bool:
    """A usable detection has a non-empty id and four finite corners."""
    marker_id = getattr(det, "marker_id", None)
    if not isinstance(marker_id, str) or not marker_id:
        return False
    try:
        corners = np.asarray(det.corners, dtype=np.float64)
    except (TypeError, ValueError):
        return False
    return corners.size == 8 and bool(np.all(np.isfinite(corners)))


def filter_detections(detections: Iterable[Detection]) -> list[Detection]:
    out: list[Detection] = []
    for det in detections:
        if is_valid_detection(det):
            out.append(det)
        else:
            logger.debug("dropping malformed detection: %r", getattr(det, "marker_id", None))
    return out


class MarkerDetector(ABC):
    """Finds markers in a BGR image; corners are returned TL, TR, BR, BL."""

    @abstractmethod
    def detect(self, image) -> list[Detection]:
        ...


class QrCodeDetector(MarkerDetector):
    """QR codes via OpenCV; the decoded payload is the marker id."""

    def __init__(self):
        self._detector = cv2.QRCodeDetector()

    def detect(self, image) -> list[Detection]:
        try:
            ok, payloads, points, _straight = self._detector.detectAndDecodeMulti(image)
        except cv2.error as exc:
            logger.warning("QR detection failed: %s", exc)
            return []
        if not ok or points is None:
            return []

        dets: list[Detection] = []
        for payload, pts in zip(payloads, points):
            # detected but not decoded
            if not payload:
                continue
            dets.append(Detection(str(payload), np.asarray(pts, dtype=np.float64).reshape(4, 2)))
        return filter_detections(dets)


def get_aruco_dict(name: str):
    """Resolve names like '4x4_50' or 'DICT_6X6_100'; unknown names fall back to 4x4_50."""
    key = (name or "").strip().upper()
    if not key.startswith("DICT_"):
        key = "DICT_" + key
    code = getattr(cv2.aruco, key, None)
    if code is None:
        logger.warning("unknown ArUco dictionary %r, using DICT_4X4_50", name)
        code = cv2.aruco.DICT_4X4_50
    return cv2.aruco.getPredefinedDictionary(code)


class ArucoDetector(MarkerDetector):
    """Dictionary-based ArUco markers; integer ids are stringified."""

    def __init__(self, dict_name: str = "4x4_50"):
        self.dictionary = get_aruco_dict(dict_name)
        self.params = cv2.aruco.DetectorParameters()
        self._detector = cv2.aruco.ArucoDetector(self.dictionary, self.params)

    def detect(self, image) -> list[Detection]:
        try:
            corners, ids, _rej = self._detector.detectMarkers(image)
        except cv2.error as exc:
            logger.warning("ArUco detection failed: %s", exc)
            return []

        dets: list[Detection] = []
        if ids is not None and len(ids) > 0:
            for i, mid in enumerate(ids.flatten()):
                dets.append(Detection(str(int(mid)), np.asarray(corners[i], dtype=np.float64).reshape(4, 2)))
        return filter_detections(dets)


def order_corners(points) -> np.ndarray:
    """Reduce a decoder polygon to four corners ordered TL, TR, BR, BL.

    Polygons with more than four vertices are replaced by their minimum-area
    bounding box. The in-plane orientation of the code is not recovered, so
    the top-left corner is the one nearest the image origin.
    """
    pts = np.asarray(points, dtype=np.float32).reshape(-1, 2)
    if len(pts) != 4:
        pts = cv2.boxPoints(cv2.minAreaRect(pts))
    pts = pts.astype(np.float64)
    centre = pts.mean(axis=0)
    # image y points down, so increasing angle runs clockwise on screen
    angles = np.arctan2(pts[:, 1] - centre[1], pts[:, 0] - centre[0])
    pts = pts[np.argsort(angles)]
    start = int(np.argmin(pts.sum(axis=1)))
    return np.roll(pts, -start, axis=0)


class ZBarDetector(MarkerDetector):
    """QR codes via the ZBar library (pyzbar).

    ``decode`` defaults to ``pyzbar.decode`` restricted to QR symbols; it
    receives a grayscale image and returns pyzbar ``Decoded`` records.
    """

    def __init__(self, decode=None):
        if decode is None:
            from pyzbar import pyzbar

            def decode(gray):
                return pyzbar.decode(gray, symbols=[pyzbar.ZBarSymbol.QRCODE])

        self._decode = decode

    def detect(self, image) -> list[Detection]:
        gray = image if image.ndim == 2 else cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)
        dets: list[Detection] = []
        for symbol in self._decode(gray):
            payload = symbol.data.decode("utf-8", errors="replace")
            if not payload or len(symbol.polygon) < 3:
                continue
            polygon = [(p.x, p.y) for p in symbol.polygon]
            dets.append(Detection(payload, order_corners(polygon)))
        return filter_detections(dets)


def build_detector(name: str = "qr", aruco_dict: str = "4x4_50") -> MarkerDetector:
    """``qr``/``opencv`` -> OpenCV QR, ``zbar`` -> ZBar QR, ``aruco`` -> ArUco."""
    kind = (name or "").strip().lower()
    if kind in ("qr", "opencv"):
        return QrCodeDetector()
    if kind == "zbar":
        return ZBarDetector()
    if kind == "aruco":
        return ArucoDetector(aruco_dict)
    raise ValueError(f"Unknown detector: {name!r} (expected 'qr', 'opencv', 'zbar' or 'aruco')")

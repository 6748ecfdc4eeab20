from __future__ import annotations

import logging
from typing import Optional, Tuple

import cv2
import numpy as np

from .types import CameraIntrinsics

logger = logging.getLogger(__name__)

# Quadrilaterals smaller than this (px^2) carry no usable pose information.
MIN_CORNER_AREA_PX2 = 1e-3


def marker_object_points(marker_size: float) -> np.ndarray:
    """Canonical corners of a square marker centred at its origin, Z=0.

    Order is TL, TR, BR, BL, matching the detectors' corner ordering.
    """
    h = marker_size / 2.0
    return np.array(
        [
            [-h, -h, 0.0],
            [h, -h, 0.0],
            [h, h, 0.0],
            [-h, h, 0.0],
        ],
        dtype=np.float64,
    )


def _is_degenerate(corners: np.ndarray) -> bool:
    x, y = corners[:, 0], corners[:, 1]
    # shoelace area of the quadrilateral
    area = 0.5 * abs(np.dot(x, np.roll(y, -1)) - np.dot(y, np.roll(x, -1)))
    if area < MIN_CORNER_AREA_PX2:
        return True
    for i in range(4):
        a, b, c = corners[i], corners[(i + 1) % 4], corners[(i + 2) % 4]
        cross = (b[0] - a[0]) * (c[1] - a[1]) - (b[1] - a[1]) * (c[0] - a[0])
        if abs(cross) < MIN_CORNER_AREA_PX2:
            return True
    return False


class MarkerLocalizer:
    """Recover marker -> camera pose from four corner correspondences."""

    def __init__(self, intrinsics: CameraIntrinsics, dist=None):
        self.K = intrinsics.as_matrix()
        if dist is None:
            self.dist = np.zeros((5, 1), dtype=np.float64)
        else:
            self.dist = np.asarray(dist, dtype=np.float64).reshape(-1, 1)

    def localize(
        self, corners_px, marker_size: float
    ) -> Optional[Tuple[np.ndarray, np.ndarray]]:
        """Return (R_cm, t_cm) or None when no pose can be recovered.

        R_cm is (3,3), t_cm is (3,); together they map marker-frame points
        into the camera optical frame.
        """
        if marker_size <= 0:
            logger.warning("invalid marker size: %s", marker_size)
            return None

        corners = np.asarray(corners_px, dtype=np.float64)
        if corners.size != 8 or not np.all(np.isfinite(corners)):
            logger.debug("malformed corners: shape=%s", corners.shape)
            return None
        corners = corners.reshape(4, 2)
        if _is_degenerate(corners):
            logger.debug("degenerate corner configuration")
            return None

        obj = marker_object_points(marker_size)
        try:
            ok, rvec, tvec = cv2.solvePnP(
                obj,
                corners.reshape(4, 1, 2),
                self.K,
                self.dist,
                flags=cv2.SOLVEPNP_ITERATIVE,
            )
        except cv2.error as exc:
            logger.warning("solvePnP raised: %s", exc)
            return None

        if not ok or rvec is None or tvec is None:
            return None
        if not (np.all(np.isfinite(rvec)) and np.all(np.isfinite(tvec))):
            return None

        R, _ = cv2.Rodrigues(rvec)
        return R, tvec.reshape(3)

from __future__ import annotations

import math
from typing import Iterable

import cv2

from .types import ProjectedMarker

IN_VIEW_COLOR = (0, 255, 0)
OUT_OF_VIEW_COLOR = (120, 120, 120)
LABEL_COLOR = (255, 0, 0)
TRACKING_COLOR = (40, 220, 40)
LOST_COLOR = (0, 0, 255)
# Off-frame rings farther than this many image sizes from the origin are not drawn.
DRAW_RANGE_FACTOR = 4


def _drawable(pixel, width: int, height: int) -> bool:
    limit = DRAW_RANGE_FACTOR * max(width, height)
    u, v = pixel
    return math.isfinite(u) and math.isfinite(v) and abs(u) <= limit and abs(v) <= limit


def draw_markers(frame, projected: Iterable[ProjectedMarker]) -> int:
    """Draw a ring per projected marker; label only those in view.

    Returns the number of markers drawn in view.
    """
    h, w = frame.shape[:2]
    drawn = 0
    for pm in projected:
        if pm.pixel is None or not _drawable(pm.pixel, w, h):
            continue
        center = (int(round(pm.pixel[0])), int(round(pm.pixel[1])))
        color = IN_VIEW_COLOR if pm.in_view else OUT_OF_VIEW_COLOR
        cv2.circle(frame, center, 6, color, 2, cv2.LINE_AA)
        if pm.in_view:
            cv2.putText(
                frame,
                pm.marker_id,
                (center[0] + 8, center[1] - 8),
                cv2.FONT_HERSHEY_SIMPLEX,
                0.5,
                LABEL_COLOR,
                2,
                cv2.LINE_AA,
            )
            drawn += 1
    return drawn


def draw_status(frame, tracking: bool, n_markers: int) -> None:
    if tracking:
        text, color = f"TRACKING | {n_markers} code(s)", TRACKING_COLOR
    else:
        text, color = "PRESS SPACE TO SCAN", LOST_COLOR
    cv2.putText(frame, text, (10, 40), cv2.FONT_HERSHEY_SIMPLEX, 0.6, color, 2, cv2.LINE_AA)


def draw_fps(frame, fps: float) -> None:
    cv2.putText(
        frame,
        f"FPS: {int(fps)}",
        (10, 20),
        cv2.FONT_HERSHEY_SIMPLEX,
        0.6,
        (255, 255, 255),
        1,
        cv2.LINE_AA,
    )

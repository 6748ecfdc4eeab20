from __future__ import annotations

import logging
import threading
from typing import Iterable, Optional

import numpy as np

from .detect import is_valid_detection
from .localize import MarkerLocalizer
from .transforms import marker_to_world
from .types import CameraPose, Detection, MarkerRecord, UpsertResult

logger = logging.getLogger(__name__)


class MarkerMap:
    """Marker id -> world-frame pose.

    Re-observing an id overwrites its pose with the latest estimate. There is
    no averaging: the most recent camera pose from a drift-correcting
    localizer is trusted over older ones.
    """

    def __init__(self, localizer: MarkerLocalizer):
        self.localizer = localizer
        self._records: dict[str, MarkerRecord] = {}
        self._lock = threading.RLock()

    def upsert(
        self,
        detections: Iterable[Detection],
        camera_pose: Optional[CameraPose],
        marker_size: float,
        frame_idx: Optional[int] = None,
    ) -> UpsertResult:
        result = UpsertResult()
        if camera_pose is None or not camera_pose.is_valid():
            logger.warning("upsert skipped: no valid camera pose")
            return result

        with self._lock:
            for det in detections:
                if not is_valid_detection(det):
                    logger.debug("skipping malformed detection: %r", getattr(det, "marker_id", None))
                    continue
                pose = self.localizer.localize(det.corners, marker_size)
                if pose is None:
                    logger.warning("PnP failed for %s", det.marker_id)
                    continue
                R_cm, t_cm = pose
                is_new = self.insert_pose(
                    det.marker_id, R_cm, t_cm, camera_pose, marker_size, frame_idx
                )
                if is_new:
                    result.new_ids.append(det.marker_id)
                else:
                    result.updated_ids.append(det.marker_id)
        return result

    def insert_pose(
        self,
        marker_id: str,
        R_cm: np.ndarray,
        t_cm: np.ndarray,
        camera_pose: CameraPose,
        marker_size: float,
        frame_idx: Optional[int] = None,
    ) -> bool:
        """Store a camera-relative marker pose in world coordinates.

        Returns True when the id was not mapped before.
        """
        R_wm, t_wm = marker_to_world(
            camera_pose.rotation, camera_pose.translation, R_cm, t_cm
        )
        with self._lock:
            rec = self._records.get(marker_id)
            if rec is None:
                self._records[marker_id] = MarkerRecord(
                    marker_id=marker_id,
                    position_w=t_wm,
                    orientation_w=R_wm,
                    size_m=float(marker_size),
                    last_frame=frame_idx,
                )
                logger.info("+%s at (%.3f, %.3f, %.3f)", marker_id, *t_wm)
                return True

            rec.position_w = t_wm
            rec.orientation_w = R_wm
            rec.size_m = float(marker_size)
            rec.observations += 1
            rec.last_frame = frame_idx
            logger.debug("~%s at (%.3f, %.3f, %.3f)", marker_id, *t_wm)
            return False

    def get(self, marker_id: str) -> Optional[MarkerRecord]:
        with self._lock:
            rec = self._records.get(marker_id)
            return rec.copy() if rec is not None else None

    def records(self) -> list[MarkerRecord]:
        with self._lock:
            return [r.copy() for r in self._records.values()]

    def ids(self) -> list[str]:
        with self._lock:
            return list(self._records)

    def clear(self) -> None:
        with self._lock:
            self._records.clear()
        logger.info("marker map cleared")

    def size(self) -> int:
        with self._lock:
            return len(self._records)

    def __len__(self) -> int:
        return self.size()

    def __contains__(self, marker_id: object) -> bool:
        with self._lock:
            return marker_id in self._records

from __future__ import annotations

from typing import Optional

import numpy as np

from .camera import CameraModel
from .marker_map import MarkerMap
from .types import CameraPose, ProjectedMarker


# Points closer than this along the optical axis are treated as not visible.
DEFAULT_MIN_DEPTH_M = 0.05


class MarkerProjector:
    """Project every mapped marker into the current image.

    Markers are never dropped from the output; callers decide what to do
    with the ones that are out of view.
    """

    def __init__(
        self,
        marker_map: MarkerMap,
        camera: CameraModel,
        min_depth_m: float = DEFAULT_MIN_DEPTH_M,
    ):
        if not min_depth_m > 0:
            raise ValueError(f"min_depth_m must be > 0, got {min_depth_m}")
        self.marker_map = marker_map
        self.camera = camera
        self.min_depth_m = float(min_depth_m)

    def project_all(
        self, camera_pose: Optional[CameraPose], width: int, height: int
    ) -> list[ProjectedMarker]:
        if camera_pose is None or not camera_pose.is_valid():
            return []
        records = self.marker_map.records()
        if not records:
            return []

        points_w = np.stack([rec.position_w for rec in records])
        points_c = points_w @ camera_pose.rotation.T + camera_pose.translation
        uvz = self.camera.project_many(points_c)

        out: list[ProjectedMarker] = []
        for rec, (u, v, depth) in zip(records, uvz):
            depth = float(depth)
            if depth <= self.min_depth_m:
                out.append(ProjectedMarker(rec.marker_id, None, False, depth))
                continue
            u, v = float(u), float(v)
            in_view = CameraModel.in_bounds(u, v, width, height)
            out.append(ProjectedMarker(rec.marker_id, (u, v), in_view, depth))
        return out

    def project_visible(
        self, camera_pose: Optional[CameraPose], width: int, height: int
    ) -> list[ProjectedMarker]:
        return [m for m in self.project_all(camera_pose, width, height) if m.in_view]

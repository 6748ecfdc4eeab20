"""World-anchored QR/ArUco marker map with live re-projection."""

from .camera import CameraModel, load_intrinsics
from .config import AppConfig
from .localize import MarkerLocalizer
from .marker_map import MarkerMap
from .projector import MarkerProjector
from .types import CameraIntrinsics, CameraPose, Detection, MarkerRecord, ProjectedMarker

__all__ = [
    "AppConfig",
    "CameraIntrinsics",
    "CameraModel",
    "CameraPose",
    "Detection",
    "MarkerLocalizer",
    "MarkerMap",
    "MarkerProjector",
    "MarkerRecord",
    "ProjectedMarker",
    "load_intrinsics",
]

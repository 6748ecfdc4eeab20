from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

import numpy as np


@dataclass
class Frame:
    idx: int
    timestamp: float  # seconds since capture start
    image: Any  # numpy array (BGR)


@dataclass
class Detection:
    marker_id: str
    corners: Any  # (4,2) ndarray, TL, TR, BR, BL


@dataclass(frozen=True)
class CameraIntrinsics:
    fx: float
    fy: float
    cx: float
    cy: float

    def as_matrix(self) -> np.ndarray:
        return np.array(
            [
                [self.fx, 0.0, self.cx],
                [0.0, self.fy, self.cy],
                [0.0, 0.0, 1.0],
            ],
            dtype=np.float64,
        )


@dataclass
class CameraPose:
    """Rigid transform T_cw: maps world points into the camera optical frame.

    Translation is expressed in meters, the same unit as marker sizes.
    """

    rotation: np.ndarray  # (3,3)
    translation: np.ndarray  # (3,)

    def __post_init__(self):
        self.rotation = np.asarray(self.rotation, dtype=np.float64).reshape(3, 3)
        self.translation = np.asarray(self.translation, dtype=np.float64).reshape(3)

    @classmethod
    def identity(cls) -> "CameraPose":
        return cls(np.eye(3), np.zeros(3))

    @classmethod
    def from_matrix(cls, T: np.ndarray) -> "CameraPose":
        T = np.asarray(T, dtype=np.float64)
        return cls(T[:3, :3], T[:3, 3])

    def as_matrix(self) -> np.ndarray:
        T = np.eye(4)
        T[:3, :3] = self.rotation
        T[:3, 3] = self.translation
        return T

    def inverse(self) -> "CameraPose":
        """Return T_wc (camera points -> world) as R^T, -R^T t."""
        R_T = self.rotation.T
        return CameraPose(R_T, -R_T @ self.translation)

    def transform_point(self, p: np.ndarray) -> np.ndarray:
        return self.rotation @ np.asarray(p, dtype=np.float64).reshape(3) + self.translation

    def is_valid(self, tol: float = 1e-6) -> bool:
        R = self.rotation
        if not (np.all(np.isfinite(R)) and np.all(np.isfinite(self.translation))):
            return False
        if not np.allclose(R @ R.T, np.eye(3), atol=tol):
            return False
        return bool(abs(np.linalg.det(R) - 1.0) < tol)

    def copy(self) -> "CameraPose":
        return CameraPose(self.rotation.copy(), self.translation.copy())


@dataclass
class MarkerRecord:
    marker_id: str
    position_w: np.ndarray  # (3,) marker centre in world frame
    orientation_w: np.ndarray  # (3,3) marker axes in world frame
    size_m: float
    observations: int = 1
    last_frame: Optional[int] = None

    def copy(self) -> "MarkerRecord":
        return MarkerRecord(
            marker_id=self.marker_id,
            position_w=self.position_w.copy(),
            orientation_w=self.orientation_w.copy(),
            size_m=self.size_m,
            observations=self.observations,
            last_frame=self.last_frame,
        )


@dataclass
class ProjectedMarker:
    marker_id: str
    pixel: Optional[tuple[float, float]]  # None when behind / too close to the camera
    in_view: bool
    depth_m: float


@dataclass
class UpsertResult:
    new_ids: list[str] = field(default_factory=list)
    updated_ids: list[str] = field(default_factory=list)

    @property
    def new_count(self) -> int:
        return len(self.new_ids)

    @property
    def updated_count(self) -> int:
        return len(self.updated_ids)

    def __bool__(self) -> bool:
        return bool(self.new_ids or self.updated_ids)

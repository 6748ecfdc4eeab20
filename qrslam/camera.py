from __future__ import annotations

from pathlib import Path
from typing import Optional, Tuple

import cv2
import numpy as np
import yaml

from .types import CameraIntrinsics


class CameraModel:
    """Pinhole projection with fixed intrinsics (no distortion)."""

    def __init__(self, intrinsics: CameraIntrinsics):
        self.intrinsics = intrinsics

    @classmethod
    def from_intrinsics(cls, fx: float, fy: float, cx: float, cy: float) -> "CameraModel":
        return cls(CameraIntrinsics(float(fx), float(fy), float(cx), float(cy)))

    @property
    def K(self) -> np.ndarray:
        return self.intrinsics.as_matrix()

    def project(self, point_c) -> Tuple[float, float, float]:
        """Project a camera-frame point to (u, v, depth).

        Callers are expected to reject z at or below their depth threshold
        first. For z <= 0 the pixel is NaN.
        """
        x, y, z = (float(c) for c in np.asarray(point_c, dtype=np.float64).reshape(3))
        if z <= 0.0:
            return float("nan"), float("nan"), z
        k = self.intrinsics
        u = k.fx * x / z + k.cx
        v = k.fy * y / z + k.cy
        return u, v, z

    def project_many(self, points_c: np.ndarray) -> np.ndarray:
        """Vectorised project(): (N,3) camera-frame points -> (N,3) of u, v, depth."""
        pts = np.asarray(points_c, dtype=np.float64).reshape(-1, 3)
        z = pts[:, 2]
        k = self.intrinsics
        out = np.full((pts.shape[0], 3), np.nan)
        out[:, 2] = z
        front = z > 0.0
        out[front, 0] = k.fx * pts[front, 0] / z[front] + k.cx
        out[front, 1] = k.fy * pts[front, 1] / z[front] + k.cy
        return out

    @staticmethod
    def in_bounds(u: float, v: float, width: int, height: int) -> bool:
        return 0 <= u < width and 0 <= v < height


def _read_filestorage(path: Path) -> Tuple[CameraIntrinsics, Optional[Tuple[int, int]]]:
    fs = cv2.FileStorage(str(path), cv2.FILE_STORAGE_READ)
    try:
        K = fs.getNode("camera_matrix").mat()
        if K is None:
            raise ValueError(f"camera_matrix missing in calibration: {path}")
        K = np.asarray(K, dtype=np.float64).reshape(3, 3)
        size = None
        w_node = fs.getNode("image_width")
        h_node = fs.getNode("image_height")
        if not w_node.empty() and not h_node.empty():
            size = (int(w_node.real()), int(h_node.real()))
    finally:
        fs.release()
    return CameraIntrinsics(K[0, 0], K[1, 1], K[0, 2], K[1, 2]), size


def load_intrinsics(path: str | Path) -> Tuple[CameraIntrinsics, Optional[Tuple[int, int]]]:
    """Load fx, fy, cx, cy (and image size when present) from a calibration file.

    Two layouts are understood:

    * SLAM-style YAML with a ``Camera`` mapping (``fx``, ``fy``, ``cx``,
      ``cy``, optional ``cols``/``rows``);
    * OpenCV FileStorage output with ``camera_matrix``, ``image_width`` and
      ``image_height``.
    """
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Calibration not found: {p}")

    text = p.read_text(encoding="utf-8")
    # FileStorage output carries a %YAML:1.0 header and opencv-matrix tags
    if text.lstrip().startswith("%YAML") or "camera_matrix" in text:
        return _read_filestorage(p)

    raw = yaml.safe_load(text) or {}
    if not isinstance(raw, dict):
        raise ValueError("Calibration root must be a mapping")

    cam = raw.get("Camera")
    if isinstance(cam, dict):
        try:
            intr = CameraIntrinsics(
                float(cam["fx"]), float(cam["fy"]), float(cam["cx"]), float(cam["cy"])
            )
        except KeyError as exc:
            raise ValueError(f"Camera.{exc.args[0]} missing in calibration: {p}") from exc
        size = None
        if "cols" in cam and "rows" in cam:
            size = (int(cam["cols"]), int(cam["rows"]))
        return intr, size

    raise ValueError(f"Unrecognised calibration layout: {p}")

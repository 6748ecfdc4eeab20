import numpy as np
import pytest

from qrslam.localize import marker_object_points
from qrslam.types import CameraIntrinsics


@pytest.fixture
def intrinsics() -> CameraIntrinsics:
    return CameraIntrinsics(fx=800.0, fy=800.0, cx=320.0, cy=240.0)


@pytest.fixture
def project_corners(intrinsics):
    """Pixel corners of a marker at (R_cm, t_cm), via the pinhole model."""

    def _project(R_cm, t_cm, marker_size, k: CameraIntrinsics = intrinsics):
        obj = marker_object_points(marker_size)
        pts = obj @ np.asarray(R_cm, dtype=np.float64).T + np.asarray(t_cm, dtype=np.float64)
        u = k.fx * pts[:, 0] / pts[:, 2] + k.cx
        v = k.fy * pts[:, 1] / pts[:, 2] + k.cy
        return np.stack([u, v], axis=1)

    return _project


@pytest.fixture
def centred_corners():
    """0.04 m marker 1 m in front of an 800 px camera, facing it."""
    return np.array(
        [[304.0, 224.0], [336.0, 224.0], [336.0, 256.0], [304.0, 256.0]]
    )

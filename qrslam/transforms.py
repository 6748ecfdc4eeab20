"""SE(3) helpers for marker and camera poses."""

from typing import Tuple

import numpy as np


def marker_to_world(
    R_cw: np.ndarray,
    t_cw: np.ndarray,
    R_cm: np.ndarray,
    t_cm: np.ndarray,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Express a camera-relative marker pose in the world frame.

    Given:
        T_cw: world -> camera (camera pose as supplied by the localizer)
        T_cm: marker -> camera (from PnP)

    Compute:
        T_wm = inv(T_cw) @ T_cm

    Returns:
        (R_wm, t_wm)
    """
    R_wc = np.asarray(R_cw, dtype=np.float64).T
    t_wc = -R_wc @ np.asarray(t_cw, dtype=np.float64).reshape(3)

    R_wm = R_wc @ np.asarray(R_cm, dtype=np.float64)
    t_wm = R_wc @ np.asarray(t_cm, dtype=np.float64).reshape(3) + t_wc
    return R_wm, t_wm


def quaternion_to_matrix(qx: float, qy: float, qz: float, qw: float) -> np.ndarray:
    """Rotation matrix from a unit quaternion given as (x, y, z, w)."""
    q = np.array([qx, qy, qz, qw], dtype=np.float64)
    n = np.linalg.norm(q)
    if n < 1e-12:
        raise ValueError("Quaternion has zero norm")
    x, y, z, w = q / n
    return np.array(
        [
            [1 - 2 * (y * y + z * z), 2 * (x * y - z * w), 2 * (x * z + y * w)],
            [2 * (x * y + z * w), 1 - 2 * (x * x + z * z), 2 * (y * z - x * w)],
            [2 * (x * z - y * w), 2 * (y * z + x * w), 1 - 2 * (x * x + y * y)],
        ],
        dtype=np.float64,
    )

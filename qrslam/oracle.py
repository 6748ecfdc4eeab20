"""Camera pose sources.

The frame loop treats the pose source as opaque: it feeds frames in and gets
an optional ``T_cw`` back. A real visual-SLAM tracker plugs in by
implementing :class:`PoseOracle`; the two concrete oracles here cover a
fixed camera and replay of a recorded trajectory.
"""

from __future__ import annotations

import logging
import os
from abc import ABC, abstractmethod
from typing import Optional

import numpy as np

from .config import OracleConfig
from .transforms import quaternion_to_matrix
from .types import CameraPose

logger = logging.getLogger(__name__)


class PoseOracle(ABC):
    def start(self) -> None:
        return None

    def stop(self) -> None:
        return None

    @abstractmethod
    def feed_frame(self, image, timestamp: float) -> Optional[CameraPose]:
        """Consume a frame and return the current T_cw, or None when not tracking."""
        ...

    @abstractmethod
    def get_current_pose(self) -> Optional[CameraPose]:
        ...

    @abstractmethod
    def reset(self) -> None:
        ...


class StaticPoseOracle(PoseOracle):
    """A camera that never moves."""

    def __init__(self, pose: Optional[CameraPose] = None):
        self._pose = pose if pose is not None else CameraPose.identity()

    def feed_frame(self, image, timestamp: float) -> Optional[CameraPose]:
        return self._pose.copy()

    def get_current_pose(self) -> Optional[CameraPose]:
        return self._pose.copy()

    def reset(self) -> None:
        logger.info("static pose oracle reset (no-op)")


def load_tum_trajectory(path: str) -> tuple[np.ndarray, list[CameraPose]]:
    """Read ``timestamp tx ty tz qx qy qz qw`` lines into (timestamps, T_cw poses).

    TUM files store the camera pose in the world frame (T_wc); each entry is
    inverted so the returned poses map world points into the camera.
    """
    if not os.path.isfile(path):
        raise FileNotFoundError(f"Trajectory not found: {path}")

    stamps: list[float] = []
    poses: list[CameraPose] = []
    with open(path, "r", encoding="utf-8") as f:
        for lineno, line in enumerate(f, start=1):
            line = line.strip()
            if (not line) or line.startswith("#"):
                continue
            parts = line.split()
            if len(parts) < 8:
                raise ValueError(f"{path}:{lineno}: expected 8 columns, got {len(parts)}")
            ts, tx, ty, tz, qx, qy, qz, qw = (float(v) for v in parts[:8])
            T_wc = CameraPose(quaternion_to_matrix(qx, qy, qz, qw), [tx, ty, tz])
            stamps.append(ts)
            poses.append(T_wc.inverse())

    if not stamps:
        raise ValueError(f"Trajectory is empty: {path}")

    order = np.argsort(stamps, kind="stable")
    return np.asarray(stamps, dtype=np.float64)[order], [poses[i] for i in order]


class TrajectoryPoseOracle(PoseOracle):
    """Replay a recorded trajectory by nearest timestamp.

    With ``relative_time`` the trajectory timestamps are shifted so the first
    entry is t=0, matching frame timestamps counted from capture start.
    Frames farther than ``max_time_diff`` seconds from any entry are reported
    as tracking lost.
    """

    def __init__(self, path: str, max_time_diff: float = 0.05, relative_time: bool = True):
        self.path = path
        self.max_time_diff = float(max_time_diff)
        self.timestamps, self.poses = load_tum_trajectory(path)
        if relative_time:
            self.timestamps = self.timestamps - self.timestamps[0]
        self._current: Optional[CameraPose] = None

    def __len__(self) -> int:
        return len(self.poses)

    def lookup(self, timestamp: float) -> Optional[CameraPose]:
        ts = self.timestamps
        i = int(np.searchsorted(ts, timestamp))
        candidates = [j for j in (i - 1, i) if 0 <= j < len(ts)]
        best = min(candidates, key=lambda j: abs(ts[j] - timestamp))
        if abs(ts[best] - timestamp) > self.max_time_diff:
            return None
        return self.poses[best].copy()

    def feed_frame(self, image, timestamp: float) -> Optional[CameraPose]:
        self._current = self.lookup(timestamp)
        if self._current is None:
            logger.debug("no trajectory entry within %.3fs of t=%.3f", self.max_time_diff, timestamp)
        return self._current

    def get_current_pose(self) -> Optional[CameraPose]:
        return None if self._current is None else self._current.copy()

    def reset(self) -> None:
        self._current = None
        logger.info("trajectory pose oracle reset")


def _static_pose(rows) -> CameraPose:
    T = np.asarray(rows, dtype=np.float64)
    if T.shape != (4, 4):
        raise ValueError(f"oracle.static_pose must be a 4x4 matrix, got shape {T.shape}")
    pose = CameraPose.from_matrix(T)
    if not pose.is_valid():
        raise ValueError("oracle.static_pose rotation is not a proper rotation matrix")
    return pose


def build_oracle(config: OracleConfig) -> PoseOracle:
    kind = (config.type or "").strip().lower()
    if kind == "static":
        if config.static_pose is None:
            return StaticPoseOracle()
        return StaticPoseOracle(_static_pose(config.static_pose))
    if kind == "trajectory":
        if not config.trajectory_path:
            raise ValueError("oracle.trajectory_path is required for a trajectory oracle")
        return TrajectoryPoseOracle(
            config.trajectory_path,
            max_time_diff=config.max_time_diff,
            relative_time=config.relative_time,
        )
    raise ValueError(f"Unknown oracle type: {config.type!r}")

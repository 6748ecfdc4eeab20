from __future__ import annotations

import csv
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

import cv2
import numpy as np

from .types import MarkerRecord


class OutputSink(ABC):
    """Receives every successful marker upsert."""

    @abstractmethod
    def open(self, session_dir: Path) -> None: ...

    @abstractmethod
    def write_marker(self, ts_unix: float, frame_idx: int, record: MarkerRecord, status: str) -> None: ...

    @abstractmethod
    def close(self) -> None: ...


class CsvOutput(OutputSink):
    HEADER = [
        "recorded_at",
        "frame_idx", "marker_id", "status",
        "tw_x", "tw_y", "tw_z",
        "rvec_wx", "rvec_wy", "rvec_wz",
    ]

    def __init__(self, filename: str = "markers.csv"):
        self.filename = filename
        self.path: Optional[Path] = None
        self._fh = None
        self._w = None

    def open(self, session_dir: Path) -> None:
        self.path = Path(session_dir) / self.filename
        self._fh = self.path.open("w", newline="", encoding="utf-8")
        self._w = csv.writer(self._fh)
        self._w.writerow(self.HEADER)

    def write_marker(self, ts_unix: float, frame_idx: int, record: MarkerRecord, status: str) -> None:
        if self._w is None:
            return
        rvec, _ = cv2.Rodrigues(np.asarray(record.orientation_w, dtype=np.float64))
        self._w.writerow([
            f"{ts_unix:.6f}",
            frame_idx, record.marker_id, status,
            *np.asarray(record.position_w).reshape(3).tolist(),
            *rvec.reshape(3).tolist(),
        ])

    def close(self) -> None:
        if self._fh is not None:
            self._fh.close()
            self._fh = None
            self._w = None


class NullOutput(OutputSink):
    def open(self, session_dir: Path) -> None:
        return None

    def write_marker(self, ts_unix: float, frame_idx: int, record: MarkerRecord, status: str) -> None:
        return None

    def close(self) -> None:
        return None

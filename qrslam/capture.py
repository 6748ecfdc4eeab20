from __future__ import annotations

import re
import time
from abc import ABC, abstractmethod
from typing import Any

import cv2
import numpy as np

from .types import Frame


class BaseCapture(ABC):
    @abstractmethod
    def start(self) -> None: ...

    @abstractmethod
    def next_frame(self) -> Frame | None: ...

    @abstractmethod
    def stop(self) -> None: ...


class USBOpenCVCapture(BaseCapture):
    """OpenCV VideoCapture over a device index, /dev/videoN, or a video file.

    Frame timestamps are seconds since start().
    """

    def __init__(self, device: int | str, fps: int, width: int, height: int):
        self.device = device
        self.fps = fps
        self.width = width
        self.height = height
        self.cap: Any = None
        self.idx = 0
        self._t0 = 0.0

    def start(self) -> None:
        if isinstance(self.device, int):
            self.cap = cv2.VideoCapture(self.device)
        else:
            dev_str = str(self.device)
            match = re.match(r"^/dev/video(\d+)$", dev_str)
            if match:
                self.cap = cv2.VideoCapture(int(match.group(1)), cv2.CAP_V4L2)
            elif dev_str.isdigit():
                self.cap = cv2.VideoCapture(int(dev_str))
            else:
                self.cap = cv2.VideoCapture(dev_str)

        if not self.cap.isOpened():
            raise RuntimeError(f"Failed to open camera: {self.device}")

        self.cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.width)
        self.cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.height)
        if self.fps > 0:
            self.cap.set(cv2.CAP_PROP_FPS, self.fps)
        self._t0 = time.perf_counter()

    def next_frame(self) -> Frame | None:
        ok, img = self.cap.read()
        if not ok or img is None:
            return None
        frame = Frame(self.idx, time.perf_counter() - self._t0, img)
        self.idx += 1
        return frame

    def stop(self) -> None:
        if self.cap is not None:
            self.cap.release()
            self.cap = None


class SyntheticCapture(BaseCapture):
    """Black frames at a fixed rate; timestamps advance by 1/fps exactly."""

    def __init__(self, fps: int, width: int, height: int, realtime: bool = False):
        self.fps = fps
        self.width = width
        self.height = height
        self.realtime = realtime
        self.idx = 0
        self._last = 0.0

    def start(self) -> None:
        self.idx = 0
        self._last = time.time()

    def next_frame(self) -> Frame | None:
        if self.realtime and self.fps > 0:
            wait = max(0.0, (1.0 / self.fps) - (time.time() - self._last))
            if wait > 0:
                time.sleep(wait)
            self._last = time.time()
        ts = self.idx / self.fps if self.fps > 0 else 0.0
        img = np.zeros((self.height, self.width, 3), dtype=np.uint8)
        frame = Frame(self.idx, ts, img)
        self.idx += 1
        return frame

    def stop(self) -> None:
        return None

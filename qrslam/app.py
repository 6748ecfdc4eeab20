from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import cv2

from .camera import CameraModel, load_intrinsics
from .capture import BaseCapture, SyntheticCapture, USBOpenCVCapture
from .config import AppConfig
from .detect import MarkerDetector, build_detector
from .localize import MarkerLocalizer
from .logging_utils import add_file_handler, setup_logger
from .marker_map import MarkerMap
from .oracle import PoseOracle, build_oracle
from .output import CsvOutput, NullOutput, OutputSink
from .overlay import draw_fps, draw_markers, draw_status
from .projector import MarkerProjector
from .storage import SessionStorage
from .timing import FpsMeter, StopWatch
from .types import CameraIntrinsics, CameraPose, Frame, UpsertResult

KEY_ESC = 27
KEY_NONE = 255
# Give up on a source after this many consecutive empty reads (end of a video file).
MAX_CONSECUTIVE_MISSES = 30


@dataclass
class SessionSummary:
    session_path: str
    frames_processed: int
    markers: int
    new_total: int
    updated_total: int
    csv_path: Optional[str]
    log_path: str
    avg_fps: float
    errors: int


class MarkerSession:
    """Frame loop: pose oracle -> detector -> map -> projector -> overlay.

    Detection runs on the first frame with a known pose, every
    ``qr_scan.interval_frame`` frames after that, and on demand (SPACE/S).
    Projection and overlay run on every frame with a known pose.
    """

    def __init__(
        self,
        config: AppConfig,
        logger: Optional[logging.Logger] = None,
        outputs: Optional[list[OutputSink]] = None,
        capture: Optional[BaseCapture] = None,
        oracle: Optional[PoseOracle] = None,
        detector: Optional[MarkerDetector] = None,
    ):
        self.config = config
        self.logger = logger or setup_logger(config.session_name)

        if outputs is None:
            outputs = [CsvOutput()] if config.record_csv else [NullOutput()]
        self.outputs = outputs
        self.capture = capture
        self.oracle = oracle if oracle is not None else build_oracle(config.oracle)
        self.detector = detector if detector is not None else build_detector(
            config.qr_scan.detector, config.qr_scan.aruco_dict
        )

        intrinsics = self._load_intrinsics()
        self.camera = CameraModel(intrinsics)
        self.marker_map = MarkerMap(MarkerLocalizer(intrinsics))
        self.projector = MarkerProjector(self.marker_map, self.camera, config.min_depth_m)

        self.need_scan = True
        self.fps_meter = FpsMeter()
        self.new_total = 0
        self.updated_total = 0
        self._last_frame: Optional[Frame] = None
        self._storage: Optional[SessionStorage] = None
        self._stop_event = threading.Event()

    def _load_intrinsics(self) -> CameraIntrinsics:
        cfg = self.config
        if not cfg.camera_path:
            return CameraIntrinsics(cfg.fx, cfg.fy, cfg.cx, cfg.cy)
        intrinsics, size = load_intrinsics(cfg.camera_path)
        if size is not None:
            cfg.capture_width, cfg.capture_height = size
        return intrinsics

    def stop(self) -> None:
        self._stop_event.set()

    def _build_capture(self) -> BaseCapture:
        if self.capture is not None:
            return self.capture
        cfg = self.config
        if cfg.synthetic:
            return SyntheticCapture(cfg.fps_target, cfg.capture_width, cfg.capture_height)
        return USBOpenCVCapture(cfg.device, cfg.fps_target, cfg.capture_width, cfg.capture_height)

    def scan(self, frame: Frame, pose: Optional[CameraPose], source: str = "auto") -> UpsertResult:
        """Detect markers in ``frame`` and merge them into the map."""
        if pose is None:
            self.logger.info("[%s scan] no camera pose, skipped", source)
            return UpsertResult()

        dets = self.detector.detect(frame.image)
        if not dets:
            self.logger.debug("[%s scan] no markers found", source)
            return UpsertResult()

        result = self.marker_map.upsert(
            dets, pose, self.config.qr_scan.marker_size_m, frame_idx=frame.idx
        )
        self.new_total += result.new_count
        self.updated_total += result.updated_count
        if result:
            self.logger.info(
                "[%s scan] +%d new, %d updated", source, result.new_count, result.updated_count
            )
            self._record(frame.idx, result)
        return result

    def _record(self, frame_idx: int, result: UpsertResult) -> None:
        ts_unix = time.time()
        for status, ids in (("new", result.new_ids), ("updated", result.updated_ids)):
            for marker_id in ids:
                rec = self.marker_map.get(marker_id)
                if rec is None:
                    continue
                for out in self.outputs:
                    out.write_marker(ts_unix, frame_idx, rec, status)

    def reset(self) -> None:
        self.oracle.reset()
        self.marker_map.clear()
        self.need_scan = True
        self.logger.info("pose oracle and marker map reset")

    def handle_key(self, key: int) -> bool:
        """Apply a hotkey; returns False when the session should end."""
        if key == KEY_ESC:
            return False
        if key in (ord(" "), ord("s"), ord("S")):
            if self._last_frame is not None:
                self.scan(self._last_frame, self.oracle.get_current_pose(), source="manual")
        elif key in (ord("r"), ord("R")):
            self.reset()
        return True

    def process_frame(self, frame: Frame):
        """Run one frame through the pipeline and return the annotated image."""
        self._last_frame = frame
        pose = self.oracle.feed_frame(frame.image, frame.timestamp)
        if pose is not None and not pose.is_valid():
            self.logger.warning("frame=%d oracle returned an invalid pose", frame.idx)
            pose = None

        result = UpsertResult()
        scan_cfg = self.config.qr_scan
        if scan_cfg.enable and pose is not None:
            interval = scan_cfg.interval_frame
            due = interval > 0 and frame.idx % interval == 0
            if self.need_scan or due:
                result = self.scan(frame, pose)
                self.need_scan = False

        canvas = frame.image.copy()
        h, w = canvas.shape[:2]
        if pose is not None:
            projected = self.projector.project_all(pose, w, h)
            draw_markers(canvas, projected)
            draw_status(canvas, True, len(self.marker_map))
        else:
            draw_status(canvas, False, 0)
        draw_fps(canvas, self.fps_meter.tick())

        if result and self.config.save_annotated and self._storage is not None:
            self._storage.save_annotated(frame.idx, canvas)
        return canvas

    def run(self) -> SessionSummary:
        cfg = self.config
        storage = SessionStorage(cfg.session_root, name=f"{cfg.session_name}_session")
        self._storage = storage
        session_path = storage.begin()
        storage.write_manifest(cfg.as_dict())

        log_file = str(Path(storage.logs_dir) / "session.log")
        file_handler = add_file_handler(self.logger, cfg.session_name, log_file)

        show = not cfg.headless
        time_per_frame = 1.0 / cfg.fps_target if cfg.fps_target > 0 else 0.0
        frames = 0
        errors = 0
        misses = 0
        cap: Optional[BaseCapture] = None
        window_open = False
        t0 = time.time()
        try:
            for out in self.outputs:
                out.open(storage.session_dir)

            cap = self._build_capture()
            self.logger.info("session started: %s", session_path)
            self.logger.info("config: %s", cfg.as_dict())

            if show:
                cv2.namedWindow(cfg.window.title, cv2.WINDOW_NORMAL)
                cv2.resizeWindow(cfg.window.title, cfg.window.width, cfg.window.height)
                window_open = True

            self.oracle.start()
            cap.start()
            t0 = time.time()
            frame_timer = StopWatch()
            while True:
                if self._stop_event.is_set():
                    break
                if cfg.duration_sec and (time.time() - t0) >= cfg.duration_sec:
                    break
                if cfg.max_frames and frames >= cfg.max_frames:
                    break

                frame_timer.reset()
                f = cap.next_frame()
                if f is None:
                    errors += 1
                    misses += 1
                    if misses >= MAX_CONSECUTIVE_MISSES:
                        self.logger.warning("capture returned no frames %d times, stopping", misses)
                        break
                    continue
                misses = 0

                canvas = self.process_frame(f)
                frames += 1

                if show:
                    cv2.imshow(cfg.window.title, canvas)
                    key = cv2.waitKey(1) & 0xFF
                    if key != KEY_NONE and not self.handle_key(key):
                        break

                sleep_time = time_per_frame - frame_timer.elapsed()
                if sleep_time > 0:
                    time.sleep(sleep_time)

            elapsed = time.time() - t0
            avg = frames / max(1e-6, elapsed)
            self.logger.info(
                "summary frames=%d markers=%d new=%d updated=%d avg_fps=%.2f errors=%d",
                frames, len(self.marker_map), self.new_total, self.updated_total, avg, errors,
            )
        finally:
            if cap is not None:
                cap.stop()
            self.oracle.stop()
            for out in self.outputs:
                out.close()
            if window_open:
                cv2.destroyAllWindows()
            self.logger.removeHandler(file_handler)
            file_handler.close()

        csv_path = None
        for out in self.outputs:
            if isinstance(out, CsvOutput) and out.path is not None:
                csv_path = str(out.path)
        return SessionSummary(
            str(session_path),
            frames,
            len(self.marker_map),
            self.new_total,
            self.updated_total,
            csv_path,
            log_file,
            avg,
            errors,
        )

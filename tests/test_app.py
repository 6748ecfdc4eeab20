import csv
import logging
from pathlib import Path
from unittest.mock import MagicMock, patch

import numpy as np
import pytest

from qrslam.app import MarkerSession
from qrslam.capture import SyntheticCapture
from qrslam.config import AppConfig
from qrslam.detect import MarkerDetector
from qrslam.output import CsvOutput, NullOutput
from qrslam.oracle import StaticPoseOracle
from qrslam.types import CameraPose, Detection, Frame


class FixedDetector(MarkerDetector):
    def __init__(self, detections):
        self.detections = detections
        self.calls = 0

    def detect(self, image):
        self.calls += 1
        return list(self.detections)


def _config(tmp_path: Path, **kwargs) -> AppConfig:
    cfg = AppConfig(
        session_name="test",
        session_root=str(tmp_path),
        headless=True,
        synthetic=True,
        fps_target=0,
        max_frames=3,
    )
    return cfg.apply_overrides(**kwargs)


def _frame(idx: int = 0) -> Frame:
    return Frame(idx, idx / 30.0, np.zeros((480, 640, 3), dtype=np.uint8))


def test_headless_run_produces_session(tmp_path: Path, centred_corners):
    detector = FixedDetector([Detection("A", centred_corners)])
    session = MarkerSession(_config(tmp_path), oracle=StaticPoseOracle(), detector=detector)
    summary = session.run()

    assert summary.frames_processed == 3
    assert summary.markers == 1
    assert summary.new_total == 1
    assert summary.updated_total == 0
    assert summary.errors == 0
    # scanned once on the first tracked frame; interval 15 is not reached
    assert detector.calls == 1

    session_dir = Path(summary.session_path)
    assert (session_dir / "config.json").exists()
    assert Path(summary.log_path).exists()
    assert "+1 new" in Path(summary.log_path).read_text()

    with Path(summary.csv_path).open(newline="") as fh:
        rows = list(csv.DictReader(fh))
    assert len(rows) == 1
    assert rows[0]["marker_id"] == "A"
    assert rows[0]["status"] == "new"
    assert float(rows[0]["tw_z"]) == pytest.approx(1.0, abs=1e-6)


def test_interval_scan_updates_markers(tmp_path: Path, centred_corners):
    cfg = _config(tmp_path, max_frames=4)
    cfg.qr_scan.interval_frame = 2
    detector = FixedDetector([Detection("A", centred_corners)])
    summary = MarkerSession(cfg, oracle=StaticPoseOracle(), detector=detector).run()

    # frames 0 (first scan) and 2 (interval)
    assert detector.calls == 2
    assert (summary.new_total, summary.updated_total) == (1, 1)


def test_no_pose_means_no_scan_and_no_overlay(tmp_path: Path, centred_corners):
    oracle = MagicMock()
    oracle.feed_frame.return_value = None
    detector = FixedDetector([Detection("A", centred_corners)])
    session = MarkerSession(_config(tmp_path), oracle=oracle, detector=detector)

    canvas = session.process_frame(_frame())
    assert detector.calls == 0
    assert session.need_scan is True
    assert len(session.marker_map) == 0
    # status text is still drawn
    assert canvas.any()


def test_invalid_pose_is_treated_as_lost(tmp_path: Path, centred_corners):
    oracle = MagicMock()
    oracle.feed_frame.return_value = CameraPose(np.diag([2.0, 1.0, 1.0]), np.zeros(3))
    detector = FixedDetector([Detection("A", centred_corners)])
    session = MarkerSession(_config(tmp_path), oracle=oracle, detector=detector)

    session.process_frame(_frame())
    assert detector.calls == 0


def test_projection_overlay_draws_known_marker(tmp_path: Path, centred_corners):
    detector = FixedDetector([Detection("A", centred_corners)])
    session = MarkerSession(_config(tmp_path), oracle=StaticPoseOracle(), detector=detector)

    frame = _frame()
    canvas = session.process_frame(frame)
    assert len(session.marker_map) == 1
    # green ring around the principal point
    ring = canvas[230:251, 310:331]
    assert ring[:, :, 1].max() > 200
    # drawing happens on a copy
    assert not frame.image.any()


def test_reset_hotkey_clears_map_and_oracle(tmp_path: Path, centred_corners):
    oracle = MagicMock()
    oracle.feed_frame.return_value = CameraPose.identity()
    detector = FixedDetector([Detection("A", centred_corners)])
    session = MarkerSession(_config(tmp_path), oracle=oracle, detector=detector)

    session.process_frame(_frame())
    assert len(session.marker_map) == 1
    assert session.need_scan is False

    assert session.handle_key(ord("r")) is True
    oracle.reset.assert_called_once()
    assert len(session.marker_map) == 0
    assert session.need_scan is True


def test_manual_scan_uses_current_pose(tmp_path: Path, centred_corners):
    cfg = _config(tmp_path)
    cfg.qr_scan.enable = False
    oracle = MagicMock()
    oracle.feed_frame.return_value = CameraPose.identity()
    oracle.get_current_pose.return_value = CameraPose.identity()
    detector = FixedDetector([Detection("A", centred_corners)])
    session = MarkerSession(cfg, oracle=oracle, detector=detector)

    session.process_frame(_frame())
    assert detector.calls == 0

    assert session.handle_key(ord(" ")) is True
    assert detector.calls == 1
    assert len(session.marker_map) == 1

    oracle.get_current_pose.return_value = None
    session.handle_key(ord("s"))
    assert detector.calls == 1


def test_escape_ends_session(tmp_path: Path):
    session = MarkerSession(_config(tmp_path), oracle=StaticPoseOracle(), detector=FixedDetector([]))
    assert session.handle_key(27) is False
    assert session.handle_key(ord("x")) is True


def test_windowed_run_stops_on_escape(tmp_path: Path):
    cfg = _config(tmp_path, headless=False, max_frames=10)
    session = MarkerSession(cfg, oracle=StaticPoseOracle(), detector=FixedDetector([]))

    with patch("qrslam.app.cv2.namedWindow") as named, patch(
        "qrslam.app.cv2.resizeWindow"
    ), patch("qrslam.app.cv2.imshow") as show, patch(
        "qrslam.app.cv2.waitKey", return_value=27
    ), patch("qrslam.app.cv2.destroyAllWindows") as destroy:
        summary = session.run()

    assert summary.frames_processed == 1
    named.assert_called_once()
    show.assert_called_once()
    destroy.assert_called_once()


def test_missing_frames_count_as_errors(tmp_path: Path):
    capture = MagicMock()
    capture.next_frame.side_effect = [None, None, _frame(0)]
    cfg = _config(tmp_path, max_frames=1)
    session = MarkerSession(cfg, capture=capture, oracle=StaticPoseOracle(), detector=FixedDetector([]))
    summary = session.run()

    assert summary.frames_processed == 1
    assert summary.errors == 2
    capture.start.assert_called_once()
    capture.stop.assert_called_once()


def test_stop_before_run(tmp_path: Path):
    session = MarkerSession(
        _config(tmp_path),
        capture=SyntheticCapture(0, 64, 48),
        oracle=StaticPoseOracle(),
        detector=FixedDetector([]),
    )
    session.stop()
    summary = session.run()
    assert summary.frames_processed == 0
    assert summary.markers == 0


def test_intrinsics_from_calibration_file(tmp_path: Path):
    calib = tmp_path / "camera.yaml"
    calib.write_text(
        "Camera:\n  fx: 500\n  fy: 500\n  cx: 160\n  cy: 120\n  cols: 320\n  rows: 240\n",
        encoding="utf-8",
    )
    cfg = _config(tmp_path, camera_path=str(calib))
    session = MarkerSession(cfg, oracle=StaticPoseOracle(), detector=FixedDetector([]))

    assert session.camera.intrinsics.fx == 500.0
    assert (cfg.capture_width, cfg.capture_height) == (320, 240)


def test_failed_capture_start_releases_session_resources(tmp_path: Path):
    capture = MagicMock()
    capture.start.side_effect = RuntimeError("camera busy")
    oracle = MagicMock()
    csv_out = CsvOutput()
    session = MarkerSession(
        _config(tmp_path), outputs=[csv_out], capture=capture, oracle=oracle, detector=FixedDetector([])
    )

    with pytest.raises(RuntimeError, match="camera busy"):
        session.run()

    capture.stop.assert_called_once()
    oracle.stop.assert_called_once()
    assert csv_out._fh is None
    handlers = logging.getLogger("qrslam").handlers
    assert not any(isinstance(h, logging.FileHandler) for h in handlers)


def test_failed_window_setup_still_closes_outputs(tmp_path: Path):
    csv_out = CsvOutput()
    session = MarkerSession(
        _config(tmp_path, headless=False), outputs=[csv_out], oracle=StaticPoseOracle(), detector=FixedDetector([])
    )

    with patch("qrslam.app.cv2.namedWindow", side_effect=RuntimeError("no display")), patch(
        "qrslam.app.cv2.destroyAllWindows"
    ) as destroy:
        with pytest.raises(RuntimeError):
            session.run()

    destroy.assert_not_called()
    assert csv_out._fh is None
    handlers = logging.getLogger("qrslam").handlers
    assert not any(isinstance(h, logging.FileHandler) for h in handlers)


def test_csv_disabled_uses_null_output(tmp_path: Path, centred_corners):
    cfg = _config(tmp_path, record_csv=False)
    detector = FixedDetector([Detection("A", centred_corners)])
    session = MarkerSession(cfg, oracle=StaticPoseOracle(), detector=detector)
    assert [type(out) for out in session.outputs] == [NullOutput]

    summary = session.run()
    assert summary.markers == 1
    assert summary.csv_path is None
    assert not (Path(summary.session_path) / "markers.csv").exists()


def test_marker_grazing_the_image_plane_does_not_break_overlay(tmp_path: Path):
    session = MarkerSession(
        _config(tmp_path, min_depth_m=1e-12), oracle=StaticPoseOracle(), detector=FixedDetector([])
    )
    # u = 320 + 800 / 1e-10, far beyond what cv2 drawing accepts
    session.marker_map.insert_pose(
        "edge", np.eye(3), np.array([1.0, 0.0, 1e-10]), CameraPose.identity(), 0.04
    )

    canvas = session.process_frame(_frame())
    assert canvas.shape == (480, 640, 3)
    pm = session.projector.project_all(CameraPose.identity(), 640, 480)[0]
    assert pm.in_view is False and pm.pixel[0] > 1e12

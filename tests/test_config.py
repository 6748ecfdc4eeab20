import json
from pathlib import Path

import pytest

from qrslam.config import AppConfig, load_config


def test_load_config_json(tmp_path: Path):
    cfg_path = tmp_path / "app.json"
    cfg_path.write_text(
        json.dumps(
            {
                "session_name": "desk",
                "device": 2,
                "fps_target": 20,
                "max_frames": 50,
                "qr_scan": {"interval_frame": 5, "marker_size_m": 0.06},
            }
        ),
        encoding="utf-8",
    )

    cfg = load_config(cfg_path)
    assert cfg.session_name == "desk"
    assert cfg.device == 2
    assert cfg.fps_target == 20
    assert cfg.max_frames == 50
    assert cfg.qr_scan.interval_frame == 5
    assert cfg.qr_scan.marker_size_m == 0.06
    assert cfg.qr_scan.detector == "qr"

    cfg.apply_overrides(session_name="lab", fps_target=None)
    assert cfg.session_name == "lab"
    assert cfg.fps_target == 20


def test_load_config_yaml(tmp_path: Path):
    cfg_path = tmp_path / "app.yaml"
    cfg_path.write_text(
        "window:\n"
        "  width: 1024\n"
        "  height: 600\n"
        "fps_target: 25\n"
        "qr_scan:\n"
        "  enable: false\n"
        "  interval_frame: 10\n"
        "  marker_size_m: 0.05\n"
        "  detector: aruco\n"
        "oracle:\n"
        "  type: trajectory\n"
        "  trajectory_path: traj.txt\n"
        "  max_time_diff: 0.1\n",
        encoding="utf-8",
    )

    cfg = load_config(cfg_path)
    assert (cfg.window.width, cfg.window.height) == (1024, 600)
    assert cfg.fps_target == 25
    assert cfg.qr_scan.enable is False
    assert cfg.qr_scan.detector == "aruco"
    assert cfg.oracle.type == "trajectory"
    assert cfg.oracle.trajectory_path == "traj.txt"
    assert cfg.oracle.max_time_diff == 0.1
    assert cfg.as_dict()["window"]["width"] == 1024


def test_config_defaults():
    cfg = AppConfig()
    assert cfg.min_depth_m == 0.05
    assert cfg.qr_scan.marker_size_m > 0
    assert cfg.oracle.type == "static"
    assert cfg.duration_sec is None


def test_load_config_errors(tmp_path: Path):
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "missing.yaml")

    bad_root = tmp_path / "list.yaml"
    bad_root.write_text("- 1\n- 2\n", encoding="utf-8")
    with pytest.raises(ValueError):
        load_config(bad_root)

    bad_section = tmp_path / "section.json"
    bad_section.write_text(json.dumps({"qr_scan": 3}), encoding="utf-8")
    with pytest.raises(ValueError):
        load_config(bad_section)

    bad_size = tmp_path / "size.json"
    bad_size.write_text(json.dumps({"qr_scan": {"marker_size_m": 0}}), encoding="utf-8")
    with pytest.raises(ValueError):
        load_config(bad_size)


@pytest.mark.parametrize("depth", [0, -0.1])
def test_load_config_rejects_non_positive_min_depth(tmp_path: Path, depth):
    cfg_path = tmp_path / "depth.json"
    cfg_path.write_text(json.dumps({"min_depth_m": depth}), encoding="utf-8")
    with pytest.raises(ValueError, match="min_depth_m"):
        load_config(cfg_path)


def test_load_config_static_pose_and_detector_alias(tmp_path: Path):
    cfg_path = tmp_path / "static.yaml"
    cfg_path.write_text(
        "qr_scan:\n"
        "  detector: zbar\n"
        "oracle:\n"
        "  type: static\n"
        "  static_pose:\n"
        "    - [1, 0, 0, 0]\n"
        "    - [0, 1, 0, 0]\n"
        "    - [0, 0, 1, 0.5]\n"
        "    - [0, 0, 0, 1]\n",
        encoding="utf-8",
    )
    cfg = load_config(cfg_path)
    assert cfg.qr_scan.detector == "zbar"
    assert cfg.oracle.static_pose[2] == [0, 0, 1, 0.5]

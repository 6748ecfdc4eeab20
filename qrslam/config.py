from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml


@dataclass
class WindowConfig:
    width: int = 1280
    height: int = 720
    title: str = "QR-SLAM (ESC exit, SPACE scan, R reset)"

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class ScanConfig:
    enable: bool = True
    interval_frame: int = 15  # auto-scan every N frames; 0 disables auto-scan
    marker_size_m: float = 0.04
    detector: str = "qr"  # "qr"/"opencv", "zbar" or "aruco"
    aruco_dict: str = "4x4_50"

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class OracleConfig:
    """Source of camera poses (T_cw)."""

    type: str = "static"  # "static" or "trajectory"
    trajectory_path: Optional[str] = None  # TUM format: ts tx ty tz qx qy qz qw
    max_time_diff: float = 0.05
    relative_time: bool = True
    static_pose: Optional[list] = None  # 4x4 T_cw rows for a fixed camera

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class AppConfig:
    session_name: str = "qrslam"
    device: int | str = 0
    camera_path: Optional[str] = None  # intrinsics calibration
    fx: float = 800.0
    fy: float = 800.0
    cx: float = 320.0
    cy: float = 240.0
    capture_width: int = 640
    capture_height: int = 480
    fps_target: int = 30
    min_depth_m: float = 0.05
    session_root: str = "data/sessions"
    duration_sec: Optional[float] = None
    max_frames: Optional[int] = None
    headless: bool = False
    synthetic: bool = False
    save_annotated: bool = False
    record_csv: bool = True
    window: WindowConfig = field(default_factory=WindowConfig)
    qr_scan: ScanConfig = field(default_factory=ScanConfig)
    oracle: OracleConfig = field(default_factory=OracleConfig)

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)

    def apply_overrides(self, **kwargs: Any) -> "AppConfig":
        for key, value in kwargs.items():
            if value is not None and hasattr(self, key):
                setattr(self, key, value)
        return self


def _load_yaml(path: Path) -> dict[str, Any]:
    with path.open("r", encoding="utf-8") as fp:
        data = yaml.safe_load(fp) or {}
    if not isinstance(data, dict):
        raise ValueError("YAML config root must be a mapping")
    return data


def _section(raw: dict[str, Any], key: str) -> dict[str, Any]:
    value = raw.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValueError(f"{key} must be a mapping")
    return value


def _optional(value: Any, cast):
    return None if value is None else cast(value)


def load_config(path: str | Path) -> AppConfig:
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Config not found: {p}")

    if p.suffix.lower() in {".yaml", ".yml"}:
        raw = _load_yaml(p)
    else:
        with p.open("r", encoding="utf-8") as fp:
            raw = json.load(fp)

    if not isinstance(raw, dict):
        raise ValueError("Config root must be a JSON/YAML object")

    cfg = AppConfig()
    cfg.session_name = str(raw.get("session_name", cfg.session_name))
    cfg.device = raw.get("device", cfg.device)
    cfg.camera_path = _optional(raw.get("camera_path", cfg.camera_path), str)
    cfg.fx = float(raw.get("fx", cfg.fx))
    cfg.fy = float(raw.get("fy", cfg.fy))
    cfg.cx = float(raw.get("cx", cfg.cx))
    cfg.cy = float(raw.get("cy", cfg.cy))
    cfg.capture_width = int(raw.get("capture_width", cfg.capture_width))
    cfg.capture_height = int(raw.get("capture_height", cfg.capture_height))
    cfg.fps_target = int(raw.get("fps_target", cfg.fps_target))
    cfg.min_depth_m = float(raw.get("min_depth_m", cfg.min_depth_m))
    if not cfg.min_depth_m > 0:
        raise ValueError("min_depth_m must be > 0")
    cfg.session_root = str(raw.get("session_root", cfg.session_root))
    cfg.duration_sec = _optional(raw.get("duration_sec", cfg.duration_sec), float)
    cfg.max_frames = _optional(raw.get("max_frames", cfg.max_frames), int)
    cfg.headless = bool(raw.get("headless", cfg.headless))
    cfg.synthetic = bool(raw.get("synthetic", cfg.synthetic))
    cfg.save_annotated = bool(raw.get("save_annotated", cfg.save_annotated))
    cfg.record_csv = bool(raw.get("record_csv", cfg.record_csv))

    win = _section(raw, "window")
    cfg.window.width = int(win.get("width", cfg.window.width))
    cfg.window.height = int(win.get("height", cfg.window.height))
    cfg.window.title = str(win.get("title", cfg.window.title))

    scan = _section(raw, "qr_scan")
    cfg.qr_scan.enable = bool(scan.get("enable", cfg.qr_scan.enable))
    cfg.qr_scan.interval_frame = int(scan.get("interval_frame", cfg.qr_scan.interval_frame))
    cfg.qr_scan.marker_size_m = float(scan.get("marker_size_m", cfg.qr_scan.marker_size_m))
    if cfg.qr_scan.marker_size_m <= 0:
        raise ValueError("qr_scan.marker_size_m must be > 0")
    cfg.qr_scan.detector = str(scan.get("detector", cfg.qr_scan.detector))
    cfg.qr_scan.aruco_dict = str(scan.get("aruco_dict", cfg.qr_scan.aruco_dict))

    orc = _section(raw, "oracle")
    cfg.oracle.type = str(orc.get("type", cfg.oracle.type))
    cfg.oracle.trajectory_path = _optional(
        orc.get("trajectory_path", cfg.oracle.trajectory_path), str
    )
    cfg.oracle.max_time_diff = float(orc.get("max_time_diff", cfg.oracle.max_time_diff))
    cfg.oracle.relative_time = bool(orc.get("relative_time", cfg.oracle.relative_time))
    cfg.oracle.static_pose = orc.get("static_pose", cfg.oracle.static_pose)

    return cfg

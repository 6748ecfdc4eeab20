import argparse
import logging
import signal
import sys

from .app import MarkerSession
from .config import AppConfig, load_config
from .logging_utils import setup_logger


def _build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        description="Map QR/ArUco markers into world coordinates and overlay them on live video"
    )
    ap.add_argument("--config", required=True, help="Path to JSON/YAML app config")
    ap.add_argument("--camera", help="Camera calibration (SLAM-style or OpenCV YAML)")
    ap.add_argument("--device", help="Camera index, /dev/videoN or video file")
    ap.add_argument("--session-name")
    ap.add_argument("--out", help="Session output root")
    ap.add_argument("--fps", type=int, help="Target loop rate; 0 disables throttling")
    ap.add_argument("--duration", type=float)
    ap.add_argument("--max-frames", type=int)
    ap.add_argument("--marker-size-m", type=float)
    ap.add_argument("--detector", choices=["qr", "opencv", "zbar", "aruco"])
    ap.add_argument("--trajectory", help="TUM trajectory to replay as the pose source")
    ap.add_argument("--headless", action="store_true")
    ap.add_argument("--synthetic", action="store_true", help="Use black synthetic frames")
    ap.add_argument("--save-annotated", action="store_true")
    ap.add_argument("--no-csv", action="store_true")
    ap.add_argument("--verbose", "-v", action="store_true")
    return ap


def _apply_args(cfg: AppConfig, args: argparse.Namespace) -> AppConfig:
    device = args.device
    if isinstance(device, str) and device.isdigit():
        device = int(device)

    cfg.apply_overrides(
        camera_path=args.camera,
        device=device,
        session_name=args.session_name,
        session_root=args.out,
        fps_target=args.fps,
        duration_sec=args.duration,
        max_frames=args.max_frames,
        headless=True if args.headless else None,
        synthetic=True if args.synthetic else None,
        save_annotated=True if args.save_annotated else None,
        record_csv=False if args.no_csv else None,
    )
    if args.marker_size_m is not None:
        if args.marker_size_m <= 0:
            raise ValueError("--marker-size-m must be > 0")
        cfg.qr_scan.marker_size_m = args.marker_size_m
    if args.detector is not None:
        cfg.qr_scan.detector = args.detector
    if args.trajectory is not None:
        cfg.oracle.type = "trajectory"
        cfg.oracle.trajectory_path = args.trajectory
    return cfg


def main(argv=None) -> int:
    ap = _build_parser()
    args = ap.parse_args(argv)

    cfg = load_config(args.config)
    cfg = _apply_args(cfg, args)

    logger = setup_logger(cfg.session_name, logging.DEBUG if args.verbose else logging.INFO)
    session = MarkerSession(cfg, logger=logger)

    def _handle_signal(_sig, _frame):
        session.stop()

    signal.signal(signal.SIGINT, _handle_signal)
    if hasattr(signal, "SIGTERM"):
        signal.signal(signal.SIGTERM, _handle_signal)

    summary = session.run()
    print(summary)
    return 0


if __name__ == "__main__":
    sys.exit(main())

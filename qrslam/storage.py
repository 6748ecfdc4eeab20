from __future__ import annotations

import json
from pathlib import Path
from time import strftime
from typing import Any, Optional

import cv2


class SessionStorage:
    """Per-run directory: ``<root>/<name>_<YYYYmmdd_HHMMSS>/{logs,annotated}``."""

    def __init__(self, root: str, name: str = "session"):
        self.root = Path(root)
        self.name = name
        self.session_dir: Optional[Path] = None
        self.annotated_dir: Optional[Path] = None
        self.logs_dir: Optional[Path] = None

    def begin(self) -> Path:
        sid = f"{self.name}_{strftime('%Y%m%d_%H%M%S')}"
        self.session_dir = self.root / sid
        self.annotated_dir = self.session_dir / "annotated"
        self.logs_dir = self.session_dir / "logs"
        for d in (self.annotated_dir, self.logs_dir):
            d.mkdir(parents=True, exist_ok=True)
        return self.session_dir

    def save_annotated(self, idx: int, image) -> str:
        p = self.annotated_dir / f"f{idx:06d}.jpg"
        cv2.imwrite(str(p), image)
        return str(p)

    def write_manifest(self, meta: dict[str, Any]) -> Path:
        p = self.session_dir / "config.json"
        with p.open("w", encoding="utf-8") as fp:
            json.dump(meta, fp, indent=2, default=str)
        return p

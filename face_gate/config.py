from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except (TypeError, ValueError):
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except (TypeError, ValueError):
        return default


def _env_str(name: str, default: str) -> str:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip()


BASE_DIR = Path(__file__).resolve().parent.parent
LOG_DIR = Path(_env_str("FACE_GATE_LOG_DIR", str(BASE_DIR / "logs")))

# Euclidean separation threshold for 128/512-d face descriptors.
DEFAULT_MATCH_THRESHOLD = 0.6
DEFAULT_POLL_INTERVAL_MS = 100
MIN_POLL_INTERVAL_MS = 50
MAX_POLL_INTERVAL_MS = 1000


@dataclass
class GateSettings:
    project_root: Path
    match_threshold: float = DEFAULT_MATCH_THRESHOLD
    poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS
    initial_mode: str = "face"
    user_camera_index: int = 0
    environment_camera_index: int = 0
    frame_width: int = 1280
    frame_height: int = 720
    frame_fps: int = 30
    max_read_failures: int = 4
    result_queue_size: int = 32
    database_url: str = ""
    face_detection_threshold: float = 0.6
    min_face_size: int = 60

    @property
    def poll_interval_seconds(self) -> float:
        clamped = max(MIN_POLL_INTERVAL_MS, min(MAX_POLL_INTERVAL_MS, int(self.poll_interval_ms)))
        return clamped / 1000.0

    @property
    def resolved_database_url(self) -> str:
        if self.database_url:
            return self.database_url
        return f"sqlite:///{self.project_root / 'data' / 'face_gate.db'}"

    def ensure_directories(self) -> None:
        if self.resolved_database_url.startswith("sqlite:///"):
            db_file = Path(self.resolved_database_url.replace("sqlite:///", "", 1))
            db_file.parent.mkdir(parents=True, exist_ok=True)

    @classmethod
    def from_env(cls, project_root: Path = BASE_DIR) -> "GateSettings":
        return cls(
            project_root=project_root,
            match_threshold=_env_float("FACE_GATE_MATCH_THRESHOLD", DEFAULT_MATCH_THRESHOLD),
            poll_interval_ms=_env_int("FACE_GATE_POLL_INTERVAL_MS", DEFAULT_POLL_INTERVAL_MS),
            initial_mode=_env_str("FACE_GATE_INITIAL_MODE", "face").lower(),
            user_camera_index=_env_int("FACE_GATE_USER_CAMERA_INDEX", 0),
            environment_camera_index=_env_int("FACE_GATE_ENVIRONMENT_CAMERA_INDEX", 0),
            frame_width=_env_int("FACE_GATE_FRAME_WIDTH", 1280),
            frame_height=_env_int("FACE_GATE_FRAME_HEIGHT", 720),
            frame_fps=_env_int("FACE_GATE_FRAME_FPS", 30),
            max_read_failures=max(1, _env_int("FACE_GATE_MAX_READ_FAILURES", 4)),
            result_queue_size=max(1, _env_int("FACE_GATE_RESULT_QUEUE_SIZE", 32)),
            database_url=_env_str("FACE_GATE_DB_URL", ""),
            face_detection_threshold=_env_float("FACE_GATE_DETECTION_THRESHOLD", 0.6),
            min_face_size=_env_int("FACE_GATE_MIN_FACE_SIZE", 60),
        )

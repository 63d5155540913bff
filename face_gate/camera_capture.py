from __future__ import annotations

import os
import time
from pathlib import Path
from typing import List, Tuple

import cv2

from .exceptions import CaptureError, DeviceDeniedError, NoDeviceError

DEVICE_DIR = Path("/dev")

_BACKEND_ALIASES = {
    "auto": "Auto",
    "any": "Auto",
    "v4l2": "V4L2",
    "dshow": "DirectShow",
    "directshow": "DirectShow",
    "msmf": "Media Foundation",
    "avfoundation": "AVFoundation",
}


def _default_backend_order() -> list[str]:
    if os.name == "nt":
        return ["DirectShow", "Media Foundation", "Auto"]
    return ["Auto", "V4L2", "AVFoundation"]


def _preferred_backend_order() -> list[str]:
    raw = os.getenv("FACE_GATE_CAMERA_BACKENDS", "").strip()
    if not raw:
        return _default_backend_order()
    result: list[str] = []
    for item in raw.split(","):
        name = _BACKEND_ALIASES.get(item.strip().lower())
        if name and name not in result:
            result.append(name)
    return result or _default_backend_order()


def capture_backends() -> List[Tuple[str, int | None]]:
    backend_map: dict[str, int | None] = {
        "Auto": getattr(cv2, "CAP_ANY", None),
        "V4L2": getattr(cv2, "CAP_V4L2", None),
        "DirectShow": getattr(cv2, "CAP_DSHOW", None),
        "Media Foundation": getattr(cv2, "CAP_MSMF", None),
        "AVFoundation": getattr(cv2, "CAP_AVFOUNDATION", None),
    }
    candidates: List[Tuple[str, int | None]] = []
    seen: set[int | None] = set()
    for name in _preferred_backend_order():
        backend = backend_map.get(name)
        if backend in seen:
            continue
        seen.add(backend)
        candidates.append((name, backend))
    return candidates


def _classify_failure(camera_index: int, attempted: List[str]) -> CaptureError:
    tried = ", ".join(attempted) if attempted else "default backend"
    if os.name == "posix" and DEVICE_DIR.is_dir():
        node = DEVICE_DIR / f"video{camera_index}"
        if node.exists() and not os.access(node, os.R_OK | os.W_OK):
            return DeviceDeniedError(f"Permission denied for camera device {node}.")
        if not node.exists() and not any(DEVICE_DIR.glob("video*")):
            return NoDeviceError(f"No camera device found for index {camera_index}.")
    return CaptureError(f"Unable to open camera index {camera_index}. Tried backends: {tried}.")


def open_camera_capture(camera_index: int) -> tuple[cv2.VideoCapture, str]:
    """Open `camera_index` on the first backend that actually delivers frames."""
    attempted: List[str] = []

    for backend_name, backend in capture_backends():
        attempted.append(backend_name)
        if backend is None:
            cap = cv2.VideoCapture(camera_index)
        else:
            cap = cv2.VideoCapture(camera_index, backend)

        if cap.isOpened():
            # Some backends report opened=True but never deliver a frame.
            for _ in range(6):
                ok, frame = cap.read()
                if ok and frame is not None:
                    return cap, backend_name
                time.sleep(0.03)
        cap.release()

    raise _classify_failure(camera_index, attempted)

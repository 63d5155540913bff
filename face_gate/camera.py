from __future__ import annotations

import threading

import cv2
import numpy as np

from .camera_capture import open_camera_capture
from .config import GateSettings
from .exceptions import CaptureError
from .logger import setup_logger
from .modes import Facing


class CameraStream:
    def __init__(self, cap: cv2.VideoCapture, camera_index: int, backend_name: str):
        self.cap = cap
        self.camera_index = camera_index
        self.backend_name = backend_name
        self._lock = threading.Lock()

    @property
    def active(self) -> bool:
        return self.cap is not None

    def read(self) -> np.ndarray:
        with self._lock:
            if self.cap is None:
                raise CaptureError("Camera stream is stopped.")
            success, frame = self.cap.read()
        if not success or frame is None:
            raise CaptureError(f"Failed to read frame from camera {self.camera_index}.")
        return frame

    def stop(self) -> None:
        with self._lock:
            if self.cap is not None:
                self.cap.release()
                self.cap = None


class OpenCVCameraProvider:
    def __init__(self, settings: GateSettings):
        self.settings = settings
        self.logger = setup_logger(self.__class__.__name__)

    def index_for(self, facing: Facing) -> int:
        if facing is Facing.USER:
            return self.settings.user_camera_index
        return self.settings.environment_camera_index

    def open(self, facing: Facing) -> CameraStream:
        index = self.index_for(facing)
        cap, backend_name = open_camera_capture(index)

        cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.settings.frame_width)
        cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.settings.frame_height)
        cap.set(cv2.CAP_PROP_FPS, self.settings.frame_fps)
        cv2.setUseOptimized(True)

        self.logger.info("Opened %s camera index %d via %s", facing.value, index, backend_name)
        return CameraStream(cap, index, backend_name)

from __future__ import annotations

from typing import Optional

import cv2
import numpy as np

from .exceptions import DecodeError


class OpenCVQRDecoder:
    """QR symbol decoding backed by `cv2.QRCodeDetector`."""

    def __init__(self) -> None:
        self._detector: Optional[cv2.QRCodeDetector] = None

    @property
    def running(self) -> bool:
        return self._detector is not None

    def start(self) -> None:
        if self._detector is None:
            self._detector = cv2.QRCodeDetector()

    def stop(self) -> None:
        self._detector = None

    def decode(self, frame: np.ndarray) -> Optional[str]:
        if self._detector is None:
            raise DecodeError("QR decoder is not started.")
        if frame is None or frame.size == 0:
            raise DecodeError("Empty frame.")
        try:
            text, points, _ = self._detector.detectAndDecode(frame)
        except cv2.error as exc:
            raise DecodeError(f"QR decode failed: {exc}") from exc
        if points is None or not text:
            return None
        return text

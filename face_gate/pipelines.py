from __future__ import annotations

from typing import Optional, Protocol

import numpy as np

from .exceptions import DecodeError
from .logger import setup_logger
from .matcher import Matcher, MatchResult
from .modes import Mode
from .result_sink import Detection


class EmbeddingExtractor(Protocol):
    def extract(self, frame: np.ndarray) -> Optional[np.ndarray]:
        ...


class QRDecoder(Protocol):
    def start(self) -> None:
        ...

    def stop(self) -> None:
        ...

    def decode(self, frame: np.ndarray) -> Optional[str]:
        ...


class DetectionPipeline(Protocol):
    mode: Mode

    def start(self) -> None:
        ...

    def stop(self) -> None:
        ...

    def detect(self, frame: np.ndarray) -> Optional[Detection]:
        ...


class FacePipeline:
    mode = Mode.FACE

    def __init__(self, extractor: EmbeddingExtractor, matcher: Matcher):
        self.extractor = extractor
        self.matcher = matcher
        self.logger = setup_logger(self.__class__.__name__)

    def start(self) -> None:
        pass

    def stop(self) -> None:
        pass

    def detect(self, frame: np.ndarray) -> Optional[MatchResult]:
        embedding = self.extractor.extract(frame)
        if embedding is None:
            self.logger.debug("No face in frame")
            return None
        return self.matcher.find_best_match(embedding)


class QRPipeline:
    mode = Mode.QR

    def __init__(self, decoder: QRDecoder):
        self.decoder = decoder
        self.active = False
        self.logger = setup_logger(self.__class__.__name__)

    def start(self) -> None:
        self.decoder.start()
        self.active = True

    def stop(self) -> None:
        if not self.active:
            return
        self.active = False
        self.decoder.stop()

    def detect(self, frame: np.ndarray) -> Optional[str]:
        try:
            text = self.decoder.decode(frame)
        except DecodeError as exc:
            self.logger.debug("QR decode miss: %s", exc)
            return None
        return text or None

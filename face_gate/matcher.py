from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional

import numpy as np

from .config import DEFAULT_MATCH_THRESHOLD
from .exceptions import ValidationError
from .gallery import Gallery, GalleryStore, Identity, as_embedding

UNKNOWN_LABEL = "unknown"


@dataclass(frozen=True)
class MatchResult:
    identity: Optional[Identity]
    distance: float
    confidence: int

    @property
    def matched(self) -> bool:
        return self.identity is not None

    @property
    def label(self) -> str:
        return UNKNOWN_LABEL if self.identity is None else str(self.identity)

    def to_dict(self) -> dict:
        return {
            "identity": self.identity,
            "label": self.label,
            "distance": None if math.isinf(self.distance) else round(self.distance, 6),
            "confidence": self.confidence,
            "matched": self.matched,
        }


def confidence_from_distance(distance: float) -> int:
    """Display confidence in percent, rounded half-up and clamped to [0, 100]."""
    if not math.isfinite(distance):
        return 0
    raw = math.floor((1.0 - distance) * 100.0 + 0.5)
    return int(max(0, min(100, raw)))


def euclidean_distance(a, b) -> float:
    va = np.asarray(a, dtype=np.float64).reshape(-1)
    vb = np.asarray(b, dtype=np.float64).reshape(-1)
    if va.size != vb.size:
        raise ValidationError(f"Cannot compare embeddings of length {va.size} and {vb.size}.")
    return float(np.linalg.norm(va - vb))


class Matcher:
    """Nearest-neighbour identification over a gallery snapshot.

    Each record scores the minimum distance over its embeddings; the record
    with the lowest score wins and ties go to the earliest enrolled record.
    A best distance above `threshold` yields an unknown result.
    """

    def __init__(self, store: GalleryStore, threshold: float = DEFAULT_MATCH_THRESHOLD):
        if threshold < 0:
            raise ValueError("threshold must be non-negative.")
        self.store = store
        self.threshold = float(threshold)

    def find_best_match(self, probe) -> MatchResult:
        return self.match(self.store.snapshot, probe)

    def match(self, gallery: Gallery, probe) -> MatchResult:
        if gallery.embedding_count == 0:
            return MatchResult(identity=None, distance=math.inf, confidence=0)

        query = as_embedding(probe)
        if query.size != gallery.dimension:
            raise ValidationError(
                f"Probe has {query.size} values, gallery expects {gallery.dimension}."
            )

        distances = np.linalg.norm(gallery.matrix - query, axis=1)
        best_per_record = np.full((len(gallery),), np.inf, dtype=np.float64)
        np.minimum.at(best_per_record, gallery.owners, distances)

        # argmin returns the first minimum, i.e. the earliest enrolled record.
        best_idx = int(np.argmin(best_per_record))
        best_distance = float(best_per_record[best_idx])
        confidence = confidence_from_distance(best_distance)

        if best_distance > self.threshold:
            return MatchResult(identity=None, distance=best_distance, confidence=confidence)
        return MatchResult(
            identity=gallery.records[best_idx].identity,
            distance=best_distance,
            confidence=confidence,
        )

"""Enrolled identities and their face embeddings.

A `Gallery` is an immutable snapshot. `GalleryStore` owns the current snapshot
and replaces the reference on every load or enrollment, so a match running
against an older snapshot keeps reading consistent data.
"""
from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Protocol, Sequence, Tuple, Union

import numpy as np

from .exceptions import (
    EmbeddingDimensionError,
    EmptyEmbeddingError,
    InvalidIdentityError,
    PersistError,
    ValidationError,
)
from .logger import setup_logger

Identity = Union[str, int]

EMBEDDING_DTYPE = np.float64


def as_embedding(values) -> np.ndarray:
    """Coerce a descriptor into a read-only 1D float vector."""
    try:
        vector = np.array(values, dtype=EMBEDDING_DTYPE)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"Embedding is not numeric: {exc}") from exc
    if vector.ndim != 1:
        raise ValidationError(f"Embedding must be a 1D vector, got shape {vector.shape}.")
    if vector.size and not np.all(np.isfinite(vector)):
        raise ValidationError("Embedding contains non-finite values.")
    vector.setflags(write=False)
    return vector


@dataclass(frozen=True, eq=False)
class EnrollmentRecord:
    identity: Identity
    embeddings: Tuple[np.ndarray, ...]

    @classmethod
    def build(cls, identity: Identity, embeddings: Iterable) -> "EnrollmentRecord":
        return cls(identity=identity, embeddings=tuple(as_embedding(e) for e in embeddings))

    def with_embedding(self, embedding: np.ndarray) -> "EnrollmentRecord":
        return EnrollmentRecord(identity=self.identity, embeddings=self.embeddings + (embedding,))


@dataclass
class StoredEnrollment:
    """A persisted (identity, descriptor) row as acknowledged by the repository."""

    id: int
    identity: Identity
    descriptor: List[float]


class EnrollmentRepository(Protocol):
    def list_enrollments(self) -> List[EnrollmentRecord]:
        ...

    def save_enrollment(self, identity: Optional[Identity], embedding: np.ndarray) -> StoredEnrollment:
        ...


class Gallery:
    """Ordered, read-only collection of enrollment records.

    Records keep their insertion order; the flattened `matrix` stacks every
    embedding row by row and `owners[i]` is the record index of row `i`.
    """

    def __init__(self, records: Sequence[EnrollmentRecord] = ()):
        self._records: Tuple[EnrollmentRecord, ...] = tuple(records)
        self._index: Dict[Identity, int] = {rec.identity: i for i, rec in enumerate(self._records)}

        rows: List[np.ndarray] = []
        owners: List[int] = []
        for record_index, record in enumerate(self._records):
            for embedding in record.embeddings:
                rows.append(embedding)
                owners.append(record_index)

        if rows:
            self._dimension: Optional[int] = int(rows[0].size)
            self._matrix = np.vstack(rows).astype(EMBEDDING_DTYPE, copy=False)
        else:
            self._dimension = None
            self._matrix = np.empty((0, 0), dtype=EMBEDDING_DTYPE)
        self._matrix.setflags(write=False)
        self._owners = np.asarray(owners, dtype=np.int64)

    @property
    def records(self) -> Tuple[EnrollmentRecord, ...]:
        return self._records

    @property
    def dimension(self) -> Optional[int]:
        return self._dimension

    @property
    def matrix(self) -> np.ndarray:
        return self._matrix

    @property
    def owners(self) -> np.ndarray:
        return self._owners

    @property
    def embedding_count(self) -> int:
        return int(self._matrix.shape[0])

    @property
    def identities(self) -> List[Identity]:
        return [rec.identity for rec in self._records]

    def record_for(self, identity: Identity) -> Optional[EnrollmentRecord]:
        idx = self._index.get(identity)
        return None if idx is None else self._records[idx]

    def with_embedding(self, identity: Identity, embedding: np.ndarray) -> "Gallery":
        records = list(self._records)
        idx = self._index.get(identity)
        if idx is None:
            records.append(EnrollmentRecord(identity=identity, embeddings=(embedding,)))
        else:
            records[idx] = records[idx].with_embedding(embedding)
        return Gallery(records)

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, identity: object) -> bool:
        return identity in self._index


class GalleryStore:
    """Holds the active gallery snapshot for a session.

    The session dimension D is fixed by the first embedding ever loaded or
    enrolled (or pinned up front through `dimension`).
    """

    def __init__(self, repository: Optional[EnrollmentRepository] = None, dimension: Optional[int] = None):
        self.repository = repository
        self._dimension = dimension
        self._gallery = Gallery()
        self._write_lock = threading.Lock()
        self.logger = setup_logger(self.__class__.__name__)

    @property
    def snapshot(self) -> Gallery:
        return self._gallery

    @property
    def dimension(self) -> Optional[int]:
        return self._dimension

    def load(self, records: Sequence[EnrollmentRecord]) -> Gallery:
        with self._write_lock:
            dimension = self._dimension
            merged: Dict[Identity, List[np.ndarray]] = {}
            for record in records:
                bucket = merged.setdefault(record.identity, [])
                for raw in record.embeddings:
                    embedding = as_embedding(raw)
                    if embedding.size == 0:
                        raise ValidationError(f"Empty embedding for identity {record.identity!r}.")
                    if dimension is None:
                        dimension = int(embedding.size)
                    elif embedding.size != dimension:
                        raise ValidationError(
                            f"Embedding for identity {record.identity!r} has {embedding.size} values, "
                            f"gallery expects {dimension}."
                        )
                    bucket.append(embedding)

            gallery = Gallery(
                [EnrollmentRecord(identity=key, embeddings=tuple(embs)) for key, embs in merged.items() if embs]
            )
            self._dimension = dimension
            self._gallery = gallery

        self.logger.info(
            "Gallery loaded: %d identities, %d embeddings (dim=%s)",
            len(gallery),
            gallery.embedding_count,
            self._dimension,
        )
        return gallery

    def reload(self) -> Gallery:
        if self.repository is None:
            raise PersistError("No enrollment repository configured.")
        return self.load(self.repository.list_enrollments())

    def enroll(self, identity: Optional[Identity], embedding) -> StoredEnrollment:
        if isinstance(identity, str) and not identity.strip():
            raise InvalidIdentityError("identity cannot be empty.")

        vector = as_embedding(embedding)
        if vector.size == 0:
            raise EmptyEmbeddingError("Embedding is empty; no face was captured.")

        with self._write_lock:
            if self._dimension is not None and vector.size != self._dimension:
                raise EmbeddingDimensionError(expected=self._dimension, actual=int(vector.size))

            if self.repository is not None:
                stored = self.repository.save_enrollment(identity, vector)
            elif identity is None:
                raise InvalidIdentityError("identity is required without a repository.")
            else:
                stored = StoredEnrollment(id=self._gallery.embedding_count + 1, identity=identity, descriptor=vector.tolist())

            if self._dimension is None:
                self._dimension = int(vector.size)
            self._gallery = self._gallery.with_embedding(stored.identity, vector)

        self.logger.info("Enrolled embedding for %r (%d total)", stored.identity, self._gallery.embedding_count)
        return stored

class FaceGateError(Exception):
    """Base exception for the face/QR identification system."""


class ValidationError(FaceGateError):
    """Raised when an embedding is malformed or its dimension disagrees with the gallery."""


class EnrollError(FaceGateError):
    """Raised when an enrollment request cannot be accepted."""


class EmptyEmbeddingError(EnrollError):
    """Raised when an enrollment carries a zero-length embedding (no face found upstream)."""


class EmbeddingDimensionError(EnrollError):
    """Raised when an enrollment embedding length differs from the session dimension."""

    def __init__(self, expected: int, actual: int):
        super().__init__(f"Embedding has {actual} values, gallery expects {expected}.")
        self.expected = expected
        self.actual = actual


class InvalidIdentityError(EnrollError):
    """Raised when an enrollment identity is blank."""


class CaptureError(FaceGateError):
    """Raised when the camera cannot be opened or read."""


class DeviceDeniedError(CaptureError):
    """Raised when the platform denies access to the camera device."""


class NoDeviceError(CaptureError):
    """Raised when no camera device exists for the requested facing."""


class PersistError(FaceGateError):
    """Raised when enrollment storage reads or writes fail."""


class DecodeError(FaceGateError):
    """Raised when a QR decode attempt fails transiently."""


class FaceEngineError(FaceGateError):
    """Raised when face detection or embedding generation fails."""

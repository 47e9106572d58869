from __future__ import annotations

from typing import Iterable, List


class MediaError(Exception):
    """Root of every error the media core raises on purpose."""


# ---------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------

class StorageError(MediaError):
    pass


class NotFoundError(StorageError):
    """Object is absent. Callers usually treat this as a cache miss or a 404."""

    def __init__(self, ref: str):
        super().__init__(f"object not found: {ref}")
        self.ref = ref


class BackendUnavailableError(StorageError):
    """Network/auth failure talking to the backend. Retryable by the caller."""


class QuotaExceededError(StorageError):
    pass


class IOFailureError(StorageError):
    """Stream read/write failed mid-transfer. Partial state has been cleaned up."""


class SigningFailureError(StorageError):
    pass


# ---------------------------------------------------------------------
# Transform spec
# ---------------------------------------------------------------------

class ValidationError(MediaError):
    def __init__(self, violations: Iterable[str], message: str = "invalid transformation parameters"):
        self.violations: List[str] = list(violations)
        super().__init__(message + ": " + "; ".join(self.violations))


# ---------------------------------------------------------------------
# Transform engine
# ---------------------------------------------------------------------

class TransformError(MediaError):
    pass


class DecodeFailureError(TransformError):
    pass


class EncodeFailureError(TransformError):
    pass


class UnsupportedFormatError(TransformError):
    pass

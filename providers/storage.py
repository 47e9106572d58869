from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import BinaryIO, Optional, Protocol, runtime_checkable


@dataclass(frozen=True)
class UploadResult:
    """
    object_ref   -> backend lookup key, also what callers persist
    internal_url -> only reachable inside the deployment (direct backend address)
    public_url   -> externally reachable path
    """
    object_ref: str
    internal_url: str
    public_url: str
    size: int = 0
    content_type: str = "application/octet-stream"
    file_type: str = "other"
    width: Optional[int] = None
    height: Optional[int] = None
    orientation: Optional[str] = None


@dataclass(frozen=True)
class PresignedURL:
    url: str
    expires_at: datetime


@runtime_checkable
class StorageProvider(Protocol):
    """
    Object storage abstraction shared by every backend.

    Refs are logical names; a backend may apply its own key prefix internally.
    Uploads are all-or-nothing: a failed upload never leaves a readable object.
    """

    def upload(self, stream: BinaryIO, logical_name: str) -> str: ...

    def upload_bytes(self, data: bytes, logical_name: str) -> str: ...

    def download(self, ref: str) -> BinaryIO: ...

    def delete(self, ref: str) -> None: ...

    def get_internal_url(self, ref: str) -> str: ...

    def get_public_url(self, ref: str) -> str: ...

    def get_presigned_url(self, ref: str, ttl_seconds: int = 900) -> PresignedURL: ...

    def ping(self) -> None: ...

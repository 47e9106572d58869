from __future__ import annotations

import io
import os
from dataclasses import dataclass
from typing import Optional, Tuple

from PIL import Image, UnidentifiedImageError

IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".gif", ".webp", ".bmp", ".tif", ".tiff", ".heic"}
VIDEO_EXTENSIONS = {".mp4", ".mov", ".avi", ".mkv", ".webm", ".m4v"}

_EXTENSION_FOR_TYPE = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
    "image/webp": ".webp",
    "video/mp4": ".mp4",
    "video/quicktime": ".mov",
    "video/x-msvideo": ".avi",
    "application/pdf": ".pdf",
}


@dataclass(frozen=True)
class MediaMetadata:
    mime_type: str
    file_type: str
    size: int = 0
    width: Optional[int] = None
    height: Optional[int] = None
    orientation: Optional[str] = None


def sniff_mime(head: bytes, declared: Optional[str] = None) -> str:
    """Detect a content type from leading bytes; fall back to the declared header."""
    if head.startswith(b"\xff\xd8\xff"):
        return "image/jpeg"
    if head.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if head[:6] in (b"GIF87a", b"GIF89a"):
        return "image/gif"
    if head[:4] == b"RIFF" and head[8:12] == b"WEBP":
        return "image/webp"
    if head[:4] == b"RIFF" and head[8:12] == b"AVI ":
        return "video/x-msvideo"
    if head[4:8] == b"ftyp":
        return "video/quicktime" if head[8:10] == b"qt" else "video/mp4"
    if head.startswith(b"%PDF"):
        return "application/pdf"

    ct = (declared or "").split(";", 1)[0].strip().lower()
    return ct or "application/octet-stream"


def file_type(filename: str) -> str:
    ext = os.path.splitext(filename or "")[1].lower()
    if ext in IMAGE_EXTENSIONS:
        return "image"
    if ext in VIDEO_EXTENSIONS:
        return "video"
    return "other"


def extension_for(content_type: Optional[str]) -> str:
    ct = (content_type or "").split(";", 1)[0].strip().lower()
    return _EXTENSION_FOR_TYPE.get(ct, ".bin")


def orientation(width: int, height: int) -> str:
    if width > height:
        return "landscape"
    if height > width:
        return "portrait"
    return "square"


def image_dimensions(head: bytes) -> Optional[Tuple[int, int]]:
    """
    Read width/height from an image header without decoding pixel data.
    Returns None for non-images or when the header is incomplete.
    """
    try:
        with Image.open(io.BytesIO(head)) as img:
            return img.size
    except (UnidentifiedImageError, OSError, SyntaxError, ValueError):
        return None


def describe(head: bytes, filename: str, size: int, declared: Optional[str] = None) -> MediaMetadata:
    mime = sniff_mime(head, declared)
    dims = image_dimensions(head) if mime.startswith("image/") else None
    if dims is None:
        return MediaMetadata(mime_type=mime, file_type=file_type(filename), size=size)
    w, h = dims
    return MediaMetadata(
        mime_type=mime,
        file_type=file_type(filename),
        size=size,
        width=w,
        height=h,
        orientation=orientation(w, h),
    )

from __future__ import annotations

import os
import re
import time
import uuid
from typing import Optional
from urllib.parse import unquote, urlparse

from media.metadata import extension_for

UPLOAD_PREFIX = "uploads"

_UNSAFE = re.compile(r"[^A-Za-z0-9._-]+")


def safe_filename(name: str, default: str = "file") -> str:
    base = os.path.basename((name or "").replace("\\", "/"))
    base = _UNSAFE.sub("_", base).strip("._")
    return base[:200] or default


def new_object_name(filename: str) -> str:
    """uploads/<random>/<filename>; the random segment keeps same-named files apart."""
    return f"{UPLOAD_PREFIX}/{uuid.uuid4().hex}/{safe_filename(filename)}"


def filename_from_url(url: str, explicit: Optional[str] = None, content_type: Optional[str] = None) -> str:
    """
    Explicit name first, then the last URL path segment, then
    download_<unix ts><ext> with the extension taken from content_type.
    """
    if explicit and explicit.strip():
        return safe_filename(explicit)

    path = unquote(urlparse(url).path or "")
    base = os.path.basename(path.rstrip("/")) if path else ""
    if base and "." in base:
        return safe_filename(base)
    if base:
        return safe_filename(base + extension_for(content_type))
    return f"download_{int(time.time())}{extension_for(content_type)}"

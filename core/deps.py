from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Request

from core.providers import providers_from_request
from media.service import MediaService
from providers.storage import StorageProvider


def get_storage(request: Request) -> StorageProvider:
    """Storage backend chosen at startup (S3 or SeaweedFS)."""
    return providers_from_request(request).storage


def get_media(request: Request) -> MediaService:
    return providers_from_request(request).media


StorageDep = Annotated[StorageProvider, Depends(get_storage)]
MediaDep = Annotated[MediaService, Depends(get_media)]

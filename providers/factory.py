from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import FastAPI

from core.settings import DistributedFsSettings, S3Settings, Settings, get_settings
from media.service import MediaService
from providers.impl.storage_s3 import S3StorageProvider
from providers.impl.storage_seaweedfs import SeaweedFsStorageProvider
from providers.storage import StorageProvider

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Providers:
    """
    Central container for providers.

    Built once at startup and attached to app.state.providers.
    """
    settings: Settings
    storage: StorageProvider
    media: MediaService

    def close(self) -> None:
        self.media.close()
        close = getattr(self.storage, "close", None)
        if callable(close):
            close()


def build_storage(settings: Settings) -> StorageProvider:
    """Resolve the configured backend variant to a concrete StorageProvider."""
    backend = settings.storage.backend
    media = settings.media
    common = dict(
        multipart_threshold=media.multipart_threshold_bytes,
        chunk_size=media.multipart_chunk_bytes,
        timeout_seconds=media.internal_fetch_timeout_seconds,
    )

    if isinstance(backend, S3Settings):
        logger.info("[Providers] storage=s3 bucket=%s", backend.bucket)
        return S3StorageProvider(backend, **common)
    if isinstance(backend, DistributedFsSettings):
        logger.info("[Providers] storage=distributed-fs filer=%s", backend.filer_url)
        return SeaweedFsStorageProvider(backend, **common)
    raise RuntimeError(f"Unsupported storage backend settings: {type(backend).__name__}")


def build_providers(
    settings: Optional[Settings] = None,
    storage: Optional[StorageProvider] = None,
) -> Providers:
    settings = settings or get_settings()
    storage = storage or build_storage(settings)
    return Providers(
        settings=settings,
        storage=storage,
        media=MediaService(storage, settings.media),
    )


def init_providers(app: FastAPI, providers: Optional[Providers] = None) -> Providers:
    """
    Canonical provider initialization.
    Called once during app startup/lifespan. Attaches Providers onto app.state.
    """
    app.state.providers = providers or build_providers()
    return app.state.providers

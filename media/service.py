from __future__ import annotations

import logging
import mimetypes
import posixpath
from dataclasses import dataclass
from typing import Any, BinaryIO, Mapping, Optional, Sequence, Union

from core.errors import QuotaExceededError, ValidationError
from core.settings import MediaSettings
from media.cache import TransformCache, TransformedArtifact
from media.ingest import BulkImportReport, ImportRequest, RemoteIngestor
from media.metadata import describe, sniff_mime
from media.naming import new_object_name, safe_filename
from media.transform_spec import TransformSpec, parse_spec, resolve
from providers.storage import PresignedURL, StorageProvider, UploadResult
from providers.streams import LimitedReader, clean_ref, prepend, read_up_to

logger = logging.getLogger(__name__)

SNIFF_BYTES = 64 * 1024


@dataclass(frozen=True)
class OriginalMedia:
    """An original opened for streaming. The caller owns `stream` and must close it."""
    stream: BinaryIO
    content_type: str
    filename: str


class MediaService:
    """
    Media operations over a single StorageProvider:
      - upload originals (size-capped)
      - serve transformed renditions through the cache
      - stream originals (non-images are never transformed)
      - bulk import from remote URLs
      - delete / presign
    """

    def __init__(
        self,
        storage: StorageProvider,
        settings: MediaSettings,
        *,
        ingestor: Optional[RemoteIngestor] = None,
        cache: Optional[TransformCache] = None,
    ):
        self.storage = storage
        self.settings = settings
        self.cache = cache or TransformCache(storage)
        self.ingestor = ingestor or RemoteIngestor(
            storage,
            max_bytes=settings.max_upload_size,
            concurrency=settings.ingest_concurrency,
            timeout_seconds=settings.remote_fetch_timeout_seconds,
        )

    def close(self) -> None:
        self.ingestor.close()

    def upload_original(self, stream: BinaryIO, filename: str) -> UploadResult:
        name = safe_filename(filename)
        limit = self.settings.max_upload_size
        reader = LimitedReader(stream, limit, head_size=SNIFF_BYTES)

        try:
            first = reader.read(SNIFF_BYTES)
            if not first:
                raise ValidationError(["uploaded file is empty"], message="invalid upload")
            ref = self.storage.upload(prepend(first, reader), new_object_name(name))
        except QuotaExceededError as exc:
            raise QuotaExceededError(f"{name} exceeds maximum upload size of {limit} bytes") from exc

        meta = describe(reader.head, name, reader.bytes_read)
        logger.info("[Media] uploaded ref=%s size=%s mime=%s", ref, reader.bytes_read, meta.mime_type)
        return UploadResult(
            object_ref=ref,
            internal_url=self.storage.get_internal_url(ref),
            public_url=self.storage.get_public_url(ref),
            size=reader.bytes_read,
            content_type=meta.mime_type,
            file_type=meta.file_type,
            width=meta.width,
            height=meta.height,
            orientation=meta.orientation,
        )

    def fetch_transformed(
        self,
        source_ref: str,
        spec: Union[TransformSpec, Mapping[str, Any]],
    ) -> TransformedArtifact:
        # validation happens before any storage I/O
        if isinstance(spec, TransformSpec):
            resolved = resolve(spec)
        else:
            resolved = parse_spec(spec)
        return self.cache.fetch(source_ref, resolved)

    def delete_object(self, ref: str) -> None:
        self.storage.delete(ref)

    def bulk_import_from_urls(
        self,
        urls: Sequence[Union[str, ImportRequest]],
        max_bytes: Optional[int] = None,
    ) -> BulkImportReport:
        return self.ingestor.import_urls(urls, max_bytes=max_bytes)

    def presigned_url(self, ref: str, ttl_seconds: Optional[int] = None) -> PresignedURL:
        ttl = ttl_seconds if ttl_seconds is not None else self.settings.presign_ttl_seconds
        return self.storage.get_presigned_url(ref, ttl_seconds=ttl)


    def open_original(self, ref: str) -> OriginalMedia:
        stream = self.storage.download(ref)
        try:
            head = read_up_to(stream, 512)
        except Exception:
            stream.close()
            raise
        content_type = sniff_mime(head, mimetypes.guess_type(ref)[0])
        return OriginalMedia(
            stream=prepend(head, stream, on_close=stream.close),
            content_type=content_type,
            filename=posixpath.basename(clean_ref(ref)),
        )

    def serve_media(
        self,
        ref: str,
        params: Mapping[str, Any],
        *,
        require_directive: bool = True,
    ) -> Union[TransformedArtifact, OriginalMedia]:
        """
        Serve `ref` either as a cached rendition or as the untouched original.

        Only images are transformed. With require_directive, an image is also
        streamed untouched unless the query asks for a size, crop or format.
        Parameters are validated even when the original is streamed.
        """
        spec = parse_spec(params)
        if require_directive and not spec.has_directive:
            return self.open_original(ref)

        guessed = mimetypes.guess_type(ref)[0]
        if guessed is not None:
            if guessed.startswith("image/"):
                return self.cache.fetch(ref, spec)
            return self.open_original(ref)

        # no extension: decide from the stored bytes
        original = self.open_original(ref)
        if not original.content_type.startswith("image/"):
            return original
        original.stream.close()
        return self.cache.fetch(ref, spec)

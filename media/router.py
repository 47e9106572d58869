from __future__ import annotations

import logging
from typing import BinaryIO, Dict, Iterator, Optional, Type, Union
from urllib.parse import quote

from fastapi import APIRouter, FastAPI, File, Query, Request, Response, UploadFile
from fastapi.responses import JSONResponse, StreamingResponse

from core.deps import MediaDep
from core.errors import (
    BackendUnavailableError,
    DecodeFailureError,
    EncodeFailureError,
    IOFailureError,
    MediaError,
    NotFoundError,
    QuotaExceededError,
    SigningFailureError,
    UnsupportedFormatError,
    ValidationError,
)
from media.cache import TransformedArtifact
from media.ingest import ImportRequest
from media.models import (
    BulkImportRequest,
    BulkImportResponse,
    ImportResultModel,
    PresignResponse,
    UploadResponse,
)
from media.service import OriginalMedia

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/media", tags=["media"])

STREAM_CHUNK_SIZE = 64 * 1024

_TRANSFORM_PARAMS = ("width", "height", "fit", "crop", "quality", "format", "preset", "fresh")

_STATUS: Dict[Type[MediaError], int] = {
    ValidationError: 400,
    NotFoundError: 404,
    QuotaExceededError: 413,
    UnsupportedFormatError: 415,
    DecodeFailureError: 422,
    IOFailureError: 502,
    EncodeFailureError: 502,
    BackendUnavailableError: 503,
    SigningFailureError: 500,
}

_KIND = {
    ValidationError: "validation_error",
    NotFoundError: "not_found",
    QuotaExceededError: "quota_exceeded",
    UnsupportedFormatError: "unsupported_format",
    DecodeFailureError: "decode_failure",
    IOFailureError: "io_failure",
    EncodeFailureError: "encode_failure",
    BackendUnavailableError: "backend_unavailable",
    SigningFailureError: "signing_failure",
}


def status_for(exc: MediaError) -> int:
    for cls, status in _STATUS.items():
        if isinstance(exc, cls):
            return status
    return 500


async def media_error_handler(request: Request, exc: MediaError) -> JSONResponse:
    status = status_for(exc)
    kind = next((k for cls, k in _KIND.items() if isinstance(exc, cls)), "media_error")
    if status >= 500:
        logger.error("[Media] %s %s -> %s: %s", request.method, request.url.path, status, exc)
    body = {"error": kind, "detail": str(exc)}
    if isinstance(exc, ValidationError):
        body["violations"] = list(exc.violations)
    return JSONResponse(status_code=status, content=body)


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(MediaError, media_error_handler)


def _transform_params(request: Request) -> Dict[str, str]:
    return {k: request.query_params[k] for k in _TRANSFORM_PARAMS if k in request.query_params}


def _iter_stream(stream: BinaryIO) -> Iterator[bytes]:
    try:
        while True:
            chunk = stream.read(STREAM_CHUNK_SIZE)
            if not chunk:
                break
            yield chunk
    finally:
        stream.close()


def _media_response(result: Union[TransformedArtifact, OriginalMedia]) -> Response:
    if isinstance(result, OriginalMedia):
        return StreamingResponse(
            _iter_stream(result.stream),
            media_type=result.content_type,
            headers={"Content-Disposition": f'inline; filename="{quote(result.filename)}"'},
        )
    return Response(
        content=result.data,
        media_type=result.content_type,
        headers={
            "X-Cache": "HIT" if result.cache_hit else "MISS",
            "Cache-Control": result.cache_control,
        },
    )


# ---------------------------------------------------------------------
# POST /media
# ---------------------------------------------------------------------
@router.post("", response_model=UploadResponse)
def upload_media(media: MediaDep, file: UploadFile = File(...)):
    """Store an original. The file is streamed, never read fully into memory."""
    try:
        result = media.upload_original(file.file, file.filename or "upload.bin")
    finally:
        file.file.close()
    return UploadResponse(
        object_ref=result.object_ref,
        internal_url=result.internal_url,
        public_url=result.public_url,
        size=result.size,
        content_type=result.content_type,
        file_type=result.file_type,
        width=result.width,
        height=result.height,
        orientation=result.orientation,
    )


# ---------------------------------------------------------------------
# GET /media/transform/{ref}
# ---------------------------------------------------------------------
@router.get("/transform/{ref:path}")
def get_transformed(ref: str, request: Request, media: MediaDep):
    """Rendition of an image. Anything that is not an image is streamed back untouched."""
    result = media.serve_media(ref, _transform_params(request), require_directive=False)
    return _media_response(result)


# ---------------------------------------------------------------------
# GET /media/files/{ref}
# ---------------------------------------------------------------------
@router.get("/files/{ref:path}")
def get_file(ref: str, request: Request, media: MediaDep):
    """Stream an original; images with size, crop or format options are transformed."""
    return _media_response(media.serve_media(ref, _transform_params(request)))


# ---------------------------------------------------------------------
# GET /media/presign/{ref}
# ---------------------------------------------------------------------
@router.get("/presign/{ref:path}", response_model=PresignResponse)
def presign(ref: str, media: MediaDep, ttl: Optional[int] = Query(default=None, gt=0)):
    presigned = media.presigned_url(ref, ttl_seconds=ttl)
    return PresignResponse(url=presigned.url, expires_at=presigned.expires_at)


# ---------------------------------------------------------------------
# DELETE /media/objects/{ref}
# ---------------------------------------------------------------------
@router.delete("/objects/{ref:path}", status_code=204)
def delete_object(ref: str, media: MediaDep):
    media.delete_object(ref)
    return Response(status_code=204)


# ---------------------------------------------------------------------
# POST /media/import
# ---------------------------------------------------------------------
@router.post("/import", response_model=BulkImportResponse)
def import_from_urls(payload: BulkImportRequest, media: MediaDep):
    items = [ImportRequest(url=i.url, filename=i.filename or "") for i in payload.urls]
    report = media.bulk_import_from_urls(items, max_bytes=payload.max_bytes)
    return BulkImportResponse(
        total=report.total,
        success_count=report.success_count,
        results=[
            ImportResultModel(
                url=r.url,
                success=r.success,
                object_ref=r.object_ref or None,
                filename=r.filename or None,
                size=r.size,
                content_type=r.content_type or None,
                file_type=r.file_type or None,
                width=r.width,
                height=r.height,
                orientation=r.orientation,
                internal_url=r.internal_url or None,
                public_url=r.public_url or None,
                error=r.error or None,
            )
            for r in report.results
        ],
    )

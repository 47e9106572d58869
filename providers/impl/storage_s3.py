from __future__ import annotations

import base64
import hashlib
import io
import logging
import mimetypes
from datetime import datetime, timedelta, timezone
from typing import Any, BinaryIO, Dict, List, Optional
from urllib.parse import quote

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from core.errors import (
    BackendUnavailableError,
    IOFailureError,
    MediaError,
    NotFoundError,
    QuotaExceededError,
    SigningFailureError,
    StorageError,
)
from core.settings import MIB, S3Settings
from providers.storage import PresignedURL, StorageProvider
from providers.streams import clean_ref, iter_chunks, read_head

logger = logging.getLogger(__name__)

_NOT_FOUND_CODES = {"NoSuchKey", "NoSuchObject", "NotFound", "404"}
_QUOTA_CODES = {"QuotaExceeded", "ServiceQuotaExceeded", "EntityTooLarge", "TooManyBuckets"}

# SigV4 presigned URLs cannot outlive seven days.
MAX_PRESIGN_TTL_SECONDS = 7 * 24 * 3600


def _content_type(name: str) -> str:
    return mimetypes.guess_type(name)[0] or "application/octet-stream"


def _md5_b64(data: bytes) -> str:
    return base64.b64encode(hashlib.md5(data).digest()).decode("ascii")


def translate_s3_error(exc: Exception, ref: str, action: str) -> StorageError:
    if isinstance(exc, ClientError):
        err = exc.response.get("Error") or {}
        code = str(err.get("Code") or "")
        if code in _NOT_FOUND_CODES:
            return NotFoundError(ref)
        if code in _QUOTA_CODES:
            return QuotaExceededError(f"{action} {ref}: {code}")
        return BackendUnavailableError(f"{action} {ref} failed: {code or exc}")
    return BackendUnavailableError(f"{action} {ref} failed: {exc}")


class S3StorageProvider(StorageProvider):
    """
    AWS S3 (or S3-compatible endpoint) StorageProvider.

    Credential resolution falls back to the boto3 chain (env, profile, IRSA)
    when no static keys are configured. The client is built once and shared;
    boto3 clients are safe to use from several threads.

    Payloads above multipart_threshold go through CreateMultipartUpload /
    UploadPart / CompleteMultipartUpload. Any failure after the upload was
    created aborts it so no parts linger and the key never becomes readable.
    """

    def __init__(
        self,
        settings: S3Settings,
        *,
        multipart_threshold: int = 10 * MIB,
        chunk_size: int = 5 * MIB,
        timeout_seconds: float = 10.0,
        client: Optional[Any] = None,
    ):
        bucket = (settings.bucket or "").strip()
        if not bucket:
            raise RuntimeError("AWS_BUCKET_NAME is required for S3 storage provider")

        prefix = (settings.prefix or "").strip().lstrip("/")
        if prefix and not prefix.endswith("/"):
            prefix = prefix + "/"

        self.bucket = bucket
        self.prefix = prefix
        self.region = settings.region or "us-east-1"
        self.endpoint = (settings.endpoint or "").rstrip("/")
        self.public_url = (settings.public_url or "").rstrip("/")
        self.multipart_threshold = multipart_threshold
        self.chunk_size = chunk_size

        if client is None:
            client = self._build_client(settings, timeout_seconds)
        self.s3 = client

    @staticmethod
    def _build_client(settings: S3Settings, timeout_seconds: float) -> Any:
        # Retries are the caller's decision; a single attempt keeps failures visible.
        cfg = Config(
            region_name=settings.region or "us-east-1",
            signature_version="s3v4",
            retries={"max_attempts": 1, "mode": "standard"},
            connect_timeout=timeout_seconds,
            read_timeout=timeout_seconds,
            s3={"addressing_style": "path"} if settings.force_path_style else None,
        )
        kwargs: Dict[str, Any] = {"config": cfg}
        if settings.endpoint:
            kwargs["endpoint_url"] = settings.endpoint
        if settings.access_key_id and settings.secret_access_key:
            kwargs["aws_access_key_id"] = settings.access_key_id
            kwargs["aws_secret_access_key"] = settings.secret_access_key
        return boto3.client("s3", **kwargs)

    def _key(self, ref: str) -> str:
        return f"{self.prefix}{clean_ref(ref)}"

    # -----------------------------------------------------------------
    # Upload
    # -----------------------------------------------------------------

    def upload(self, stream: BinaryIO, logical_name: str) -> str:
        ref = clean_ref(logical_name)
        head, is_large = read_head(stream, self.multipart_threshold)
        if is_large:
            self._multipart_upload(ref, head, stream)
        else:
            self._put(ref, head)
        return ref

    def upload_bytes(self, data: bytes, logical_name: str) -> str:
        ref = clean_ref(logical_name)
        if len(data) > self.multipart_threshold:
            self._multipart_upload(ref, b"", io.BytesIO(data))
        else:
            self._put(ref, data)
        return ref

    def _put(self, ref: str, data: bytes) -> None:
        try:
            self.s3.put_object(
                Bucket=self.bucket,
                Key=self._key(ref),
                Body=data,
                ContentType=_content_type(ref),
                ContentMD5=_md5_b64(data),
            )
        except (ClientError, BotoCoreError) as exc:
            raise translate_s3_error(exc, ref, "upload") from exc

    def _multipart_upload(self, ref: str, head: bytes, stream: BinaryIO) -> None:
        key = self._key(ref)
        try:
            created = self.s3.create_multipart_upload(
                Bucket=self.bucket,
                Key=key,
                ContentType=_content_type(ref),
            )
        except (ClientError, BotoCoreError) as exc:
            raise translate_s3_error(exc, ref, "create multipart upload") from exc

        upload_id = created["UploadId"]
        parts: List[Dict[str, Any]] = []
        part_number = 0
        try:
            for part_number, chunk in enumerate(iter_chunks(head, stream, self.chunk_size), start=1):
                resp = self.s3.upload_part(
                    Bucket=self.bucket,
                    Key=key,
                    UploadId=upload_id,
                    PartNumber=part_number,
                    Body=chunk,
                    ContentMD5=_md5_b64(chunk),
                )
                etag = resp.get("ETag")
                if not etag:
                    raise IOFailureError(f"part {part_number} of {ref} returned no ETag")
                parts.append({"PartNumber": part_number, "ETag": etag})

            if not parts:
                raise IOFailureError(f"multipart upload of {ref} produced no parts")

            self.s3.complete_multipart_upload(
                Bucket=self.bucket,
                Key=key,
                UploadId=upload_id,
                MultipartUpload={"Parts": sorted(parts, key=lambda p: p["PartNumber"])},
            )
        except Exception as exc:
            self._abort(key, upload_id)
            if isinstance(exc, MediaError):
                raise
            raise IOFailureError(f"multipart upload of {ref} failed at part {part_number}: {exc}") from exc

        logger.info("[S3] multipart upload complete key=%s parts=%s", key, len(parts))

    def _abort(self, key: str, upload_id: str) -> None:
        try:
            self.s3.abort_multipart_upload(Bucket=self.bucket, Key=key, UploadId=upload_id)
            logger.warning("[S3] aborted multipart upload key=%s upload_id=%s", key, upload_id)
        except Exception:
            logger.exception("[S3] abort multipart upload failed key=%s upload_id=%s", key, upload_id)

    # -----------------------------------------------------------------
    # Read / delete
    # -----------------------------------------------------------------

    def download(self, ref: str) -> BinaryIO:
        ref = clean_ref(ref)
        try:
            resp = self.s3.get_object(Bucket=self.bucket, Key=self._key(ref))
        except (ClientError, BotoCoreError) as exc:
            raise translate_s3_error(exc, ref, "download") from exc
        return resp["Body"]

    def delete(self, ref: str) -> None:
        ref = clean_ref(ref)
        try:
            self.s3.delete_object(Bucket=self.bucket, Key=self._key(ref))
        except (ClientError, BotoCoreError) as exc:
            err = translate_s3_error(exc, ref, "delete")
            if isinstance(err, NotFoundError):
                return
            raise err from exc

    # -----------------------------------------------------------------
    # URLs
    # -----------------------------------------------------------------

    def get_internal_url(self, ref: str) -> str:
        key = quote(self._key(ref))
        if self.endpoint:
            return f"{self.endpoint}/{self.bucket}/{key}"
        return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{key}"

    def get_public_url(self, ref: str) -> str:
        if self.public_url:
            return f"{self.public_url}/{quote(self._key(ref))}"
        return self.get_internal_url(ref)

    def get_presigned_url(self, ref: str, ttl_seconds: int = 900) -> PresignedURL:
        ttl = int(ttl_seconds)
        if ttl <= 0 or ttl > MAX_PRESIGN_TTL_SECONDS:
            raise SigningFailureError(f"presign ttl must be within 1..{MAX_PRESIGN_TTL_SECONDS} seconds, got {ttl}")

        expires_at = datetime.now(timezone.utc) + timedelta(seconds=ttl)
        try:
            url = self.s3.generate_presigned_url(
                ClientMethod="get_object",
                Params={"Bucket": self.bucket, "Key": self._key(ref)},
                ExpiresIn=ttl,
            )
        except (ClientError, BotoCoreError, ValueError) as exc:
            raise SigningFailureError(f"failed to presign {ref}: {exc}") from exc
        return PresignedURL(url=url, expires_at=expires_at)

    def ping(self) -> None:
        try:
            self.s3.head_bucket(Bucket=self.bucket)
        except (ClientError, BotoCoreError) as exc:
            raise BackendUnavailableError(f"bucket {self.bucket} unreachable: {exc}") from exc

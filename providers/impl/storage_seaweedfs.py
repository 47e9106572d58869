from __future__ import annotations

import hashlib
import io
import json
import logging
import mimetypes
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, BinaryIO, Dict, Iterator, List, Optional
from urllib.parse import quote

import httpx
from jose import jwt
from jose.exceptions import JWTError

from core.errors import (
    BackendUnavailableError,
    IOFailureError,
    MediaError,
    NotFoundError,
    QuotaExceededError,
    SigningFailureError,
)
from core.settings import MIB, DistributedFsSettings
from providers.storage import PresignedURL, StorageProvider
from providers.streams import IteratorStream, clean_ref, iter_chunks, read_head

logger = logging.getLogger(__name__)

# Filer extended attribute marking an entry as a chunk manifest.
MANIFEST_HEADER = "Seaweed-Chunk-Manifest"
STAGING_DIR = ".multipart"


@dataclass(frozen=True)
class _Part:
    number: int
    path: str
    size: int
    etag: str


def _check(resp: httpx.Response, ref: str, action: str) -> None:
    status = resp.status_code
    if status < 400:
        return
    if status == 404:
        raise NotFoundError(ref)
    if status in (413, 507):
        raise QuotaExceededError(f"{action} {ref}: filer returned {status}")
    raise BackendUnavailableError(f"{action} {ref}: filer returned {status}")


class SeaweedFsStorageProvider(StorageProvider):
    """
    SeaweedFS StorageProvider over the filer HTTP API.

    Refs map to filer paths (optionally under a prefix). Small payloads are a
    single PUT. Larger payloads are staged as numbered parts under
    `.multipart/<upload id>/` and committed by writing a JSON manifest at the
    target path; until that write succeeds the target does not exist, and a
    failed upload removes the staging directory.

    Reads of a manifest entry stream its parts back in order.
    """

    def __init__(
        self,
        settings: DistributedFsSettings,
        *,
        multipart_threshold: int = 10 * MIB,
        chunk_size: int = 5 * MIB,
        timeout_seconds: float = 10.0,
        http_client: Optional[httpx.Client] = None,
    ):
        filer_url = (settings.filer_url or "").strip().rstrip("/")
        if not filer_url:
            raise RuntimeError("SEAWEEDFS_FILER_URL is required for distributed-fs storage provider")

        prefix = (settings.prefix or "").strip().strip("/")
        self.prefix = f"{prefix}/" if prefix else ""
        self.filer_url = filer_url
        self.master_url = (settings.master_url or "").strip().rstrip("/")
        self.public_url = (settings.public_url or filer_url).strip().rstrip("/")
        self.signing_key = settings.jwt_signing_key or ""
        self.multipart_threshold = multipart_threshold
        self.chunk_size = chunk_size

        self._client = http_client or httpx.Client(timeout=timeout_seconds)

    def _path(self, ref: str) -> str:
        return f"{self.prefix}{clean_ref(ref)}"

    def _filer(self, path: str) -> str:
        return f"{self.filer_url}/{quote(path)}"

    def _request(self, method: str, url: str, ref: str, action: str, **kwargs: Any) -> httpx.Response:
        try:
            return self._client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            raise BackendUnavailableError(f"{action} {ref} failed: {exc}") from exc

    # -----------------------------------------------------------------
    # Upload
    # -----------------------------------------------------------------

    def upload(self, stream: BinaryIO, logical_name: str) -> str:
        ref = clean_ref(logical_name)
        head, is_large = read_head(stream, self.multipart_threshold)
        if is_large:
            self._chunked_upload(ref, head, stream)
        else:
            self._put(self._path(ref), head, ref, "upload")
        return ref

    def upload_bytes(self, data: bytes, logical_name: str) -> str:
        ref = clean_ref(logical_name)
        if len(data) > self.multipart_threshold:
            self._chunked_upload(ref, b"", io.BytesIO(data))
        else:
            self._put(self._path(ref), data, ref, "upload")
        return ref

    def _put(
        self,
        path: str,
        data: bytes,
        ref: str,
        action: str,
        headers: Optional[Dict[str, str]] = None,
    ) -> httpx.Response:
        h = {"Content-Type": mimetypes.guess_type(path)[0] or "application/octet-stream"}
        h.update(headers or {})
        resp = self._request("PUT", self._filer(path), ref, action, content=data, headers=h)
        _check(resp, ref, action)
        return resp

    def _chunked_upload(self, ref: str, head: bytes, stream: BinaryIO) -> None:
        upload_id = uuid.uuid4().hex
        staging = f"{self.prefix}{STAGING_DIR}/{upload_id}"
        parts: List[_Part] = []
        part_number = 0
        try:
            for part_number, chunk in enumerate(iter_chunks(head, stream, self.chunk_size), start=1):
                parts.append(self._upload_part(ref, staging, part_number, chunk))
            self._complete(ref, upload_id, parts)
        except Exception as exc:
            self._abort(staging)
            if isinstance(exc, MediaError):
                raise
            raise IOFailureError(f"chunked upload of {ref} failed at part {part_number}: {exc}") from exc

        logger.info("[SeaweedFS] chunked upload complete path=%s parts=%s", self._path(ref), len(parts))

    def _upload_part(self, ref: str, staging: str, number: int, chunk: bytes) -> _Part:
        path = f"{staging}/{number:05d}"
        digest = hashlib.md5(chunk).hexdigest()
        resp = self._put(path, chunk, ref, f"upload part {number} of")

        returned = ""
        try:
            body = resp.json()
            if isinstance(body, dict):
                returned = str(body.get("eTag") or "")
        except ValueError:
            returned = ""
        returned = (returned or resp.headers.get("ETag", "")).strip('"')
        if returned and returned != digest:
            raise IOFailureError(f"part {number} of {ref} failed integrity check")
        return _Part(number=number, path=path, size=len(chunk), etag=digest)

    def _complete(self, ref: str, upload_id: str, parts: List[_Part]) -> None:
        if not parts:
            raise IOFailureError(f"chunked upload of {ref} produced no parts")
        for expected, part in enumerate(parts, start=1):
            if part.number != expected or not part.etag:
                raise IOFailureError(f"chunked upload of {ref} has missing or unordered part {expected}")

        manifest = {
            "upload_id": upload_id,
            "size": sum(p.size for p in parts),
            "mime": mimetypes.guess_type(ref)[0] or "application/octet-stream",
            "parts": [{"part": p.number, "path": p.path, "size": p.size, "etag": p.etag} for p in parts],
        }
        self._put(
            self._path(ref),
            json.dumps(manifest).encode("utf-8"),
            ref,
            "complete upload",
            headers={"Content-Type": "application/json", MANIFEST_HEADER: "true"},
        )

    def _abort(self, staging: str) -> None:
        try:
            resp = self._client.delete(
                self._filer(staging),
                params={"recursive": "true", "ignoreRecursiveError": "true"},
            )
            if resp.status_code >= 400 and resp.status_code != 404:
                logger.error("[SeaweedFS] abort cleanup failed dir=%s status=%s", staging, resp.status_code)
                return
            logger.warning("[SeaweedFS] aborted chunked upload dir=%s", staging)
        except Exception:
            logger.exception("[SeaweedFS] abort cleanup failed dir=%s", staging)

    # -----------------------------------------------------------------
    # Read / delete
    # -----------------------------------------------------------------

    def _open(self, path: str, ref: str, action: str) -> httpx.Response:
        try:
            resp = self._client.send(self._client.build_request("GET", self._filer(path)), stream=True)
        except httpx.HTTPError as exc:
            raise BackendUnavailableError(f"{action} {ref} failed: {exc}") from exc
        if resp.status_code >= 400:
            resp.close()
            _check(resp, ref, action)
        return resp

    def download(self, ref: str) -> BinaryIO:
        ref = clean_ref(ref)
        resp = self._open(self._path(ref), ref, "download")
        if resp.headers.get(MANIFEST_HEADER, "").lower() == "true":
            try:
                manifest = json.loads(resp.read())
            except (ValueError, httpx.HTTPError) as exc:
                raise IOFailureError(f"unreadable manifest for {ref}: {exc}") from exc
            finally:
                resp.close()
            return IteratorStream(self._iter_parts(ref, manifest))
        return IteratorStream(self._iter_body(ref, resp), on_close=resp.close)

    def _iter_body(self, ref: str, resp: httpx.Response) -> Iterator[bytes]:
        try:
            yield from resp.iter_bytes()
        except httpx.HTTPError as exc:
            raise IOFailureError(f"download of {ref} interrupted: {exc}") from exc

    def _iter_parts(self, ref: str, manifest: Dict[str, Any]) -> Iterator[bytes]:
        for part in sorted(manifest.get("parts") or [], key=lambda p: int(p["part"])):
            try:
                resp = self._open(part["path"], ref, "download part of")
            except NotFoundError as exc:
                raise IOFailureError(f"part {part['part']} of {ref} is missing") from exc
            try:
                yield from self._iter_body(ref, resp)
            finally:
                resp.close()

    def delete(self, ref: str) -> None:
        ref = clean_ref(ref)
        path = self._path(ref)
        staging = ""
        resp = self._request("HEAD", self._filer(path), ref, "delete")
        if resp.status_code == 404:
            return
        _check(resp, ref, "delete")
        if resp.headers.get(MANIFEST_HEADER, "").lower() == "true":
            manifest_resp = self._request("GET", self._filer(path), ref, "delete")
            _check(manifest_resp, ref, "delete")
            try:
                upload_id = str(manifest_resp.json().get("upload_id") or "")
            except ValueError:
                upload_id = ""
            if upload_id:
                staging = f"{self.prefix}{STAGING_DIR}/{upload_id}"

        resp = self._request("DELETE", self._filer(path), ref, "delete")
        if resp.status_code != 404:
            _check(resp, ref, "delete")
        if staging:
            resp = self._request(
                "DELETE",
                self._filer(staging),
                ref,
                "delete parts of",
                params={"recursive": "true", "ignoreRecursiveError": "true"},
            )
            if resp.status_code != 404:
                _check(resp, ref, "delete parts of")

    # -----------------------------------------------------------------
    # URLs
    # -----------------------------------------------------------------

    def get_internal_url(self, ref: str) -> str:
        return self._filer(self._path(ref))

    def get_public_url(self, ref: str) -> str:
        return f"{self.public_url}/{quote(self._path(ref))}"

    def get_presigned_url(self, ref: str, ttl_seconds: int = 900) -> PresignedURL:
        """
        Public URL carrying a filer read JWT; the filer rejects it after `exp`.
        Each call mints a new token (fresh iat/jti).
        """
        if not self.signing_key:
            raise SigningFailureError("SEAWEEDFS_JWT_SIGNING_KEY is not configured")
        ttl = int(ttl_seconds)
        if ttl <= 0:
            raise SigningFailureError(f"presign ttl must be positive, got {ttl}")

        now = datetime.now(timezone.utc)
        expires_at = now + timedelta(seconds=ttl)
        claims = {
            "exp": int(expires_at.timestamp()),
            "iat": int(now.timestamp()),
            "jti": uuid.uuid4().hex,
            "path": "/" + self._path(ref),
        }
        try:
            token = jwt.encode(claims, self.signing_key, algorithm="HS256")
        except JWTError as exc:
            raise SigningFailureError(f"failed to sign {ref}: {exc}") from exc
        return PresignedURL(url=f"{self.get_public_url(ref)}?jwt={token}", expires_at=expires_at)

    def close(self) -> None:
        self._client.close()

    def ping(self) -> None:
        target = self.master_url or self.filer_url
        try:
            resp = self._client.get(f"{target}/cluster/status")
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            raise BackendUnavailableError(f"SeaweedFS unreachable at {target}: {exc}") from exc

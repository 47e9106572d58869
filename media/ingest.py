from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Iterator, List, Optional, Sequence, Union

import httpx

from core.errors import MediaError, QuotaExceededError
from media.metadata import describe
from media.naming import filename_from_url, new_object_name
from providers.storage import StorageProvider
from providers.streams import IteratorStream, LimitedReader, prepend

logger = logging.getLogger(__name__)

SNIFF_BYTES = 64 * 1024


@dataclass(frozen=True)
class ImportRequest:
    url: str
    filename: str = ""


@dataclass(frozen=True)
class ImportResult:
    url: str
    success: bool
    object_ref: str = ""
    filename: str = ""
    size: int = 0
    content_type: str = ""
    file_type: str = ""
    internal_url: str = ""
    public_url: str = ""
    width: Optional[int] = None
    height: Optional[int] = None
    orientation: Optional[str] = None
    error: str = ""


@dataclass(frozen=True)
class BulkImportReport:
    total: int
    success_count: int
    results: List[ImportResult]


def _failed(url: str, error: str) -> ImportResult:
    return ImportResult(url=url, success=False, error=error)


def _is_timeout(exc: BaseException) -> bool:
    while exc is not None:
        if isinstance(exc, httpx.TimeoutException):
            return True
        exc = exc.__cause__
    return False


def _until_deadline(resp: httpx.Response, deadline: float, seconds: float) -> Iterator[bytes]:
    for chunk in resp.iter_bytes():
        if time.monotonic() > deadline:
            raise httpx.ReadTimeout(f"download exceeded {seconds}s", request=resp.request)
        yield chunk


class RemoteIngestor:
    """
    Download remote URLs into storage with at most `concurrency` transfers
    in flight. One shared httpx.Client serves every worker.

    timeout_seconds bounds each whole transfer, not just the gap between reads.
    """

    def __init__(
        self,
        storage: StorageProvider,
        *,
        max_bytes: int,
        concurrency: int = 5,
        timeout_seconds: float = 60.0,
        http_client: Optional[httpx.Client] = None,
    ):
        self.storage = storage
        self.max_bytes = max_bytes
        self.concurrency = max(1, int(concurrency))
        self.timeout_seconds = float(timeout_seconds)
        self._client = http_client or httpx.Client(timeout=timeout_seconds, follow_redirects=True)

    def close(self) -> None:
        self._client.close()

    def import_urls(
        self,
        items: Sequence[Union[str, ImportRequest]],
        max_bytes: Optional[int] = None,
    ) -> BulkImportReport:
        requests = [ImportRequest(url=i) if isinstance(i, str) else i for i in items]
        limit = int(max_bytes) if max_bytes and max_bytes > 0 else self.max_bytes
        results: List[Optional[ImportResult]] = [None] * len(requests)

        if requests:
            with ThreadPoolExecutor(max_workers=min(self.concurrency, len(requests))) as pool:
                futures = [(idx, pool.submit(self._safe_import, req, limit)) for idx, req in enumerate(requests)]
                for idx, fut in futures:
                    results[idx] = fut.result()

        done = [r for r in results if r is not None]
        success = sum(1 for r in done if r.success)
        logger.info("[Ingest] batch complete total=%s success=%s", len(done), success)
        return BulkImportReport(total=len(done), success_count=success, results=done)

    def _safe_import(self, req: ImportRequest, limit: int) -> ImportResult:
        try:
            result = self.import_one(req, limit)
        except Exception as exc:
            logger.exception("[Ingest] unexpected failure url=%s", req.url)
            result = _failed(req.url, f"Unexpected error: {exc}")
        if not result.success:
            logger.warning("[Ingest] failed url=%s: %s", req.url, result.error)
        return result

    def import_one(self, req: ImportRequest, limit: int) -> ImportResult:
        url = (req.url or "").strip()
        if not url:
            return _failed(req.url, "URL is empty")

        deadline = time.monotonic() + self.timeout_seconds
        try:
            resp = self._client.send(self._client.build_request("GET", url), stream=True)
        except httpx.TimeoutException as exc:
            return _failed(url, f"Failed to download: timed out ({exc})")
        except (httpx.HTTPError, ValueError) as exc:
            return _failed(url, f"Failed to download: {exc}")

        try:
            if resp.status_code != 200:
                return _failed(url, f"Failed to download: status code {resp.status_code}")

            declared = resp.headers.get("Content-Length")
            if declared and declared.isdigit() and int(declared) > limit:
                return _failed(url, f"File too large: {declared} bytes exceeds limit of {limit} bytes")

            content_type = resp.headers.get("Content-Type")
            filename = filename_from_url(str(resp.url), req.filename, content_type)
            body = IteratorStream(_until_deadline(resp, deadline, self.timeout_seconds))
            reader = LimitedReader(body, limit, head_size=SNIFF_BYTES)

            try:
                first = reader.read(SNIFF_BYTES)
            except QuotaExceededError:
                return _failed(url, f"File too large: exceeds limit of {limit} bytes")
            except httpx.TimeoutException as exc:
                return _failed(url, f"Failed to download: timed out ({exc})")
            except httpx.HTTPError as exc:
                return _failed(url, f"Failed to download: {exc}")
            if not first:
                return _failed(url, "Downloaded file is empty")

            try:
                ref = self.storage.upload(prepend(first, reader), new_object_name(filename))
            except QuotaExceededError:
                return _failed(url, f"File too large: exceeds limit of {limit} bytes")
            except httpx.TimeoutException as exc:
                return _failed(url, f"Failed to download: timed out ({exc})")
            except MediaError as exc:
                if _is_timeout(exc):
                    return _failed(url, f"Failed to download: timed out ({exc})")
                return _failed(url, f"Failed to upload file: {exc}")
        finally:
            resp.close()

        meta = describe(reader.head, filename, reader.bytes_read, content_type)
        return ImportResult(
            url=url,
            success=True,
            object_ref=ref,
            filename=filename,
            size=reader.bytes_read,
            content_type=meta.mime_type,
            file_type=meta.file_type,
            internal_url=self.storage.get_internal_url(ref),
            public_url=self.storage.get_public_url(ref),
            width=meta.width,
            height=meta.height,
            orientation=meta.orientation,
        )


from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Union

MIB = 1024 * 1024

# S3 rejects non-final parts smaller than this.
S3_MIN_PART_BYTES = 5 * MIB


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else str(v)


def _env_int(name: str, default: int) -> int:
    raw = _env(name, "")
    if not raw.strip():
        return default
    try:
        return int(raw)
    except Exception:
        return default


def _env_float(name: str, default: float) -> float:
    raw = _env(name, "")
    if not raw.strip():
        return default
    try:
        return float(raw)
    except Exception:
        return default


def _env_bool(name: str, default: bool = False) -> bool:
    raw = _env(name, "").strip().lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes", "on")


# ---------------------------------------------------------------------
# Settings models
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class S3Settings:
    region: str = "us-east-1"
    bucket: str = ""
    access_key_id: str = ""
    secret_access_key: str = ""
    # Custom endpoint for S3-compatible stores (MinIO, R2, ...)
    endpoint: str = ""
    force_path_style: bool = False
    public_url: str = ""
    prefix: str = ""


@dataclass(frozen=True)
class DistributedFsSettings:
    master_url: str = "http://localhost:9333"
    filer_url: str = "http://localhost:8888"
    public_url: str = ""
    prefix: str = ""
    # Shared secret for filer read JWTs (security.toml: jwt.filer_signing.read.key)
    jwt_signing_key: str = ""


BackendSettings = Union[S3Settings, DistributedFsSettings]


@dataclass(frozen=True)
class StorageSettings:
    """
    provider:
      - "s3"              -> S3StorageProvider (boto3; also S3-compatible endpoints)
      - "distributed-fs"  -> SeaweedFsStorageProvider (filer HTTP API)
    """
    provider: str
    backend: BackendSettings


@dataclass(frozen=True)
class MediaSettings:
    max_upload_size: int = 10 * MIB
    ingest_concurrency: int = 5
    remote_fetch_timeout_seconds: float = 60.0
    internal_fetch_timeout_seconds: float = 10.0
    multipart_threshold_bytes: int = 10 * MIB
    multipart_chunk_bytes: int = 5 * MIB
    presign_ttl_seconds: int = 900


@dataclass(frozen=True)
class Settings:
    storage: StorageSettings
    media: MediaSettings
    log_level: str = "INFO"


# ---------------------------------------------------------------------
# Loaders
# ---------------------------------------------------------------------

def _normalize_storage_provider(raw: str) -> str:
    v = (raw or "").strip().lower()
    if v in ("s3", "aws", "minio"):
        return "s3"
    if v in ("distributed-fs", "distributed_fs", "seaweedfs", "seaweed", "dfs"):
        return "distributed-fs"
    raise RuntimeError(f"unsupported storage provider: {raw!r}")


def _load_s3_settings() -> S3Settings:
    return S3Settings(
        region=(_env("AWS_REGION", "") or _env("AWS_DEFAULT_REGION", "") or "us-east-1").strip(),
        bucket=(_env("AWS_BUCKET_NAME", "") or _env("S3_BUCKET", "")).strip(),
        access_key_id=_env("AWS_ACCESS_KEY_ID", "").strip(),
        secret_access_key=_env("AWS_SECRET_ACCESS_KEY", "").strip(),
        endpoint=_env("AWS_ENDPOINT", "").strip().rstrip("/"),
        force_path_style=_env_bool("AWS_FORCE_PATH_STYLE", False),
        public_url=_env("AWS_PUBLIC_URL", "").strip().rstrip("/"),
        prefix=_env("S3_PREFIX", "").strip(),
    )


def _load_distributed_fs_settings() -> DistributedFsSettings:
    filer_url = (_env("SEAWEEDFS_FILER_URL", "") or "http://localhost:8888").strip().rstrip("/")
    return DistributedFsSettings(
        master_url=(_env("SEAWEEDFS_MASTER_URL", "") or "http://localhost:9333").strip().rstrip("/"),
        filer_url=filer_url,
        # Without a dedicated public address the filer itself is served publicly.
        public_url=(_env("SEAWEEDFS_PUBLIC_URL", "") or filer_url).strip().rstrip("/"),
        prefix=_env("SEAWEEDFS_PREFIX", "").strip(),
        jwt_signing_key=_env("SEAWEEDFS_JWT_SIGNING_KEY", ""),
    )


def _load_storage_settings() -> StorageSettings:
    """
    Storage precedence:
      1) STORAGE_MODE (deployment/runtime truth)
      2) STORAGE_PROVIDER
      3) default distributed-fs
    """
    raw_mode = (_env("STORAGE_MODE", "") or "").strip()
    raw_provider = (_env("STORAGE_PROVIDER", "") or "").strip()
    provider = _normalize_storage_provider(raw_mode or raw_provider or "distributed-fs")

    backend: BackendSettings
    if provider == "s3":
        backend = _load_s3_settings()
    else:
        backend = _load_distributed_fs_settings()
    return StorageSettings(provider=provider, backend=backend)


def _load_media_settings() -> MediaSettings:
    max_upload_size = _env_int("MAX_UPLOAD_SIZE", 10 * MIB)
    concurrency = _env_int("INGEST_CONCURRENCY", 5)
    remote_timeout = _env_float("REMOTE_FETCH_TIMEOUT_SECONDS", 60.0)
    internal_timeout = _env_float("INTERNAL_FETCH_TIMEOUT_SECONDS", 10.0)
    threshold = _env_int("MULTIPART_THRESHOLD_BYTES", 10 * MIB)
    chunk = _env_int("MULTIPART_CHUNK_BYTES", 5 * MIB)
    presign_ttl = _env_int("PRESIGN_TTL_SECONDS", 900)

    return MediaSettings(
        max_upload_size=max(1, max_upload_size),
        ingest_concurrency=max(1, min(concurrency, 64)),
        remote_fetch_timeout_seconds=max(1.0, remote_timeout),
        internal_fetch_timeout_seconds=max(1.0, internal_timeout),
        multipart_threshold_bytes=max(S3_MIN_PART_BYTES, threshold),
        multipart_chunk_bytes=max(S3_MIN_PART_BYTES, chunk),
        presign_ttl_seconds=max(1, presign_ttl),
    )


def load_settings() -> Settings:
    return Settings(
        storage=_load_storage_settings(),
        media=_load_media_settings(),
        log_level=(_env("LOG_LEVEL", "") or "INFO").strip().upper(),
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return load_settings()

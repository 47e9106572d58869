from __future__ import annotations

import logging
from dataclasses import dataclass
from urllib.parse import quote

from core.errors import IOFailureError, MediaError, NotFoundError
from media.metadata import sniff_mime
from media.transform import transform_image
from media.transform_spec import TransformSpec
from providers.storage import StorageProvider

logger = logging.getLogger(__name__)

CACHE_PREFIX = "transforms"

CACHE_CONTROL_LONG_LIVED = "public, max-age=31536000"
CACHE_CONTROL_NO_STORE = "no-cache, no-store, must-revalidate"


def cache_key(source_ref: str, spec: TransformSpec) -> str:
    """
    Deterministic key for a resolved spec. The source ref is percent-encoded
    with no safe characters, so distinct refs never collide.
    """
    variant = (
        f"w{spec.width}_h{spec.height}"
        f"_f{spec.fit or ''}_c{spec.crop or ''}"
        f"_q{spec.quality}_{spec.format or ''}"
    )
    return f"{CACHE_PREFIX}/{quote(source_ref, safe='')}/{variant}"


@dataclass(frozen=True)
class TransformedArtifact:
    data: bytes
    cache_hit: bool
    cache_key: str
    content_type: str
    cache_control: str


def _read_all(storage: StorageProvider, ref: str) -> bytes:
    stream = storage.download(ref)
    try:
        return stream.read()
    except MediaError:
        raise
    except Exception as exc:
        raise IOFailureError(f"failed to read {ref}: {exc}") from exc
    finally:
        stream.close()


class TransformCache:
    """
    Cache-aside renditions stored next to the originals.

    Lookups that fail for any reason count as a miss; a failed write is logged
    and the freshly transformed bytes are still returned.
    """

    def __init__(self, storage: StorageProvider):
        self.storage = storage

    def lookup(self, key: str):
        try:
            return _read_all(self.storage, key)
        except NotFoundError:
            return None
        except Exception as exc:
            logger.warning("[Cache] lookup failed key=%s: %s", key, exc)
            return None

    def store(self, key: str, data: bytes) -> None:
        try:
            self.storage.upload_bytes(data, key)
        except Exception as exc:
            logger.warning("[Cache] write failed key=%s: %s", key, exc)

    def fetch(self, source_ref: str, spec: TransformSpec) -> TransformedArtifact:
        key = cache_key(source_ref, spec)
        control = CACHE_CONTROL_NO_STORE if spec.fresh else CACHE_CONTROL_LONG_LIVED

        if not spec.fresh:
            cached = self.lookup(key)
            if cached is not None:
                logger.info("[Cache] hit key=%s", key)
                return TransformedArtifact(
                    data=cached,
                    cache_hit=True,
                    cache_key=key,
                    content_type=sniff_mime(cached[:16]),
                    cache_control=control,
                )

        logger.info("[Cache] miss key=%s fresh=%s", key, spec.fresh)
        source = _read_all(self.storage, source_ref)
        data = transform_image(source, spec)
        self.store(key, data)
        return TransformedArtifact(
            data=data,
            cache_hit=False,
            cache_key=key,
            content_type=sniff_mime(data[:16]),
            cache_control=control,
        )

from __future__ import annotations

import io
import logging
from typing import Tuple

from PIL import Image, ImageOps, UnidentifiedImageError, features

from core.errors import DecodeFailureError, EncodeFailureError, UnsupportedFormatError
from media.transform_spec import OUTPUT_FORMATS, TransformSpec

logger = logging.getLogger(__name__)

DEFAULT_QUALITY = 85

FORMAT_MIME = {
    "jpeg": "image/jpeg",
    "png": "image/png",
    "webp": "image/webp",
}

_PIL_FORMAT = {"jpeg": "JPEG", "png": "PNG", "webp": "WEBP"}

# (x, y) centering used by cover crops, 0.0 = left/top edge.
_CENTERING = {
    "center": (0.5, 0.5),
    "top": (0.5, 0.0),
    "bottom": (0.5, 1.0),
    "left": (0.0, 0.5),
    "right": (1.0, 0.5),
}

_LANCZOS = Image.Resampling.LANCZOS


def target_size(src_w: int, src_h: int, width: int, height: int) -> Tuple[int, int]:
    """Fill in a missing dimension from the source aspect ratio (truncated, never below 1)."""
    if width and not height:
        height = max(1, int(src_h * width / src_w))
    elif height and not width:
        width = max(1, int(src_w * height / src_h))
    return width, height


def output_format(source_format: str, requested: str = None) -> str:
    if requested:
        return requested
    src = (source_format or "").lower()
    if src in ("jpeg", "mpo"):
        return "jpeg"
    if src in OUTPUT_FORMATS:
        return src
    return "jpeg"


def _decode(source: bytes) -> Image.Image:
    try:
        img = Image.open(io.BytesIO(source))
        img.load()
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, SyntaxError, ValueError) as exc:
        raise DecodeFailureError(f"failed to decode image: {exc}") from exc
    return img


def _normalize_mode(img: Image.Image) -> Image.Image:
    if img.mode in ("RGB", "RGBA", "L", "LA"):
        return img
    if img.mode.endswith("A") or "transparency" in img.info:
        return img.convert("RGBA")
    return img.convert("RGB")


def _resize(img: Image.Image, width: int, height: int, fit: str, crop: str = None) -> Image.Image:
    if fit == "cover":
        return ImageOps.fit(img, (width, height), method=_LANCZOS, centering=_CENTERING[crop or "center"])
    if fit == "fill":
        return img.resize((width, height), _LANCZOS)
    return ImageOps.contain(img, (width, height), method=_LANCZOS)


def crop_to_anchor(img: Image.Image, width: int, height: int, anchor: str) -> Image.Image:
    cur_w, cur_h = img.size
    cw = width if 0 < width <= cur_w else cur_w
    ch = height if 0 < height <= cur_h else cur_h
    if (cw, ch) == (cur_w, cur_h):
        return img

    cx, cy = _CENTERING[anchor]
    left = int((cur_w - cw) * cx)
    top = int((cur_h - ch) * cy)
    return img.crop((left, top, left + cw, top + ch))


def _encode(img: Image.Image, fmt: str, quality: int) -> bytes:
    if fmt not in _PIL_FORMAT:
        raise UnsupportedFormatError(f"unsupported output format: {fmt}")
    if fmt == "webp" and not features.check("webp"):
        raise UnsupportedFormatError("webp encoder is not available")

    buf = io.BytesIO()
    try:
        if fmt == "jpeg":
            if img.mode not in ("RGB", "L"):
                img = img.convert("RGB")
            img.save(buf, "JPEG", quality=quality or DEFAULT_QUALITY)
        elif fmt == "webp":
            img.save(buf, "WEBP", quality=quality or DEFAULT_QUALITY)
        else:
            img.save(buf, "PNG")
    except (OSError, ValueError, KeyError) as exc:
        raise EncodeFailureError(f"failed to encode {fmt}: {exc}") from exc
    return buf.getvalue()


def transform_image(source: bytes, spec: TransformSpec) -> bytes:
    """
    Apply resize / crop / re-encode. Pure: bytes in, bytes out.

    A spec with no width, height, crop or format returns `source` untouched
    so pass-through requests never pay a lossy re-encode.
    """
    if not spec.has_directive:
        return source

    img = _decode(source)
    source_format = img.format or ""
    img = _normalize_mode(img)

    if spec.width or spec.height:
        src_w, src_h = img.size
        width, height = target_size(src_w, src_h, spec.width, spec.height)
        img = _resize(img, width, height, spec.fit or "contain", spec.crop)

    if spec.crop:
        img = crop_to_anchor(img, spec.width, spec.height, spec.crop)

    fmt = output_format(source_format, spec.format)
    out = _encode(img, fmt, spec.quality)
    logger.debug("[Transform] %sx%s fit=%s crop=%s -> %s %s bytes", img.size[0], img.size[1], spec.fit, spec.crop, fmt, len(out))
    return out

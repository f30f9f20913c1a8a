"""
Image renditions.

An upload becomes three renditions: the untouched original, a WebP "web" copy
for the lightbox and a smaller WebP thumbnail for grids. Derived copies are fit
inside a square bound by their longest edge and are never enlarged.
"""

from __future__ import annotations

import logging
from datetime import datetime
from io import BytesIO
from typing import NamedTuple, Optional

from PIL import ExifTags, Image, ImageOps
from pillow_heif import register_heif_opener

# Teach Pillow to open HEIF/HEIC
register_heif_opener()

logger = logging.getLogger(__name__)

SUPPORTED_FORMATS = {"JPEG", "PNG", "WEBP", "TIFF", "HEIF"}

# Pillow format -> (extension used in the original's storage key, content type)
ORIGINAL_TYPES = {
    "JPEG": ("jpg", "image/jpeg"),
    "PNG": ("png", "image/png"),
    "WEBP": ("webp", "image/webp"),
    "TIFF": ("tiff", "image/tiff"),
    "HEIF": ("heic", "image/heic"),
}

WEB_CONTENT_TYPE = "image/webp"
WEBP_METHOD = 4

# Longest edge in pixels and WebP quality of the derived copies
WEB_MAX_DIMENSION = 1920
WEB_QUALITY = 88
THUMB_MAX_DIMENSION = 600
THUMB_QUALITY = 82

_PARSE_ERRORS = (OSError, SyntaxError, ValueError, Image.DecompressionBombError)


class InvalidImage(ValueError):
    """Raised when an upload is not one of the supported image formats."""


class Rendition(NamedTuple):
    data: bytes
    width: int
    height: int
    content_type: str

    @property
    def size(self) -> int:
        return len(self.data)


class RenditionSet(NamedTuple):
    original: Rendition
    web: Rendition
    thumbnail: Rendition
    original_ext: str


class CaptureMetadata(NamedTuple):
    camera_make: Optional[str] = None
    camera_model: Optional[str] = None
    lens_model: Optional[str] = None
    iso: Optional[int] = None
    aperture: Optional[float] = None
    shutter_speed: Optional[float] = None
    focal_length: Optional[float] = None
    date_taken: Optional[str] = None

    def to_dict(self) -> dict:
        return {k: v for k, v in self._asdict().items() if v is not None}


def detect_format(data: bytes) -> Optional[str]:
    try:
        with Image.open(BytesIO(data)) as img:
            fmt = img.format
            img.verify()
    except _PARSE_ERRORS:
        return None
    return fmt


def validate(data: bytes) -> bool:
    """True only for parseable JPEG, PNG, WebP, TIFF and HEIF/HEIC buffers."""
    if not data:
        return False
    return detect_format(data) in SUPPORTED_FORMATS


def fit_inside(width: int, height: int, bound: int) -> tuple[int, int]:
    """Scale (width, height) so the longest edge is at most `bound`, never upscaling."""
    longest = max(width, height)
    if longest <= bound:
        return width, height
    ratio = bound / float(longest)
    if width >= height:
        return bound, max(1, round(height * ratio))
    return max(1, round(width * ratio)), bound


def _web_ready(img: Image.Image) -> Image.Image:
    # WebP holds RGB or RGBA; keep transparency where the source has it
    if img.mode in ("RGB", "RGBA"):
        return img
    has_alpha = img.mode in ("LA", "PA") or (img.mode == "P" and "transparency" in img.info)
    return img.convert("RGBA" if has_alpha else "RGB")


def _derive(img: Image.Image, bound: int, quality: int) -> Rendition:
    size = fit_inside(img.width, img.height, bound)
    resized = img.resize(size, Image.Resampling.LANCZOS) if size != img.size else img
    out = BytesIO()
    resized.save(out, format="WEBP", quality=quality, method=WEBP_METHOD)
    return Rendition(out.getvalue(), resized.width, resized.height, WEB_CONTENT_TYPE)


def derive_renditions(
    data: bytes,
    web_bound: int = WEB_MAX_DIMENSION,
    web_quality: int = WEB_QUALITY,
    thumb_bound: int = THUMB_MAX_DIMENSION,
    thumb_quality: int = THUMB_QUALITY,
) -> RenditionSet:
    """
    Build the original/web/thumbnail renditions of an uploaded image.

    The original keeps the uploaded bytes as-is; only its dimensions are read,
    after applying the EXIF orientation so they match what viewers display.
    """
    try:
        with Image.open(BytesIO(data)) as src:
            fmt = src.format
            if fmt not in SUPPORTED_FORMATS:
                raise InvalidImage(f"Unsupported image format: {fmt}")
            # Respect EXIF orientation so portrait shots are not rendered sideways
            img = ImageOps.exif_transpose(src)
            img = _web_ready(img)
            web = _derive(img, web_bound, web_quality)
            thumbnail = _derive(img, thumb_bound, thumb_quality)
            width, height = img.size
    except _PARSE_ERRORS as e:
        raise InvalidImage(f"Could not decode image: {e}") from e

    ext, content_type = ORIGINAL_TYPES[fmt]
    original = Rendition(data, width, height, content_type)
    return RenditionSet(original, web, thumbnail, ext)


# ==========
# EXIF
# ==========
def _text(value) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, bytes):
        value = value.decode("utf-8", "ignore")
    value = str(value).strip("\x00 ").strip()
    return value or None


def _number(value) -> Optional[float]:
    if value is None:
        return None
    if isinstance(value, (tuple, list)):
        value = value[0] if value else None
        if value is None:
            return None
    try:
        number = float(value)
    except (TypeError, ValueError, ZeroDivisionError):
        return None
    if number != number:  # NaN from a 0-denominator rational
        return None
    return round(number, 6)


def _exif_date(value) -> Optional[str]:
    # EXIF "YYYY:MM:DD HH:MM:SS"
    text = _text(value)
    if not text:
        return None
    try:
        return datetime.strptime(text, "%Y:%m:%d %H:%M:%S").isoformat()
    except ValueError:
        return None


def extract_capture_metadata(data: bytes) -> Optional[CaptureMetadata]:
    """
    Best-effort read of camera, lens and exposure settings.

    Returns None when the image carries no usable EXIF or cannot be parsed;
    metadata problems never fail an upload.
    """
    try:
        with Image.open(BytesIO(data)) as img:
            exif = img.getexif()
        if not exif:
            return None
        sub = exif.get_ifd(ExifTags.IFD.Exif)
        tags = ExifTags.Base

        iso = _number(sub.get(tags.ISOSpeedRatings))
        meta = CaptureMetadata(
            camera_make=_text(exif.get(tags.Make)),
            camera_model=_text(exif.get(tags.Model)),
            lens_model=_text(sub.get(tags.LensModel)),
            iso=int(iso) if iso is not None else None,
            aperture=_number(sub.get(tags.FNumber)),
            shutter_speed=_number(sub.get(tags.ExposureTime)),
            focal_length=_number(sub.get(tags.FocalLength)),
            date_taken=_exif_date(sub.get(tags.DateTimeOriginal) or exif.get(tags.DateTime)),
        )
    except Exception as e:
        logger.debug("EXIF extraction skipped: %s", e)
        return None

    return meta if meta.to_dict() else None

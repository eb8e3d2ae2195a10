import logging
import posixpath
from typing import Dict

from django.core import signing
from django.core.files.base import ContentFile
from django.core.files.storage import default_storage
from django.urls import reverse
from django.utils import timezone

from label_ocr import OCRFailure
from label_ocr.utils.image_utils import ImageUtils

from counts.conf import stocktake_setting
from .errors import PhotoUnavailableError


logger = logging.getLogger(__name__)

ORIGINAL = "original"
MEDIUM = "medium"
THUMBNAIL = "thumb"
VARIANTS = (ORIGINAL, MEDIUM, THUMBNAIL)

_SIGNING_SALT = "counts.photos"


def _variant_path(session_id: int, variant: str, filename: str) -> str:
    return posixpath.join(str(session_id), variant, filename)


def store_photo_variants(session_id: int, capture_sequence: int, data: bytes) -> Dict[str, str]:
    """
    Save original, medium and thumbnail JPEGs for one capture.

    Returns a dict of variant name to storage path. The original keeps the
    uploaded bytes untouched so a later OCR rerun reads full resolution.
    """
    try:
        image = ImageUtils.load_image_bytes(data)
    except OCRFailure as exc:
        raise PhotoUnavailableError(f"Uploaded photo could not be decoded: {exc}") from exc

    filename = f"{capture_sequence}_{timezone.now():%Y%m%d%H%M%S%f}.jpg"
    quality = int(stocktake_setting("PHOTO_JPEG_QUALITY"))
    payloads = {
        ORIGINAL: data,
        MEDIUM: ImageUtils.to_jpeg_bytes(
            ImageUtils.resize_longest_side(image, int(stocktake_setting("PHOTO_MEDIUM_LONGEST_SIDE"))),
            quality=quality,
        ),
        THUMBNAIL: ImageUtils.to_jpeg_bytes(
            ImageUtils.resize_longest_side(image, int(stocktake_setting("PHOTO_THUMBNAIL_LONGEST_SIDE"))),
            quality=quality,
        ),
    }
    paths = {}
    for variant, payload in payloads.items():
        paths[variant] = default_storage.save(
            _variant_path(session_id, variant, filename), ContentFile(payload)
        )
    logger.debug("Stored photo variants for session %s seq %s", session_id, capture_sequence)
    return paths


def discard_photo_variants(paths: Dict[str, str]) -> None:
    """Delete stored variants of a capture that was never recorded. Missing files are ignored."""
    for path in paths.values():
        try:
            default_storage.delete(path)
        except OSError:
            logger.warning("Could not delete orphaned photo %s", path, exc_info=True)


def resolve_original_path(path: str) -> str:
    """Map a medium or thumbnail path back to the full-resolution original."""
    parts = path.split("/")
    if len(parts) >= 3 and parts[-2] in VARIANTS:
        parts[-2] = ORIGINAL
    return "/".join(parts)


def read_photo(path: str) -> bytes:
    if not path:
        raise PhotoUnavailableError("Roll has no photo.")
    try:
        with default_storage.open(path, "rb") as fh:
            return fh.read()
    except (FileNotFoundError, OSError) as exc:
        raise PhotoUnavailableError(f"Photo {path} could not be read: {exc}") from exc


def signed_photo_url(path: str, variant: str = MEDIUM) -> str:
    """Time-bounded URL for a stored photo; the token carries the storage path."""
    parts = path.split("/")
    if len(parts) >= 3 and parts[-2] in VARIANTS and variant in VARIANTS:
        parts[-2] = variant
    token = signing.dumps("/".join(parts), salt=_SIGNING_SALT)
    return reverse("photo-download", kwargs={"token": token})


def unsign_photo_token(token: str) -> str:
    """Return the storage path for a token; expired or tampered tokens raise PhotoUnavailableError."""
    max_age = int(stocktake_setting("PHOTO_SIGNED_URL_MAX_AGE"))
    try:
        return signing.loads(token, salt=_SIGNING_SALT, max_age=max_age)
    except signing.SignatureExpired as exc:
        raise PhotoUnavailableError("Photo link has expired.") from exc
    except signing.BadSignature as exc:
        raise PhotoUnavailableError("Photo link is invalid.") from exc

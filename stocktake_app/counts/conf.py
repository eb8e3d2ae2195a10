from decimal import Decimal
from typing import Any, Dict

from django.conf import settings


DEFAULTS: Dict[str, Any] = {
    "HIGH_CONFIDENCE_MIN": 85,
    "MEDIUM_CONFIDENCE_MIN": 60,
    "DUPLICATE_METERS_TOLERANCE": Decimal("0.5"),
    "SESSION_NUMBER_PREFIX": "CS",
    "SESSION_NUMBER_MAX_ATTEMPTS": 5,
    "SESSION_IDLE_TIMEOUT_MINUTES": 30,
    "REVIEW_PAGE_SIZE": 50,
    "REVIEW_MAX_PAGE_SIZE": 200,
    "PHOTO_SIGNED_URL_MAX_AGE": 3600,
    "PHOTO_MEDIUM_LONGEST_SIDE": 1280,
    "PHOTO_THUMBNAIL_LONGEST_SIDE": 320,
    "PHOTO_JPEG_QUALITY": 80,
    "PREPROCESSING_ENABLED": True,
    "PREPROCESSING_GRAYSCALE": True,
    "PREPROCESSING_CONTRAST_LEVEL": 20,
    "PREPROCESSING_SHARPEN_LEVEL": 30,
    "OCR_ENGINE": "tesseract",
    "OCR_REMOTE_URL": "",
    "OCR_REMOTE_API_KEY": "",
    "OCR_RERUN_ASYNC": True,
    "OCR_RERUN_STALE_SECONDS": 300,
}


def stocktake_setting(name: str) -> Any:
    """Read one STOCKTAKE setting, falling back to the built-in default."""
    if name not in DEFAULTS:
        raise KeyError(f"Unknown STOCKTAKE setting: {name}")
    overrides = getattr(settings, "STOCKTAKE", None) or {}
    return overrides.get(name, DEFAULTS[name])

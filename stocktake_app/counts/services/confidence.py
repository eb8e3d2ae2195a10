import math
from typing import Optional

from counts.conf import stocktake_setting
from counts.models import ConfidenceLevel


LEVEL_ORDER = {
    ConfidenceLevel.LOW: 0,
    ConfidenceLevel.MEDIUM: 1,
    ConfidenceLevel.HIGH: 2,
}


def classify_confidence(score: Optional[float]) -> ConfidenceLevel:
    """
    Map a 0-100 OCR confidence score to a level.

    >= HIGH_CONFIDENCE_MIN is high, >= MEDIUM_CONFIDENCE_MIN is medium, anything
    lower (or no score at all) is low. Only the latest score counts.
    """
    if score is None:
        return ConfidenceLevel.LOW
    try:
        value = float(score)
    except (TypeError, ValueError):
        return ConfidenceLevel.LOW
    if math.isnan(value):
        return ConfidenceLevel.LOW
    if value >= stocktake_setting("HIGH_CONFIDENCE_MIN"):
        return ConfidenceLevel.HIGH
    if value >= stocktake_setting("MEDIUM_CONFIDENCE_MIN"):
        return ConfidenceLevel.MEDIUM
    return ConfidenceLevel.LOW

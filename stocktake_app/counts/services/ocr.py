import logging
from typing import Optional

from label_ocr import LabelOCREngine, LabelOCRResult, build_engine
from label_ocr.config import OCRConstants
from label_ocr.utils.image_preprocessor import LabelImagePreprocessor
from label_ocr.utils.image_utils import ImageUtils

from counts.conf import stocktake_setting


logger = logging.getLogger(__name__)


def build_ocr_engine() -> LabelOCREngine:
    """Engine selected by the OCR_ENGINE setting."""
    name = stocktake_setting("OCR_ENGINE")
    if name == "remote":
        return build_engine(
            "remote",
            endpoint=stocktake_setting("OCR_REMOTE_URL"),
            api_key=stocktake_setting("OCR_REMOTE_API_KEY") or None,
        )
    return build_engine(name)


def build_preprocessor() -> Optional[LabelImagePreprocessor]:
    if not stocktake_setting("PREPROCESSING_ENABLED"):
        return None
    return LabelImagePreprocessor(
        grayscale=bool(stocktake_setting("PREPROCESSING_GRAYSCALE")),
        contrast_level=int(stocktake_setting("PREPROCESSING_CONTRAST_LEVEL")),
        sharpen_level=int(stocktake_setting("PREPROCESSING_SHARPEN_LEVEL")),
    )


def recognize_photo_bytes(
    data: bytes,
    engine: LabelOCREngine,
    preprocessor: Optional[LabelImagePreprocessor] = None,
) -> LabelOCRResult:
    """Decode, optionally preprocess, and read one label photo. Raises OCRFailure."""
    image = ImageUtils.load_image_bytes(data, target_longest_side=OCRConstants.IMAGE_LONGEST_SIDE)
    if preprocessor is not None:
        image = preprocessor.preprocess(image)
    result = engine.recognize(image)
    logger.debug(
        "OCR %s read label in %.0f ms (confidence %.1f)",
        engine.name, result.processing_ms, result.confidence_score,
    )
    return result

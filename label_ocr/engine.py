import logging
import time
from dataclasses import dataclass
from typing import Optional

from PIL import Image

from label_ocr.label_parser import LabelFields, is_likely_label, parse_label_text


logger = logging.getLogger(__name__)


class OCRFailure(Exception):
    """The OCR engine could not produce a reading for an image."""


@dataclass
class LabelOCRResult:
    quality: Optional[str]
    color: Optional[str]
    lot_number: Optional[str]
    meters: Optional[float]
    raw_text: str
    confidence_score: float
    is_likely_label: bool
    processing_ms: float = 0.0


class LabelOCREngine:
    """
    Base class for label readers.

    Subclasses implement `_read_text`, returning the raw text and a 0-100
    confidence. Engines hold a single stateful worker (a tesseract process
    config, a loaded model, an HTTP session) and are not safe to call from
    several threads at once. Call `release()` when a batch is finished.
    """

    name = "base"

    def _read_text(self, image: Image.Image):
        raise NotImplementedError

    def recognize(self, image: Image.Image) -> LabelOCRResult:
        t0 = time.perf_counter()
        try:
            raw_text, confidence = self._read_text(image)
        except OCRFailure:
            raise
        except Exception as exc:
            logger.warning("OCR engine %s failed: %s", self.name, exc)
            raise OCRFailure(str(exc)) from exc
        fields = parse_label_text(raw_text)
        return build_result(
            raw_text,
            confidence,
            fields,
            processing_ms=(time.perf_counter() - t0) * 1000.0,
        )

    def release(self) -> None:
        """Free the worker resource. Safe to call more than once."""


def build_result(
    raw_text: str,
    confidence: float,
    fields: LabelFields,
    processing_ms: float = 0.0,
) -> LabelOCRResult:
    score = max(0.0, min(100.0, float(confidence)))
    return LabelOCRResult(
        quality=fields.quality,
        color=fields.color,
        lot_number=fields.lot_number,
        meters=fields.meters,
        raw_text=raw_text or "",
        confidence_score=round(score, 2),
        is_likely_label=is_likely_label(raw_text, fields),
        processing_ms=processing_ms,
    )

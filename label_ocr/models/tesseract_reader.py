import logging
from typing import List, Optional, Tuple

import pytesseract
from pytesseract import Output
from PIL import Image

from label_ocr.config import OCRConstants
from label_ocr.engine import LabelOCREngine, OCRFailure


logger = logging.getLogger(__name__)


class TesseractLabelEngine(LabelOCREngine):
    name = "tesseract"

    def __init__(
        self,
        lang: str = OCRConstants.TESSERACT_LANG,
        config: str = OCRConstants.TESSERACT_CONFIG,
        timeout: Optional[int] = OCRConstants.TESSERACT_TIMEOUT_SECONDS,
    ) -> None:
        self.lang = lang
        self.config = config
        self.timeout = timeout

    def _read_text(self, image: Image.Image) -> Tuple[str, float]:
        try:
            data = pytesseract.image_to_data(
                image.convert("RGB"),
                lang=self.lang,
                config=self.config,
                output_type=Output.DICT,
                timeout=self.timeout,
            )
        except (pytesseract.TesseractError, pytesseract.TesseractNotFoundError, RuntimeError) as exc:
            raise OCRFailure(f"tesseract failed: {exc}") from exc

        lines: List[str] = []
        current_key = None
        current_words: List[str] = []
        confidences: List[float] = []
        for idx, word in enumerate(data.get("text", [])):
            word = (word or "").strip()
            if not word:
                continue
            key = (data["block_num"][idx], data["par_num"][idx], data["line_num"][idx])
            if key != current_key and current_words:
                lines.append(" ".join(current_words))
                current_words = []
            current_key = key
            current_words.append(word)
            try:
                conf = float(data["conf"][idx])
            except (TypeError, ValueError):
                continue
            if conf >= 0:
                confidences.append(conf)
        if current_words:
            lines.append(" ".join(current_words))

        confidence = sum(confidences) / len(confidences) if confidences else 0.0
        logger.debug("tesseract read %d lines, mean confidence %.1f", len(lines), confidence)
        return "\n".join(lines), confidence

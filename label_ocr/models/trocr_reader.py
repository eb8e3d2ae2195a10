import logging
import math
from typing import List, Optional, Tuple

import numpy as np
import torch
from PIL import Image
from transformers import TrOCRProcessor, VisionEncoderDecoderModel

from label_ocr.config import OCRConstants
from label_ocr.engine import LabelOCREngine


logger = logging.getLogger(__name__)


def split_text_lines(
    image: Image.Image,
    ink_ratio: float = OCRConstants.TROCR_LINE_INK_RATIO,
    min_height: int = OCRConstants.TROCR_MIN_LINE_HEIGHT,
    padding: int = OCRConstants.TROCR_LINE_PADDING,
) -> List[Tuple[int, int]]:
    """
    Find horizontal text bands using a row-wise ink projection.

    TrOCR reads one line at a time, so a multi-line label is cut into
    (top, bottom) row ranges first.
    """
    gray = np.asarray(image.convert("L"), dtype=np.float32)
    if gray.size == 0:
        return []
    threshold = gray.mean() - gray.std() * 0.5
    ink = (gray < threshold).mean(axis=1)
    rows = ink > ink_ratio

    bands: List[Tuple[int, int]] = []
    start: Optional[int] = None
    for y, has_ink in enumerate(rows):
        if has_ink and start is None:
            start = y
        elif not has_ink and start is not None:
            if y - start >= min_height:
                bands.append((start, y))
            start = None
    if start is not None and len(rows) - start >= min_height:
        bands.append((start, len(rows)))

    height = gray.shape[0]
    return [(max(0, top - padding), min(height, bottom + padding)) for top, bottom in bands]


class TrOCRLabelEngine(LabelOCREngine):
    name = "trocr"

    def __init__(self, device: Optional[str] = None, model_id: str = OCRConstants.TROCR_MODEL_ID) -> None:
        self.device = device or ("cuda" if torch.cuda.is_available() else "cpu")
        self.model_id = model_id
        self._processor: Optional[TrOCRProcessor] = None
        self._model: Optional[VisionEncoderDecoderModel] = None

    def _init(self) -> None:
        if self._processor is None or self._model is None:
            logger.info("Loading TrOCR model %s on %s", self.model_id, self.device)
            self._processor = TrOCRProcessor.from_pretrained(self.model_id)
            self._model = VisionEncoderDecoderModel.from_pretrained(self.model_id).to(self.device)
            self._model.eval()

    def _read_line(self, line_image: Image.Image) -> Tuple[str, float]:
        assert self._processor is not None
        assert self._model is not None
        pixel_values = self._processor(images=line_image, return_tensors="pt").pixel_values.to(self.device)
        with torch.no_grad():
            generated = self._model.generate(
                pixel_values,
                max_new_tokens=OCRConstants.TROCR_MAX_NEW_TOKENS,
                output_scores=True,
                return_dict_in_generate=True,
            )
        text = self._processor.batch_decode(generated.sequences, skip_special_tokens=True)[0]
        transition_scores = self._model.compute_transition_scores(
            generated.sequences, generated.scores, normalize_logits=True
        )
        log_probs = transition_scores[0].float().cpu().numpy()
        log_probs = log_probs[np.isfinite(log_probs)]
        confidence = float(math.exp(log_probs.mean())) * 100.0 if log_probs.size else 0.0
        return text.strip(), confidence

    def _read_text(self, image: Image.Image) -> Tuple[str, float]:
        self._init()
        rgb = image.convert("RGB")
        bands = split_text_lines(rgb) or [(0, rgb.height)]
        lines: List[str] = []
        confidences: List[float] = []
        for top, bottom in bands:
            text, confidence = self._read_line(rgb.crop((0, top, rgb.width, bottom)))
            if text:
                lines.append(text)
                confidences.append(confidence)
        confidence = sum(confidences) / len(confidences) if confidences else 0.0
        return "\n".join(lines), confidence

    def release(self) -> None:
        if self._model is not None:
            logger.info("Releasing TrOCR model %s", self.model_id)
        self._model = None
        self._processor = None
        if torch.cuda.is_available():
            torch.cuda.empty_cache()

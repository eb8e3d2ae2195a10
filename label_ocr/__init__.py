from typing import Any

from .engine import LabelOCREngine, LabelOCRResult, OCRFailure
from .label_parser import LabelFields, is_likely_label, parse_label_text


def build_engine(name: str, **kwargs: Any) -> LabelOCREngine:
    """Create an OCR engine by name: "tesseract", "trocr" or "remote"."""
    if name == "tesseract":
        from .models.tesseract_reader import TesseractLabelEngine
        return TesseractLabelEngine(**kwargs)
    if name == "trocr":
        from .models.trocr_reader import TrOCRLabelEngine
        return TrOCRLabelEngine(**kwargs)
    if name == "remote":
        from .models.remote_reader import RemoteLabelEngine
        return RemoteLabelEngine(**kwargs)
    raise ValueError(f"Unsupported OCR engine: {name}")


__all__ = [
    "LabelFields",
    "LabelOCREngine",
    "LabelOCRResult",
    "OCRFailure",
    "build_engine",
    "is_likely_label",
    "parse_label_text",
]

from .tesseract_reader import TesseractLabelEngine
from .remote_reader import RemoteLabelEngine

# TrOCRLabelEngine pulls in torch/transformers; import it from
# label_ocr.models.trocr_reader when it is needed.

__all__ = [
    "TesseractLabelEngine",
    "RemoteLabelEngine",
]

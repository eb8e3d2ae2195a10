import logging
from typing import Optional

from PIL import Image, ImageEnhance, ImageFilter, ImageOps

from label_ocr.config import OCRConstants
from label_ocr.utils.image_utils import ImageUtils


logger = logging.getLogger(__name__)


class LabelImagePreprocessor:
    """
    Grayscale, contrast and sharpen steps applied before OCR.

    Levels are 0-100 percentages. A failing step never aborts the read:
    `preprocess` falls back to the unprocessed image.
    """

    def __init__(
        self,
        grayscale: bool = OCRConstants.PREPROCESS_GRAYSCALE,
        contrast_level: int = OCRConstants.PREPROCESS_CONTRAST_LEVEL,
        sharpen_level: int = OCRConstants.PREPROCESS_SHARPEN_LEVEL,
        longest_side: Optional[int] = OCRConstants.IMAGE_LONGEST_SIDE,
    ) -> None:
        self.grayscale = grayscale
        self.contrast_level = max(0, min(100, int(contrast_level)))
        self.sharpen_level = max(0, min(100, int(sharpen_level)))
        self.longest_side = longest_side

    def _apply(self, image: Image.Image) -> Image.Image:
        img = image
        if self.longest_side:
            img = ImageUtils.resize_longest_side(img, self.longest_side)
        if self.grayscale:
            img = ImageOps.grayscale(img)
        if self.contrast_level > 0:
            img = ImageOps.autocontrast(img, cutoff=1)
            img = ImageEnhance.Contrast(img).enhance(1.0 + self.contrast_level / 100.0)
        if self.sharpen_level > 0:
            img = img.filter(
                ImageFilter.UnsharpMask(radius=2, percent=self.sharpen_level * 3, threshold=3)
            )
        return img.convert("RGB")

    def preprocess(self, image: Image.Image) -> Image.Image:
        try:
            return self._apply(image)
        except Exception:
            logger.warning("Label preprocessing failed; using the unprocessed image", exc_info=True)
            return image

import hashlib
import io
from typing import Optional

from PIL import Image, ImageOps, UnidentifiedImageError

from label_ocr.engine import OCRFailure


class ImageUtils:
    """
    Image helpers shared by the capture, storage and OCR paths.

    All methods are stateless.
    """

    @staticmethod
    def _get_lanczos_resample() -> int:
        try:
            return Image.Resampling.LANCZOS  # Pillow >= 10
        except AttributeError:
            return getattr(Image, "LANCZOS", None) or getattr(Image, "BICUBIC", 0)

    @staticmethod
    def resize_longest_side(image: Image.Image, target_longest_side: int) -> Image.Image:
        """Shrink so the longest side is at most `target_longest_side`. Never upscales."""
        width, height = image.size
        longest_side = max(width, height)
        if longest_side <= target_longest_side:
            return image
        scale = target_longest_side / float(longest_side)
        new_width = max(1, int(round(width * scale)))
        new_height = max(1, int(round(height * scale)))
        return image.resize((new_width, new_height), resample=ImageUtils._get_lanczos_resample())

    @staticmethod
    def load_image_bytes(data: bytes, target_longest_side: Optional[int] = None) -> Image.Image:
        """
        Decode image bytes to an RGB image, honouring EXIF orientation.

        Phone cameras store rotation in EXIF, so labels come out sideways without it.
        """
        try:
            img = Image.open(io.BytesIO(data))
            img = ImageOps.exif_transpose(img)
            img = img.convert("RGB")
        except (UnidentifiedImageError, OSError, Image.DecompressionBombError) as exc:
            raise OCRFailure(f"unreadable image: {exc}") from exc
        if target_longest_side is not None:
            img = ImageUtils.resize_longest_side(img, target_longest_side)
        return img

    @staticmethod
    def to_jpeg_bytes(image: Image.Image, quality: int = 85) -> bytes:
        buf = io.BytesIO()
        image.convert("RGB").save(buf, format="JPEG", quality=quality, optimize=True)
        return buf.getvalue()

    @staticmethod
    def sha256_bytes(data: bytes) -> str:
        return hashlib.sha256(data).hexdigest()

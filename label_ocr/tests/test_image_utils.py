import io
import unittest
from unittest.mock import patch

from PIL import Image

from label_ocr.engine import OCRFailure
from label_ocr.utils.image_preprocessor import LabelImagePreprocessor
from label_ocr.utils.image_utils import ImageUtils


class ImageUtilsTests(unittest.TestCase):
    def test_resize_never_upscales(self):
        img = Image.new("RGB", (100, 50))
        self.assertIs(ImageUtils.resize_longest_side(img, 200), img)
        self.assertEqual(ImageUtils.resize_longest_side(img, 40).size, (40, 20))

    def test_load_image_bytes(self):
        buf = io.BytesIO()
        Image.new("L", (300, 100)).save(buf, format="PNG")
        img = ImageUtils.load_image_bytes(buf.getvalue(), target_longest_side=150)
        self.assertEqual(img.mode, "RGB")
        self.assertEqual(img.size, (150, 50))

    def test_unreadable_bytes(self):
        with self.assertRaises(OCRFailure):
            ImageUtils.load_image_bytes(b"definitely not an image")

    def test_sha256(self):
        self.assertEqual(
            ImageUtils.sha256_bytes(b"abc"),
            "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad",
        )


class LabelImagePreprocessorTests(unittest.TestCase):
    def test_output_is_rgb_and_bounded(self):
        pre = LabelImagePreprocessor(longest_side=64)
        out = pre.preprocess(Image.new("RGB", (256, 128), (120, 130, 140)))
        self.assertEqual(out.mode, "RGB")
        self.assertEqual(out.size, (64, 32))

    def test_levels_are_clamped(self):
        pre = LabelImagePreprocessor(contrast_level=250, sharpen_level=-5)
        self.assertEqual(pre.contrast_level, 100)
        self.assertEqual(pre.sharpen_level, 0)

    def test_failure_falls_back_to_original(self):
        img = Image.new("RGB", (32, 32))
        pre = LabelImagePreprocessor()
        with patch.object(pre, "_apply", side_effect=ValueError("bad pixels")):
            self.assertIs(pre.preprocess(img), img)

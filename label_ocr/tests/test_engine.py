import unittest

from PIL import Image

from label_ocr import build_engine
from label_ocr.engine import LabelOCREngine, OCRFailure, build_result
from label_ocr.label_parser import LabelFields


class StaticEngine(LabelOCREngine):
    name = "static"

    def __init__(self, text="", confidence=0.0, error=None):
        self.text = text
        self.confidence = confidence
        self.error = error

    def _read_text(self, image):
        if self.error is not None:
            raise self.error
        return self.text, self.confidence


class LabelOCREngineTests(unittest.TestCase):
    def setUp(self):
        self.image = Image.new("RGB", (40, 20), "white")

    def test_recognize_parses_text(self):
        engine = StaticEngine("QUALITY: P200\nCOLOR: NAVY\nLOT: L100\n120.5 M", 91.234)
        result = engine.recognize(self.image)
        self.assertEqual(result.quality, "P200")
        self.assertEqual(result.meters, 120.5)
        self.assertEqual(result.confidence_score, 91.23)
        self.assertTrue(result.is_likely_label)
        self.assertGreaterEqual(result.processing_ms, 0.0)

    def test_unexpected_errors_become_ocr_failure(self):
        engine = StaticEngine(error=RuntimeError("worker crashed"))
        with self.assertRaises(OCRFailure):
            engine.recognize(self.image)

    def test_confidence_is_clamped(self):
        self.assertEqual(build_result("x", 140, LabelFields()).confidence_score, 100.0)
        self.assertEqual(build_result("x", -3, LabelFields()).confidence_score, 0.0)

    def test_release_is_idempotent(self):
        engine = StaticEngine()
        engine.release()
        engine.release()


class BuildEngineTests(unittest.TestCase):
    def test_known_engines(self):
        self.assertEqual(build_engine("tesseract").name, "tesseract")
        self.assertEqual(build_engine("remote", endpoint="http://ocr.local/read").name, "remote")

    def test_unknown_engine(self):
        with self.assertRaises(ValueError):
            build_engine("crystal-ball")

    def test_remote_needs_endpoint(self):
        with self.assertRaises(ValueError):
            build_engine("remote", endpoint="")

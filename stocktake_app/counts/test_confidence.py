from django.test import SimpleTestCase, override_settings

from .models import ConfidenceLevel
from .services.confidence import LEVEL_ORDER, classify_confidence


class ClassifyConfidenceTests(SimpleTestCase):
    def test_thresholds(self):
        self.assertEqual(classify_confidence(92), ConfidenceLevel.HIGH)
        self.assertEqual(classify_confidence(85), ConfidenceLevel.HIGH)
        self.assertEqual(classify_confidence(84.99), ConfidenceLevel.MEDIUM)
        self.assertEqual(classify_confidence(60), ConfidenceLevel.MEDIUM)
        self.assertEqual(classify_confidence(59.9), ConfidenceLevel.LOW)
        self.assertEqual(classify_confidence(0), ConfidenceLevel.LOW)

    def test_missing_or_garbage_score_is_low(self):
        self.assertEqual(classify_confidence(None), ConfidenceLevel.LOW)
        self.assertEqual(classify_confidence(float("nan")), ConfidenceLevel.LOW)
        self.assertEqual(classify_confidence("n/a"), ConfidenceLevel.LOW)

    def test_monotonic(self):
        scores = [x / 2 for x in range(0, 201)]
        levels = [LEVEL_ORDER[classify_confidence(s)] for s in scores]
        self.assertEqual(levels, sorted(levels))

    @override_settings(STOCKTAKE={"HIGH_CONFIDENCE_MIN": 95, "MEDIUM_CONFIDENCE_MIN": 70})
    def test_thresholds_follow_settings(self):
        self.assertEqual(classify_confidence(92), ConfidenceLevel.MEDIUM)
        self.assertEqual(classify_confidence(65), ConfidenceLevel.LOW)

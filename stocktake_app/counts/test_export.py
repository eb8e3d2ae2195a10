import csv
import io
from decimal import Decimal

from django.test import TestCase

from .models import ConfidenceLevel
from .services.export import EXPORT_COLUMNS, export_session_csv
from .testing import add_roll, make_session


class ExportTests(TestCase):
    def test_effective_values_in_capture_order(self):
        session = make_session()
        add_roll(session, capture_sequence=2, counter_meters=Decimal("10.00"), is_manual_entry=True)
        add_roll(
            session, capture_sequence=1, counter_meters=Decimal("10.00"), admin_meters=Decimal("12.50"),
            ocr_confidence_score=91.5, ocr_confidence_level=ConfidenceLevel.HIGH,
        )
        rows = list(csv.reader(io.StringIO(export_session_csv(session))))
        self.assertEqual(rows[0], EXPORT_COLUMNS)
        first = dict(zip(EXPORT_COLUMNS, rows[1]))
        second = dict(zip(EXPORT_COLUMNS, rows[2]))
        self.assertEqual(first["capture_sequence"], "1")
        self.assertEqual(first["meters"], "12.50")
        self.assertEqual(first["ocr_confidence_level"], "high")
        self.assertEqual(first["is_manual_entry"], "no")
        self.assertEqual(second["meters"], "10.00")
        self.assertEqual(second["ocr_confidence_score"], "")
        self.assertEqual(second["is_manual_entry"], "yes")

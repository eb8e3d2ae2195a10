from decimal import Decimal
from types import SimpleNamespace

from django.test import SimpleTestCase
from prometheus_client import REGISTRY

from .metrics import (
    record_bulk_approve,
    record_reconciliation,
    record_rerun_progress,
    record_review_action,
    record_roll_ingested,
    safe_record_rerun_progress,
)


def sample(name, labels=None):
    return REGISTRY.get_sample_value(name, labels or {}) or 0.0


class MetricsRecordingTests(SimpleTestCase):
    def test_roll_ingested_by_level(self):
        before = sample("stocktake_rolls_ingested_total", {"confidence_level": "high"})
        record_roll_ingested("high", 12.5)
        record_roll_ingested(None)
        self.assertEqual(sample("stocktake_rolls_ingested_total", {"confidence_level": "high"}), before + 1)
        self.assertEqual(sample("stocktake_ocr_processing_ms"), 12.5)

    def test_review_and_bulk(self):
        before = sample("stocktake_bulk_approved_rolls_total")
        record_bulk_approve(3)
        record_bulk_approve(0)
        record_review_action("approve")
        self.assertEqual(sample("stocktake_bulk_approved_rolls_total"), before + 3)

    def test_rerun_progress(self):
        job = SimpleNamespace(id=77, current=2, total=4)
        record_rerun_progress(job, 5, False)
        self.assertEqual(sample("stocktake_ocr_rerun_progress_ratio", {"job_id": "77"}), 0.5)
        empty = SimpleNamespace(id=78, current=0, total=0)
        record_rerun_progress(empty, None, True)
        self.assertEqual(sample("stocktake_ocr_rerun_progress_ratio", {"job_id": "78"}), 1.0)

    def test_safe_progress_never_raises(self):
        safe_record_rerun_progress(object(), 1, True)

    def test_reconciliation(self):
        before = sample("stocktake_meters_reconciled_total")
        record_reconciliation(2, Decimal("160.25"))
        record_reconciliation(0, Decimal("0"))
        self.assertAlmostEqual(sample("stocktake_meters_reconciled_total"), before + 160.25)

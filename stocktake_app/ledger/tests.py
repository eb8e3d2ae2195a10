from decimal import Decimal
from unittest.mock import patch

from django.db import DatabaseError
from django.test import TestCase

from .models import LedgerTransaction, SessionReconciliation
from .recorder import InventoryLedger, LedgerWriteError, adjustment_key


class InventoryLedgerTests(TestCase):
    def setUp(self):
        self.ledger = InventoryLedger()

    def post(self, roll_id=10, meters="12.50"):
        return self.ledger.record_adjustment(
            session_id=1, roll_id=roll_id, quality="P200", color="NAVY",
            lot_number="L100", meters=Decimal(meters), created_by="rev",
        )

    def test_adjustment_is_keyed_by_session_and_roll(self):
        record, created = self.post()
        self.assertTrue(created)
        self.assertEqual(record.idempotency_key, adjustment_key(1, 10))
        self.assertEqual(record.idempotency_key, "stock_take:1:10")
        self.assertEqual(record.source_session_id, 1)
        self.assertEqual(record.source_roll_id, 10)

    def test_reposting_returns_first_record(self):
        first, _ = self.post(meters="12.50")
        again, created = self.post(meters="99.00")
        self.assertFalse(created)
        self.assertEqual(again.id, first.id)
        self.assertEqual(LedgerTransaction.objects.get().meters, Decimal("12.50"))

    def test_summary_once_per_session(self):
        _, created = self.ledger.record_session_reconciliation(session_id=1, roll_count=2, total_meters=Decimal("5"))
        self.assertTrue(created)
        _, created = self.ledger.record_session_reconciliation(session_id=1, roll_count=3, total_meters=Decimal("9"))
        self.assertFalse(created)
        self.assertEqual(SessionReconciliation.objects.get().roll_count, 2)

    def test_database_errors_become_ledger_errors(self):
        with patch.object(LedgerTransaction.objects, "get_or_create", side_effect=DatabaseError("locked")):
            with self.assertRaises(LedgerWriteError):
                self.post()
        with patch.object(SessionReconciliation.objects, "get_or_create", side_effect=DatabaseError("locked")):
            with self.assertRaises(LedgerWriteError):
                self.ledger.record_session_reconciliation(session_id=1, roll_count=1, total_meters=Decimal("1"))

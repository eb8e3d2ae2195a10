from decimal import Decimal
from unittest.mock import patch

from django.test import TestCase

from ledger.models import LedgerTransaction, SessionReconciliation
from ledger.recorder import InventoryLedger, LedgerWriteError

from .models import CountSession, RollStatus, SessionStatus
from .services import (
    InvalidStateError,
    NotReadyError,
    ReconciliationFailedError,
    approve_roll,
    complete_review,
    edit_roll,
    reject_roll,
)
from .testing import add_roll, make_session


class FlakyLedger(InventoryLedger):
    """Fails on the n-th adjustment, once."""

    def __init__(self, fail_on: int):
        self.fail_on = fail_on
        self.calls = 0

    def record_adjustment(self, **kwargs):
        self.calls += 1
        if self.calls == self.fail_on:
            raise LedgerWriteError("ledger offline")
        return super().record_adjustment(**kwargs)


class CompleteReviewTests(TestCase):
    def setUp(self):
        self.session = make_session()
        self.rolls = [
            add_roll(self.session, counter_meters=Decimal(m)) for m in ("100.00", "50.25", "75.00")
        ]

    def approve_two_reject_one(self):
        approve_roll(self.rolls[0].id, "rev")
        approve_roll(self.rolls[1].id, "rev")
        reject_roll(self.rolls[2].id, "rev", "wrong roll")

    def test_posts_one_adjustment_per_approved_roll(self):
        self.approve_two_reject_one()
        edit_roll(self.rolls[1].id, {"meters": "60.00", "color": "black"}, "rev")

        outcome = complete_review(self.session.id, "rev-lead")

        self.assertEqual(outcome.roll_count, 2)
        self.assertEqual(outcome.total_meters, Decimal("160.00"))
        self.assertEqual(outcome.transactions_posted, 2)
        txns = list(LedgerTransaction.objects.order_by("source_roll_id"))
        self.assertEqual(len(txns), 2)
        self.assertEqual(txns[1].meters, Decimal("60.00"))
        self.assertEqual(txns[1].color, "BLACK")
        self.assertEqual(txns[0].idempotency_key, f"stock_take:{self.session.id}:{self.rolls[0].id}")
        self.assertEqual(txns[0].transaction_type, "STOCK_ADJUSTMENT")

        summary = SessionReconciliation.objects.get(session_id=self.session.id)
        self.assertEqual(summary.roll_count, 2)
        self.assertEqual(summary.total_meters, Decimal("160.00"))

        session = CountSession.objects.get(id=self.session.id)
        self.assertEqual(session.status, SessionStatus.RECONCILED)
        self.assertIsNotNone(session.reconciled_at)
        self.assertEqual(session.reviewed_by, "rev-lead")

    def test_rejected_while_rolls_pending(self):
        approve_roll(self.rolls[0].id, "rev")
        with self.assertRaises(NotReadyError):
            complete_review(self.session.id, "rev")
        self.assertFalse(LedgerTransaction.objects.exists())

    def test_rejected_for_empty_session(self):
        empty = make_session(counter="counter-2")
        with self.assertRaises(NotReadyError):
            complete_review(empty.id, "rev")

    def test_cannot_reconcile_twice(self):
        self.approve_two_reject_one()
        complete_review(self.session.id, "rev")
        with self.assertRaises(InvalidStateError):
            complete_review(self.session.id, "rev")
        self.assertEqual(LedgerTransaction.objects.count(), 2)

    def test_ledger_failure_leaves_session_reviewable_and_retry_does_not_double_post(self):
        self.approve_two_reject_one()
        with self.assertRaises(ReconciliationFailedError):
            complete_review(self.session.id, "rev", ledger=FlakyLedger(fail_on=2))
        session = CountSession.objects.get(id=self.session.id)
        self.assertEqual(session.status, SessionStatus.ACTIVE)
        self.assertIsNone(session.reconciled_at)
        self.assertFalse(SessionReconciliation.objects.exists())

        complete_review(self.session.id, "rev")
        self.assertEqual(LedgerTransaction.objects.count(), 2)
        self.assertEqual(CountSession.objects.get(id=self.session.id).status, SessionStatus.RECONCILED)

    def test_retry_after_partial_external_posting(self):
        # An adjustment that reached the ledger before a failed attempt is not posted again.
        self.approve_two_reject_one()
        InventoryLedger().record_adjustment(
            session_id=self.session.id, roll_id=self.rolls[0].id,
            quality="P200", color="NAVY", lot_number="L001", meters=Decimal("100.00"),
        )
        outcome = complete_review(self.session.id, "rev")
        self.assertEqual(outcome.transactions_posted, 1)
        self.assertEqual(LedgerTransaction.objects.count(), 2)

    def test_database_failure_on_summary(self):
        self.approve_two_reject_one()
        with patch.object(
            InventoryLedger, "record_session_reconciliation", side_effect=LedgerWriteError("disk full"),
        ):
            with self.assertRaises(ReconciliationFailedError):
                complete_review(self.session.id, "rev")
        self.assertEqual(CountSession.objects.get(id=self.session.id).status, SessionStatus.ACTIVE)

    def test_recount_requested_rolls_do_not_block_or_post(self):
        approve_roll(self.rolls[0].id, "rev")
        reject_roll(self.rolls[1].id, "rev")
        self.rolls[2].status = RollStatus.RECOUNT_REQUESTED
        self.rolls[2].save()
        outcome = complete_review(self.session.id, "rev")
        self.assertEqual(outcome.roll_count, 1)

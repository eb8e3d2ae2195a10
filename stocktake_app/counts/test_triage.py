from decimal import Decimal

from django.db.models import Count
from django.test import TestCase

from .models import ConfidenceLevel, CountRoll, CountSession, RollStatus, SessionStatus
from .services import (
    InvalidStateError,
    ReviewQuery,
    RollFilter,
    RollNotPendingError,
    approve_roll,
    bulk_approve,
    can_complete,
    edit_roll,
    reject_roll,
    request_recount,
    review_page,
    select_ready_for_approval,
    toggle_select_all,
)
from .services.triage import build_roll_queryset
from .testing import add_roll, make_session


def assert_counter_invariant(testcase, session_id):
    session = CountSession.objects.get(id=session_id)
    testcase.assertEqual(
        session.rolls_pending_review + session.rolls_approved + session.rolls_rejected
        + session.rolls_recount_requested,
        session.total_rolls_counted,
    )
    by_status = dict(
        CountRoll.objects.filter(session_id=session_id).values_list("status").annotate(n=Count("id"))
    )
    testcase.assertEqual(session.rolls_approved, by_status.get(RollStatus.APPROVED, 0))
    testcase.assertEqual(session.rolls_pending_review, by_status.get(RollStatus.PENDING_REVIEW, 0))


class RollActionTests(TestCase):
    def setUp(self):
        self.session = make_session()
        self.roll = add_roll(self.session)

    def test_approve(self):
        roll = approve_roll(self.roll.id, "rev-1")
        self.assertEqual(roll.status, RollStatus.APPROVED)
        self.assertEqual(roll.reviewed_by, "rev-1")
        self.assertIsNotNone(roll.reviewed_at)
        assert_counter_invariant(self, self.session.id)

    def test_approve_twice_is_precondition_error(self):
        approve_roll(self.roll.id, "rev-1")
        with self.assertRaises(RollNotPendingError) as ctx:
            approve_roll(self.roll.id, "rev-2")
        self.assertEqual(ctx.exception.status, RollStatus.APPROVED)
        self.roll.refresh_from_db()
        self.assertEqual(self.roll.reviewed_by, "rev-1")

    def test_reject_stores_reason_in_admin_notes(self):
        roll = reject_roll(self.roll.id, "rev-1", "Not our stock")
        self.assertEqual(roll.status, RollStatus.REJECTED)
        self.assertEqual(roll.admin_notes, "Not our stock")

    def test_recount_can_retarget_decided_roll(self):
        approve_roll(self.roll.id, "rev-1")
        roll = request_recount(self.roll.id, "rev-2", "Label torn")
        self.assertEqual(roll.status, RollStatus.RECOUNT_REQUESTED)
        self.assertEqual(roll.recount_reason, "Label torn")
        assert_counter_invariant(self, self.session.id)

    def test_missing_roll(self):
        with self.assertRaises(CountRoll.DoesNotExist):
            approve_roll(999999, "rev-1")

    def test_closed_session_blocks_review(self):
        CountSession.objects.filter(id=self.session.id).update(status=SessionStatus.CANCELLED)
        with self.assertRaises(InvalidStateError):
            approve_roll(self.roll.id, "rev-1")
        with self.assertRaises(InvalidStateError):
            request_recount(self.roll.id, "rev-1")
        with self.assertRaises(InvalidStateError):
            edit_roll(self.roll.id, {"quality": "x"}, "rev-1")

    def test_edit_upper_cases_and_keeps_status(self):
        roll = edit_roll(self.roll.id, {"quality": " p300 ", "color": "red", "notes": "fixed"}, "rev-1")
        self.assertEqual(roll.admin_quality, "P300")
        self.assertEqual(roll.admin_color, "RED")
        self.assertEqual(roll.effective_quality, "P300")
        self.assertEqual(roll.admin_notes, "fixed")
        self.assertEqual(roll.status, RollStatus.PENDING_REVIEW)
        self.assertEqual(roll.reviewed_by, "rev-1")

    def test_admin_value_wins_over_counter_and_ocr(self):
        CountRoll.objects.filter(id=self.roll.id).update(ocr_quality="OCRQ")
        roll = edit_roll(self.roll.id, {"quality": "ADMINQ"}, "rev-1")
        self.assertEqual(roll.effective_quality, "ADMINQ")
        roll = edit_roll(self.roll.id, {"quality": None}, "rev-1")
        self.assertEqual(roll.effective_quality, "P200")


class ScenarioTests(TestCase):
    def test_approve_two_reject_one(self):
        session = make_session()
        rolls = [add_roll(session) for _ in range(3)]
        approve_roll(rolls[0].id, "rev")
        approve_roll(rolls[1].id, "rev")
        self.assertFalse(can_complete(session.id))
        reject_roll(rolls[2].id, "rev", "damaged")
        self.assertTrue(can_complete(session.id))
        assert_counter_invariant(self, session.id)

    def test_bulk_skips_already_approved(self):
        session = make_session()
        first = add_roll(session)
        second = add_roll(session)
        approve_roll(first.id, "rev")
        self.assertEqual(bulk_approve(session.id, [first.id, second.id], "rev"), 1)
        with self.assertRaises(RollNotPendingError):
            approve_roll(first.id, "rev")


class BulkApproveTests(TestCase):
    def setUp(self):
        self.session = make_session()
        self.rolls = [add_roll(self.session) for _ in range(4)]

    def test_idempotent(self):
        ids = [r.id for r in self.rolls[:3]]
        self.assertEqual(bulk_approve(self.session.id, ids, "rev"), 3)
        first = dict(CountRoll.objects.values_list("id", "status"))
        self.assertEqual(bulk_approve(self.session.id, ids, "rev"), 0)
        self.assertEqual(dict(CountRoll.objects.values_list("id", "status")), first)
        assert_counter_invariant(self, self.session.id)

    def test_ignores_rolls_of_other_sessions(self):
        other = make_session(counter="counter-2")
        foreign = add_roll(other)
        self.assertEqual(bulk_approve(self.session.id, [foreign.id], "rev"), 0)
        foreign.refresh_from_db()
        self.assertEqual(foreign.status, RollStatus.PENDING_REVIEW)

    def test_skips_rejected(self):
        reject_roll(self.rolls[0].id, "rev")
        self.assertEqual(bulk_approve(self.session.id, [self.rolls[0].id, self.rolls[1].id], "rev"), 1)
        self.rolls[0].refresh_from_db()
        self.assertEqual(self.rolls[0].status, RollStatus.REJECTED)

    def test_empty_list(self):
        self.assertEqual(bulk_approve(self.session.id, [], "rev"), 0)


class ReviewQueryTests(TestCase):
    def setUp(self):
        self.session = make_session()
        high = {"ocr_confidence_level": ConfidenceLevel.HIGH, "ocr_confidence_score": 95}
        self.ready = add_roll(self.session, counter_meters=Decimal("50"), **high)
        self.manual = add_roll(self.session, counter_meters=Decimal("10"), is_manual_entry=True, **high)
        self.dup = add_roll(self.session, counter_meters=Decimal("70"), is_possible_duplicate=True, **high)
        self.low = add_roll(
            self.session, counter_meters=Decimal("30"),
            ocr_confidence_level=ConfidenceLevel.LOW, ocr_confidence_score=20,
        )
        self.approved = add_roll(self.session, counter_meters=Decimal("90"), status=RollStatus.APPROVED, **high)

    def ids(self, **kwargs):
        return [r.id for r in build_roll_queryset(ReviewQuery(session_id=self.session.id, **kwargs))]

    def test_default_order_is_capture_sequence(self):
        self.assertEqual(self.ids(), [self.ready.id, self.manual.id, self.dup.id, self.low.id, self.approved.id])

    def test_filters(self):
        self.assertEqual(self.ids(filter=RollFilter.PENDING), [self.ready.id, self.manual.id, self.dup.id, self.low.id])
        self.assertEqual(
            self.ids(filter=RollFilter.HIGH_CONFIDENCE),
            [self.ready.id, self.manual.id, self.dup.id, self.approved.id],
        )
        self.assertEqual(self.ids(filter=RollFilter.READY_FOR_APPROVAL), [self.ready.id])

    def test_sort_by_effective_meters(self):
        CountRoll.objects.filter(id=self.manual.id).update(admin_meters=Decimal("99"))
        self.assertEqual(
            self.ids(sort="meters"),
            [self.low.id, self.ready.id, self.dup.id, self.approved.id, self.manual.id],
        )
        self.assertEqual(self.ids(sort="meters", descending=True)[0], self.manual.id)

    def test_sort_by_confidence_level(self):
        self.assertEqual(self.ids(sort="confidence_level")[0], self.low.id)

    def test_unknown_keys_rejected(self):
        with self.assertRaises(ValueError):
            self.ids(filter="everything")
        with self.assertRaises(ValueError):
            self.ids(sort="price")

    def test_pagination_and_page_selection(self):
        page = review_page(ReviewQuery(session_id=self.session.id, page=1, page_size=2))
        self.assertEqual(page.total, 5)
        self.assertEqual(page.num_pages, 3)
        self.assertEqual([r.id for r in page.rolls], [self.ready.id, self.manual.id])
        self.assertEqual(page.ready_for_approval_ids, [self.ready.id])

        last = review_page(ReviewQuery(session_id=self.session.id, page=99, page_size=2))
        self.assertEqual(last.page, 3)
        self.assertEqual(last.ready_for_approval_ids, [])

    def test_select_ready_for_approval_is_page_scoped(self):
        rolls = list(CountRoll.objects.filter(session=self.session))
        self.assertEqual(select_ready_for_approval(rolls), [self.ready.id])
        self.assertEqual(select_ready_for_approval(rolls[1:]), [])


class ToggleSelectAllTests(TestCase):
    def test_toggle(self):
        self.assertEqual(toggle_select_all(set(), [1, 2, 3]), {1, 2, 3})
        self.assertEqual(toggle_select_all({1, 2, 3}, [1, 2, 3]), set())
        self.assertEqual(toggle_select_all({1}, [1, 2, 3]), {1, 2, 3})
        # Selections from other pages are replaced by this page.
        self.assertEqual(toggle_select_all({7, 8}, [1, 2]), {1, 2})
        self.assertEqual(toggle_select_all(set(), []), set())

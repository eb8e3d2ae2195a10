from datetime import timedelta
from unittest.mock import patch

from django.core.management import call_command
from django.db import IntegrityError
from django.test import TestCase
from django.utils import timezone

from .models import CountSession, RollStatus, SessionStatus
from .services import (
    ConflictError,
    InvalidStateError,
    can_complete,
    cancel_session,
    end_session,
    flag_idle_sessions,
    list_sessions,
    start_or_resume_session,
)
from .services.sessions import IDLE_NOTE, generate_session_number
from .testing import add_roll, make_session


class StartOrResumeSessionTests(TestCase):
    def test_creates_numbered_session(self):
        session, created = start_or_resume_session("counter-1")
        self.assertTrue(created)
        self.assertEqual(session.status, SessionStatus.ACTIVE)
        self.assertRegex(session.session_number, r"^CS-\d{8}-0001$")
        self.assertIsNotNone(session.last_activity_at)

    def test_resumes_open_session(self):
        first, _ = start_or_resume_session("counter-1")
        again, created = start_or_resume_session("counter-1")
        self.assertFalse(created)
        self.assertEqual(first.id, again.id)
        self.assertEqual(CountSession.objects.count(), 1)

    def test_draft_session_becomes_active_on_resume(self):
        draft = make_session("counter-1", status=SessionStatus.DRAFT)
        session, created = start_or_resume_session("counter-1")
        self.assertFalse(created)
        self.assertEqual(session.id, draft.id)
        draft.refresh_from_db()
        self.assertEqual(draft.status, SessionStatus.ACTIVE)

    def test_numbers_are_sequential_per_day(self):
        a, _ = start_or_resume_session("counter-1")
        b, _ = start_or_resume_session("counter-2")
        self.assertTrue(a.session_number.endswith("-0001"))
        self.assertTrue(b.session_number.endswith("-0002"))

    def test_cancelled_session_is_not_resumed(self):
        first, _ = start_or_resume_session("counter-1")
        cancel_session(first.id)
        second, created = start_or_resume_session("counter-1")
        self.assertTrue(created)
        self.assertNotEqual(first.id, second.id)

    def test_number_race_is_retried_then_fails(self):
        with patch("counts.services.sessions.CountSession.objects.create", side_effect=IntegrityError("dup")):
            with self.assertRaises(ConflictError):
                start_or_resume_session("counter-1")

    def test_number_race_recovers_on_retry(self):
        real_create = CountSession.objects.create
        calls = {"n": 0}

        def flaky_create(**kwargs):
            calls["n"] += 1
            if calls["n"] == 1:
                raise IntegrityError("dup")
            return real_create(**kwargs)

        with patch("counts.services.sessions.CountSession.objects.create", side_effect=flaky_create):
            session, created = start_or_resume_session("counter-1")
        self.assertTrue(created)
        self.assertEqual(calls["n"], 2)

    def test_generate_session_number_continues_from_last(self):
        now = timezone.now()
        CountSession.objects.create(
            session_number=f"CS-{now:%Y%m%d}-0041", started_by="someone", status=SessionStatus.RECONCILED,
        )
        self.assertEqual(generate_session_number(now), f"CS-{now:%Y%m%d}-0042")


class SessionTransitionTests(TestCase):
    def test_end_session_allows_pending_rolls(self):
        session = make_session()
        add_roll(session)
        ended = end_session(session.id)
        self.assertEqual(ended.status, SessionStatus.COUNTING_COMPLETE)
        self.assertIsNotNone(ended.completed_at)

    def test_end_session_rejected_when_closed(self):
        for status in (SessionStatus.RECONCILED, SessionStatus.CANCELLED):
            session = make_session(counter=f"c-{status}", status=status)
            with self.assertRaises(InvalidStateError):
                end_session(session.id)

    def test_cancel_only_from_open_states(self):
        session = make_session()
        cancelled = cancel_session(session.id)
        self.assertEqual(cancelled.status, SessionStatus.CANCELLED)
        self.assertEqual(cancelled.cancellation_reason, "User cancelled")
        self.assertIsNotNone(cancelled.cancelled_at)

        done = make_session(counter="counter-2", status=SessionStatus.COUNTING_COMPLETE)
        with self.assertRaises(InvalidStateError):
            cancel_session(done.id)

    def test_can_complete(self):
        session = make_session()
        self.assertFalse(can_complete(session.id))
        roll = add_roll(session)
        self.assertFalse(can_complete(session.id))
        roll.status = RollStatus.APPROVED
        roll.save()
        self.assertTrue(can_complete(session.id))


class SessionListingTests(TestCase):
    def test_filter_and_search(self):
        a = make_session(counter="alice")
        b = make_session(counter="bob", status=SessionStatus.RECONCILED)
        self.assertEqual({s.id for s in list_sessions()}, {a.id, b.id})
        self.assertEqual([s.id for s in list_sessions(status=SessionStatus.RECONCILED)], [b.id])
        self.assertEqual([s.id for s in list_sessions(search="ALI")], [a.id])
        self.assertEqual([s.id for s in list_sessions(search=b.session_number)], [b.id])


class IdleSessionTests(TestCase):
    def test_flags_stale_open_sessions_only(self):
        stale = make_session(counter="stale")
        fresh = make_session(counter="fresh")
        closed = make_session(counter="closed", status=SessionStatus.COUNTING_COMPLETE)
        old = timezone.now() - timedelta(minutes=45)
        CountSession.objects.filter(id__in=[stale.id, closed.id]).update(last_activity_at=old)
        CountSession.objects.filter(id=fresh.id).update(last_activity_at=timezone.now())

        self.assertEqual(flag_idle_sessions(), 1)
        stale.refresh_from_db()
        self.assertEqual(stale.notes, IDLE_NOTE)
        self.assertEqual(stale.status, SessionStatus.ACTIVE)
        # Already flagged sessions are not counted twice.
        self.assertEqual(flag_idle_sessions(), 0)

    def test_management_command(self):
        stale = make_session(counter="stale")
        CountSession.objects.filter(id=stale.id).update(last_activity_at=timezone.now() - timedelta(hours=2))
        call_command("flag_idle_sessions", verbosity=0)
        stale.refresh_from_db()
        self.assertEqual(stale.notes, IDLE_NOTE)

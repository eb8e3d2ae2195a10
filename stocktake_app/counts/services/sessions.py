import logging
from datetime import timedelta
from typing import Optional, Tuple

from django.db import IntegrityError, transaction
from django.db.models import Count, Q
from django.utils import timezone

from counts.conf import stocktake_setting
from counts.models import (
    OPEN_SESSION_STATUSES,
    ConfidenceLevel,
    CountRoll,
    CountSession,
    RollStatus,
    SessionStatus,
)
from .errors import ConflictError, InvalidStateError


logger = logging.getLogger(__name__)

IDLE_NOTE = "Session idle - last activity timeout reached"


def generate_session_number(now=None) -> str:
    """Next human-readable number for today, e.g. CS-20261019-0003."""
    now = now or timezone.now()
    prefix = f"{stocktake_setting('SESSION_NUMBER_PREFIX')}-{now:%Y%m%d}-"
    last = (
        CountSession.objects.filter(session_number__startswith=prefix)
        .order_by("-session_number")
        .values_list("session_number", flat=True)
        .first()
    )
    seq = 1
    if last:
        try:
            seq = int(last[len(prefix):]) + 1
        except ValueError:
            seq = CountSession.objects.filter(session_number__startswith=prefix).count() + 1
    return f"{prefix}{seq:04d}"


def _open_session_for(counter_id: str) -> Optional[CountSession]:
    return (
        CountSession.objects.filter(started_by=counter_id, status__in=OPEN_SESSION_STATUSES)
        .order_by("-created_at", "-id")
        .first()
    )


def touch_session(session: CountSession) -> CountSession:
    """Record activity; a draft session becomes active on its first activity."""
    now = timezone.now()
    fields = {"last_activity_at": now}
    if session.status == SessionStatus.DRAFT:
        fields["status"] = SessionStatus.ACTIVE
    CountSession.objects.filter(id=session.id).update(updated_at=now, **fields)
    for name, value in fields.items():
        setattr(session, name, value)
    return session


def start_or_resume_session(counter_id: str) -> Tuple[CountSession, bool]:
    """
    Return the counter's open session, or start a new one.

    Returns (session, created). A race on the generated session number is
    retried up to SESSION_NUMBER_MAX_ATTEMPTS times before ConflictError.
    """
    if not counter_id:
        raise InvalidStateError("A counter id is required to start a session.")

    existing = _open_session_for(counter_id)
    if existing is not None:
        logger.info("Resuming session %s for counter %s", existing.session_number, counter_id)
        return touch_session(existing), False

    attempts = int(stocktake_setting("SESSION_NUMBER_MAX_ATTEMPTS"))
    for attempt in range(1, attempts + 1):
        number = generate_session_number()
        try:
            with transaction.atomic():
                session = CountSession.objects.create(
                    session_number=number,
                    started_by=counter_id,
                    status=SessionStatus.ACTIVE,
                    last_activity_at=timezone.now(),
                )
        except IntegrityError:
            # Either another request opened a session for this counter, or the
            # number was taken by a concurrent start.
            existing = _open_session_for(counter_id)
            if existing is not None:
                return touch_session(existing), False
            logger.warning("Session number %s already taken (attempt %d/%d)", number, attempt, attempts)
            continue
        logger.info("Started session %s for counter %s", session.session_number, counter_id)
        return session, True

    raise ConflictError(f"Could not allocate a session number after {attempts} attempts.")


def end_session(session_id: int) -> CountSession:
    """Counter finished counting. Ending early is allowed."""
    with transaction.atomic():
        session = CountSession.objects.select_for_update().get(id=session_id)
        if session.status in (SessionStatus.RECONCILED, SessionStatus.CANCELLED):
            raise InvalidStateError(f"Session {session.session_number} is already {session.status}.")
        if session.status != SessionStatus.COUNTING_COMPLETE:
            session.status = SessionStatus.COUNTING_COMPLETE
            session.completed_at = timezone.now()
            session.save(update_fields=["status", "completed_at", "updated_at"])
            logger.info("Session %s counting complete", session.session_number)
    return session


def cancel_session(session_id: int, reason: str = "") -> CountSession:
    with transaction.atomic():
        session = CountSession.objects.select_for_update().get(id=session_id)
        if session.status not in OPEN_SESSION_STATUSES:
            raise InvalidStateError(
                f"Only draft or active sessions can be cancelled; {session.session_number} is {session.status}."
            )
        session.status = SessionStatus.CANCELLED
        session.cancelled_at = timezone.now()
        session.cancellation_reason = reason or "User cancelled"
        session.save(update_fields=["status", "cancelled_at", "cancellation_reason", "updated_at"])
    logger.info("Session %s cancelled", session.session_number)
    return session


def refresh_session_counters(session_id: int) -> CountSession:
    """
    Recompute the aggregate counters from the roll table in one query.

    Recomputing instead of incrementing keeps the counters exact when several
    reviewers act on the same session at once.
    """
    totals = CountRoll.objects.filter(session_id=session_id).aggregate(
        total_rolls_counted=Count("id"),
        rolls_pending_review=Count("id", filter=Q(status=RollStatus.PENDING_REVIEW)),
        rolls_approved=Count("id", filter=Q(status=RollStatus.APPROVED)),
        rolls_rejected=Count("id", filter=Q(status=RollStatus.REJECTED)),
        rolls_recount_requested=Count("id", filter=Q(status=RollStatus.RECOUNT_REQUESTED)),
        ocr_high_confidence_count=Count("id", filter=Q(ocr_confidence_level=ConfidenceLevel.HIGH)),
        ocr_medium_confidence_count=Count("id", filter=Q(ocr_confidence_level=ConfidenceLevel.MEDIUM)),
        ocr_low_confidence_count=Count("id", filter=Q(ocr_confidence_level=ConfidenceLevel.LOW)),
        manual_entry_count=Count("id", filter=Q(is_manual_entry=True)),
    )
    CountSession.objects.filter(id=session_id).update(updated_at=timezone.now(), **totals)
    return CountSession.objects.get(id=session_id)


def can_complete(session_id: int) -> bool:
    """Nothing left pending and at least one roll counted."""
    totals = CountRoll.objects.filter(session_id=session_id).aggregate(
        total=Count("id"),
        pending=Count("id", filter=Q(status=RollStatus.PENDING_REVIEW)),
    )
    return totals["pending"] == 0 and totals["total"] > 0


def list_sessions(status: Optional[str] = None, search: str = ""):
    qs = CountSession.objects.all().order_by("-created_at", "-id")
    if status and status != "all":
        qs = qs.filter(status=status)
    if search:
        qs = qs.filter(Q(session_number__icontains=search) | Q(started_by__icontains=search))
    return qs


def flag_idle_sessions(now=None) -> int:
    """Note open sessions with no activity for SESSION_IDLE_TIMEOUT_MINUTES. Status is left alone."""
    now = now or timezone.now()
    cutoff = now - timedelta(minutes=int(stocktake_setting("SESSION_IDLE_TIMEOUT_MINUTES")))
    flagged = (
        CountSession.objects.filter(status__in=OPEN_SESSION_STATUSES, last_activity_at__lt=cutoff)
        .exclude(notes=IDLE_NOTE)
        .update(notes=IDLE_NOTE, updated_at=now)
    )
    if flagged:
        logger.info("Flagged %d idle session(s)", flagged)
    return flagged

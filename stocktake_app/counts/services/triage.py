import logging
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Set

from django.core.paginator import Paginator
from django.db import models, transaction
from django.db.models import Case, F, IntegerField, Q, Value, When
from django.db.models.functions import Coalesce
from django.utils import timezone

from counts.conf import stocktake_setting
from counts.models import (
    REVIEWABLE_SESSION_STATUSES,
    ConfidenceLevel,
    CountRoll,
    CountSession,
    RollStatus,
)
from .errors import InvalidStateError, RollNotPendingError
from .ingest import normalize_field, to_meters
from .sessions import refresh_session_counters


logger = logging.getLogger(__name__)


class RollFilter(models.TextChoices):
    ALL = "all", "All"
    PENDING = "pending", "Pending review"
    HIGH_CONFIDENCE = "high_confidence", "High confidence"
    READY_FOR_APPROVAL = "ready_for_approval", "Ready for approval"


def ready_for_approval_q() -> Q:
    return Q(
        status=RollStatus.PENDING_REVIEW,
        ocr_confidence_level=ConfidenceLevel.HIGH,
        is_manual_entry=False,
        is_possible_duplicate=False,
    )


FILTERS = {
    RollFilter.ALL: Q(),
    RollFilter.PENDING: Q(status=RollStatus.PENDING_REVIEW),
    RollFilter.HIGH_CONFIDENCE: Q(ocr_confidence_level=ConfidenceLevel.HIGH),
    RollFilter.READY_FOR_APPROVAL: ready_for_approval_q(),
}

# Public sort key -> queryset field (annotations for effective values).
SORT_FIELDS = {
    "capture_sequence": "capture_sequence",
    "created_at": "created_at",
    "status": "status",
    "confidence": "ocr_confidence_score",
    "confidence_level": "confidence_rank",
    "quality": "effective_quality_db",
    "color": "effective_color_db",
    "lot_number": "effective_lot_number_db",
    "meters": "effective_meters_db",
    "reviewed_at": "reviewed_at",
}

DEFAULT_SORT = "capture_sequence"


@dataclass(frozen=True)
class ReviewQuery:
    """Everything that decides which rolls a reviewer sees on one page."""

    session_id: int
    filter: str = RollFilter.ALL
    sort: Optional[str] = None
    descending: bool = False
    page: int = 1
    page_size: Optional[int] = None

    def effective_page_size(self) -> int:
        size = self.page_size or int(stocktake_setting("REVIEW_PAGE_SIZE"))
        return max(1, min(size, int(stocktake_setting("REVIEW_MAX_PAGE_SIZE"))))


@dataclass
class ReviewPage:
    rolls: List[CountRoll]
    page: int
    num_pages: int
    total: int
    ready_for_approval_ids: List[int] = field(default_factory=list)


def annotate_effective(queryset):
    return queryset.annotate(
        effective_quality_db=Coalesce(F("admin_quality"), F("counter_quality")),
        effective_color_db=Coalesce(F("admin_color"), F("counter_color")),
        effective_lot_number_db=Coalesce(F("admin_lot_number"), F("counter_lot_number")),
        effective_meters_db=Coalesce(F("admin_meters"), F("counter_meters")),
        confidence_rank=Case(
            When(ocr_confidence_level=ConfidenceLevel.HIGH, then=Value(2)),
            When(ocr_confidence_level=ConfidenceLevel.MEDIUM, then=Value(1)),
            When(ocr_confidence_level=ConfidenceLevel.LOW, then=Value(0)),
            default=Value(-1),
            output_field=IntegerField(),
        ),
    )


def build_roll_queryset(query: ReviewQuery):
    """
    Lazy queryset for a review query; filtering and ordering run in the database.

    Unknown filter or sort keys raise ValueError.
    """
    try:
        condition = FILTERS[RollFilter(query.filter)]
    except ValueError:
        raise ValueError(f"Unknown roll filter: {query.filter}") from None

    sort = query.sort or DEFAULT_SORT
    if sort not in SORT_FIELDS:
        raise ValueError(f"Unknown sort field: {sort}")
    column = SORT_FIELDS[sort]

    qs = annotate_effective(CountRoll.objects.filter(session_id=query.session_id).filter(condition))
    primary = F(column).desc(nulls_last=True) if query.descending else F(column).asc(nulls_last=True)
    # Capture order breaks ties so paging stays stable.
    return qs.order_by(primary, "capture_sequence", "id")


def select_ready_for_approval(rolls: Iterable[CountRoll]) -> List[int]:
    """Ids on the given (already loaded) page that match the ready-for-approval rule."""
    return [
        roll.id
        for roll in rolls
        if roll.status == RollStatus.PENDING_REVIEW
        and roll.ocr_confidence_level == ConfidenceLevel.HIGH
        and not roll.is_manual_entry
        and not roll.is_possible_duplicate
    ]


def toggle_select_all(selected: Iterable[int], page_ids: Iterable[int]) -> Set[int]:
    """Select-all works on the visible page only: it flips between none and the whole page."""
    page = set(page_ids)
    current = set(selected)
    if page and page <= current:
        return set()
    return page


def review_page(query: ReviewQuery) -> ReviewPage:
    paginator = Paginator(build_roll_queryset(query), query.effective_page_size())
    page = paginator.get_page(query.page)
    rolls = list(page.object_list)
    return ReviewPage(
        rolls=rolls,
        page=page.number,
        num_pages=paginator.num_pages,
        total=paginator.count,
        ready_for_approval_ids=select_ready_for_approval(rolls),
    )


def _explain_refusal(roll_id: int) -> None:
    """Raise the error that matches why a guarded update touched no rows."""
    roll = CountRoll.objects.select_related("session").get(id=roll_id)
    if roll.session.status not in REVIEWABLE_SESSION_STATUSES:
        raise InvalidStateError(
            f"Session {roll.session.session_number} is {roll.session.status}; its rolls can no longer be reviewed."
        )
    raise RollNotPendingError(roll_id, roll.status)


def _decide(roll_id: int, reviewer_id: str, new_status: str, **extra: Any) -> CountRoll:
    now = timezone.now()
    with transaction.atomic():
        changed = CountRoll.objects.filter(
            id=roll_id,
            status=RollStatus.PENDING_REVIEW,
            session__status__in=REVIEWABLE_SESSION_STATUSES,
        ).update(status=new_status, reviewed_by=reviewer_id, reviewed_at=now, updated_at=now, **extra)
        if not changed:
            _explain_refusal(roll_id)
        roll = CountRoll.objects.get(id=roll_id)
        refresh_session_counters(roll.session_id)
    logger.info("Roll %s %s by %s", roll_id, new_status, reviewer_id)
    return roll


def approve_roll(roll_id: int, reviewer_id: str) -> CountRoll:
    return _decide(roll_id, reviewer_id, RollStatus.APPROVED)


def reject_roll(roll_id: int, reviewer_id: str, reason: str = "") -> CountRoll:
    return _decide(roll_id, reviewer_id, RollStatus.REJECTED, admin_notes=reason or "")


def request_recount(roll_id: int, reviewer_id: str, reason: str = "") -> CountRoll:
    """Send a roll back for recount. Unlike approve/reject this may re-target a decided roll."""
    now = timezone.now()
    with transaction.atomic():
        changed = CountRoll.objects.filter(
            id=roll_id, session__status__in=REVIEWABLE_SESSION_STATUSES,
        ).update(
            status=RollStatus.RECOUNT_REQUESTED,
            recount_reason=reason or "",
            reviewed_by=reviewer_id,
            reviewed_at=now,
            updated_at=now,
        )
        if not changed:
            _explain_refusal(roll_id)
        roll = CountRoll.objects.get(id=roll_id)
        refresh_session_counters(roll.session_id)
    logger.info("Roll %s recount requested by %s", roll_id, reviewer_id)
    return roll


EDITABLE_FIELDS = ("quality", "color", "lot_number", "meters")


def edit_roll(roll_id: int, fields: Dict[str, Any], reviewer_id: str) -> CountRoll:
    """
    Write reviewer overrides into the admin_* fields. Status does not change.

    Only keys present in `fields` are touched; None or a blank string clears
    that override so the counter's value applies again. `notes` replaces
    admin_notes.
    """
    with transaction.atomic():
        roll = CountRoll.objects.select_for_update().select_related("session").get(id=roll_id)
        if roll.session.status not in REVIEWABLE_SESSION_STATUSES:
            raise InvalidStateError(
                f"Session {roll.session.session_number} is {roll.session.status}; its rolls can no longer be edited."
            )
        update_fields = ["reviewed_by", "reviewed_at", "updated_at"]
        for name in EDITABLE_FIELDS:
            if name not in fields:
                continue
            value = fields[name]
            if name == "meters":
                value = to_meters(value) if value not in (None, "") else None
            else:
                value = normalize_field(value) or None
            setattr(roll, f"admin_{name}", value)
            update_fields.append(f"admin_{name}")
        if "notes" in fields:
            roll.admin_notes = fields["notes"] or ""
            update_fields.append("admin_notes")
        roll.reviewed_by = reviewer_id
        roll.reviewed_at = timezone.now()
        roll.save(update_fields=update_fields)
    logger.info("Roll %s edited by %s", roll_id, reviewer_id)
    return roll


def bulk_approve(session_id: int, roll_ids: Iterable[int], reviewer_id: str) -> int:
    """
    Approve every listed roll that is still pending; others are skipped.

    One set-based update, so running it twice changes nothing the second
    time. Returns the number of rolls approved.
    """
    ids: FrozenSet[int] = frozenset(int(i) for i in roll_ids)
    session = CountSession.objects.get(id=session_id)
    if session.status not in REVIEWABLE_SESSION_STATUSES:
        raise InvalidStateError(f"Session {session.session_number} is {session.status}; nothing can be approved.")
    if not ids:
        return 0
    now = timezone.now()
    with transaction.atomic():
        approved = CountRoll.objects.filter(
            session_id=session_id, id__in=ids, status=RollStatus.PENDING_REVIEW,
        ).update(status=RollStatus.APPROVED, reviewed_by=reviewer_id, reviewed_at=now, updated_at=now)
        refresh_session_counters(session_id)
    logger.info(
        "Bulk approve in session %s: %d of %d roll(s) approved by %s",
        session.session_number, approved, len(ids), reviewer_id,
    )
    return approved

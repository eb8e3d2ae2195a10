import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Optional

from django.db import IntegrityError, transaction
from django.db.models import Max
from django.utils import timezone

from label_ocr import LabelOCRResult

from counts.models import CountRoll, CountSession, OcrStatus, RollStatus
from .confidence import classify_confidence
from .duplicates import find_possible_duplicate
from .errors import ConflictError, InvalidStateError, PreconditionError
from .sessions import refresh_session_counters, touch_session


logger = logging.getLogger(__name__)


@dataclass
class CounterEntry:
    """What the counter typed in at capture time."""

    quality: str
    color: str
    lot_number: str
    meters: Decimal
    is_manual_entry: bool = False
    captured_by: str = ""


def normalize_field(value: Optional[str]) -> str:
    return (value or "").strip().upper()


def to_meters(value) -> Optional[Decimal]:
    if value is None:
        return None
    try:
        return Decimal(str(value)).quantize(Decimal("0.01"))
    except (InvalidOperation, ValueError):
        return None


def apply_ocr_result(roll: CountRoll, result: LabelOCRResult) -> CountRoll:
    """Copy an OCR reading onto a roll and reclassify it. The previous level is discarded."""
    roll.ocr_quality = result.quality
    roll.ocr_color = result.color
    roll.ocr_lot_number = result.lot_number
    roll.ocr_meters = to_meters(result.meters)
    roll.ocr_raw_text = result.raw_text
    roll.ocr_confidence_score = result.confidence_score
    roll.ocr_confidence_level = classify_confidence(result.confidence_score)
    roll.is_not_label_warning = not result.is_likely_label
    roll.ocr_status = OcrStatus.COMPLETED
    roll.ocr_processed_at = timezone.now()
    return roll


def next_capture_sequence(session_id: int) -> int:
    current = CountRoll.objects.filter(session_id=session_id).aggregate(m=Max("capture_sequence"))["m"]
    return (current or 0) + 1


def ingest_roll(
    session_id: int,
    capture_sequence: Optional[int],
    entry: CounterEntry,
    ocr_result: Optional[LabelOCRResult],
    photo_path: str = "",
    photo_hash: str = "",
) -> CountRoll:
    """
    Record one captured roll as pending review.

    `ocr_result` is None when OCR failed or was skipped; the roll is then a
    manual entry with no confidence level. Duplicate detection runs against
    every roll already in the session.
    """
    with transaction.atomic():
        session = CountSession.objects.select_for_update().get(id=session_id)
        if not session.is_open:
            raise InvalidStateError(
                f"Session {session.session_number} is {session.status}; rolls can only be added to open sessions."
            )

        if capture_sequence is None:
            capture_sequence = next_capture_sequence(session_id)
        elif CountRoll.objects.filter(session_id=session_id, capture_sequence=capture_sequence).exists():
            raise PreconditionError(
                f"Capture sequence {capture_sequence} already exists in session {session.session_number}."
            )

        roll = CountRoll(
            session=session,
            capture_sequence=capture_sequence,
            photo_path=photo_path,
            photo_hash_sha256=photo_hash,
            captured_by=entry.captured_by or session.started_by,
            counter_quality=normalize_field(entry.quality),
            counter_color=normalize_field(entry.color),
            counter_lot_number=normalize_field(entry.lot_number),
            counter_meters=to_meters(entry.meters),
            is_manual_entry=entry.is_manual_entry,
            status=RollStatus.PENDING_REVIEW,
        )
        if ocr_result is not None:
            apply_ocr_result(roll, ocr_result)
        else:
            roll.ocr_confidence_level = None
            roll.ocr_status = OcrStatus.SKIPPED if entry.is_manual_entry else OcrStatus.FAILED
            roll.is_manual_entry = True

        duplicate = find_possible_duplicate(
            session_id,
            roll.counter_quality,
            roll.counter_color,
            roll.counter_lot_number,
            roll.counter_meters,
            photo_hash=photo_hash,
        )
        if duplicate is not None:
            roll.is_possible_duplicate = True
            roll.duplicate_of_roll = duplicate

        try:
            with transaction.atomic():
                roll.save()
        except IntegrityError as exc:
            raise ConflictError(
                f"Capture sequence {capture_sequence} was taken concurrently in session {session.session_number}."
            ) from exc

        touch_session(session)
        refresh_session_counters(session_id)

    logger.info(
        "Ingested roll #%s into session %s (level=%s, duplicate=%s)",
        roll.capture_sequence, session.session_number, roll.ocr_confidence_level, roll.is_possible_duplicate,
    )
    return roll

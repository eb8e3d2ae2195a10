import csv
import io

from counts.models import CountRoll, CountSession


EXPORT_COLUMNS = [
    "capture_sequence",
    "quality",
    "color",
    "lot_number",
    "meters",
    "status",
    "ocr_confidence_score",
    "ocr_confidence_level",
    "is_manual_entry",
    "is_possible_duplicate",
    "duplicate_of_roll_id",
    "reviewed_by",
    "admin_notes",
    "recount_reason",
]


def export_session_csv(session: CountSession) -> str:
    """CSV of a session's rolls in capture order, using effective values."""
    buf = io.StringIO()
    writer = csv.writer(buf)
    writer.writerow(EXPORT_COLUMNS)
    rolls = CountRoll.objects.filter(session=session).order_by("capture_sequence", "id")
    for roll in rolls.iterator():
        writer.writerow([
            roll.capture_sequence,
            roll.effective_quality,
            roll.effective_color,
            roll.effective_lot_number,
            roll.effective_meters,
            roll.status,
            "" if roll.ocr_confidence_score is None else roll.ocr_confidence_score,
            roll.ocr_confidence_level or "",
            "yes" if roll.is_manual_entry else "no",
            "yes" if roll.is_possible_duplicate else "no",
            roll.duplicate_of_roll_id or "",
            roll.reviewed_by,
            roll.admin_notes,
            roll.recount_reason,
        ])
    return buf.getvalue()

"""Helpers shared by the stock-take test modules."""
import io
import itertools
from decimal import Decimal
from typing import Iterable, Optional

from PIL import Image

from label_ocr import LabelOCREngine, LabelOCRResult, OCRFailure

from .models import CountRoll, CountSession, RollStatus, SessionStatus
from .services.sessions import refresh_session_counters


_numbers = itertools.count(1)


def jpeg_bytes(size=(200, 120), color=(255, 255, 255)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", size, color).save(buf, format="JPEG")
    return buf.getvalue()


def ocr_result(
    confidence: float = 92.0,
    quality: Optional[str] = "P200",
    color: Optional[str] = "NAVY",
    lot_number: Optional[str] = "L100",
    meters: Optional[float] = 120.5,
    likely_label: bool = True,
) -> LabelOCRResult:
    return LabelOCRResult(
        quality=quality,
        color=color,
        lot_number=lot_number,
        meters=meters,
        raw_text=f"QUALITY: {quality}\nCOLOR: {color}\nLOT: {lot_number}\n{meters} M",
        confidence_score=confidence,
        is_likely_label=likely_label,
        processing_ms=5.0,
    )


class FakeEngine(LabelOCREngine):
    """Returns canned results in order; raises OCRFailure for `None` entries."""

    name = "fake"

    def __init__(self, results: Iterable[Optional[LabelOCRResult]] = ()):
        self.results = list(results)
        self.calls = 0
        self.released = 0

    def recognize(self, image):
        index = self.calls
        self.calls += 1
        result = self.results[index] if index < len(self.results) else ocr_result()
        if result is None:
            raise OCRFailure("fake engine failure")
        return result

    def release(self):
        self.released += 1


def make_session(counter: str = "counter-1", status: str = SessionStatus.ACTIVE) -> CountSession:
    return CountSession.objects.create(
        session_number=f"CS-TEST-{next(_numbers):04d}",
        started_by=counter,
        status=status,
    )


def add_roll(session: CountSession, **fields) -> CountRoll:
    """Insert a roll directly (bypassing ingest) and refresh the session counters."""
    sequence = fields.pop("capture_sequence", None)
    if sequence is None:
        sequence = session.rolls.count() + 1
    values = {
        "counter_quality": "P200",
        "counter_color": "NAVY",
        "counter_lot_number": f"L{sequence:03d}",
        "counter_meters": Decimal("100.00"),
        "status": RollStatus.PENDING_REVIEW,
    }
    values.update(fields)
    roll = CountRoll.objects.create(session=session, capture_sequence=sequence, **values)
    refresh_session_counters(session.id)
    return roll

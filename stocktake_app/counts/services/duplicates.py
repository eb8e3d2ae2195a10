import logging
from decimal import Decimal
from typing import Optional

from django.db.models import Q
from django.db.models.functions import Coalesce, Trim, Upper

from counts.conf import stocktake_setting
from counts.models import CountRoll


logger = logging.getLogger(__name__)


def normalize_label_value(value: Optional[str]) -> str:
    return (value or "").strip().upper()


def find_possible_duplicate(
    session_id: int,
    quality: str,
    color: str,
    lot_number: str,
    meters: Decimal,
    photo_hash: str = "",
    exclude_roll_id: Optional[int] = None,
) -> Optional[CountRoll]:
    """
    Return the earliest roll in the session that looks like the same physical roll.

    A match is either the exact same photo (SHA-256) or the same effective
    quality, color and lot number (case and surrounding whitespace ignored)
    with effective meters inside DUPLICATE_METERS_TOLERANCE.
    """
    tolerance = Decimal(str(stocktake_setting("DUPLICATE_METERS_TOLERANCE")))
    meters = Decimal(str(meters))

    label_match = Q(
        eff_quality=normalize_label_value(quality),
        eff_color=normalize_label_value(color),
        eff_lot=normalize_label_value(lot_number),
    )
    match = label_match | Q(photo_hash_sha256=photo_hash) if photo_hash else label_match

    candidates = (
        CountRoll.objects.filter(session_id=session_id)
        .annotate(
            eff_quality=Upper(Trim(Coalesce("admin_quality", "counter_quality"))),
            eff_color=Upper(Trim(Coalesce("admin_color", "counter_color"))),
            eff_lot=Upper(Trim(Coalesce("admin_lot_number", "counter_lot_number"))),
        )
        .filter(match)
        .order_by("capture_sequence", "id")
    )
    if exclude_roll_id is not None:
        candidates = candidates.exclude(id=exclude_roll_id)

    # Candidates share a label, so this set is small; the meters band is checked
    # in Python to keep Decimal arithmetic exact on every backend.
    for roll in candidates:
        same_photo = bool(photo_hash) and roll.photo_hash_sha256 == photo_hash
        if same_photo or abs(roll.effective_meters - meters) <= tolerance:
            logger.info(
                "Roll in session %s looks like a duplicate of roll %s (#%s)",
                session_id, roll.id, roll.capture_sequence,
            )
            return roll
    return None

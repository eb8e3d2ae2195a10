import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from django.db import DatabaseError, transaction
from django.utils import timezone

from ledger.recorder import InventoryLedger, LedgerWriteError

from counts.models import CountRoll, CountSession, RollStatus, SessionStatus
from .errors import InvalidStateError, NotReadyError, ReconciliationFailedError
from .sessions import can_complete


logger = logging.getLogger(__name__)


@dataclass
class ReconciliationOutcome:
    session: CountSession
    roll_count: int
    total_meters: Decimal
    transactions_posted: int


def complete_review(
    session_id: int,
    reviewer_id: str,
    ledger: Optional[InventoryLedger] = None,
) -> ReconciliationOutcome:
    """
    Post every approved roll to the inventory ledger and close the session.

    Ledger postings and the status change run in one transaction. If the
    ledger fails the session stays as it was and the call can be retried;
    keyed postings mean a retry never posts a roll twice.
    """
    ledger = ledger or InventoryLedger()
    session = CountSession.objects.get(id=session_id)
    if session.status in (SessionStatus.RECONCILED, SessionStatus.CANCELLED):
        raise InvalidStateError(f"Session {session.session_number} is already {session.status}.")
    if not can_complete(session_id):
        raise NotReadyError(
            f"Session {session.session_number} cannot be completed: rolls are still pending review or none were counted."
        )

    try:
        with transaction.atomic():
            session = CountSession.objects.select_for_update().get(id=session_id)
            if session.status in (SessionStatus.RECONCILED, SessionStatus.CANCELLED):
                raise InvalidStateError(f"Session {session.session_number} is already {session.status}.")
            # Re-checked under the lock; a reviewer may have reopened a roll meanwhile.
            if not can_complete(session_id):
                raise NotReadyError(f"Session {session.session_number} has rolls pending review.")

            approved = list(
                CountRoll.objects.filter(session_id=session_id, status=RollStatus.APPROVED)
                .order_by("capture_sequence", "id")
            )
            posted = 0
            total = Decimal("0")
            for roll in approved:
                values = roll.effective_values()
                _, created = ledger.record_adjustment(
                    session_id=session_id,
                    roll_id=roll.id,
                    quality=values["quality"],
                    color=values["color"],
                    lot_number=values["lot_number"],
                    meters=values["meters"],
                    created_by=reviewer_id,
                )
                posted += int(created)
                total += values["meters"]
            ledger.record_session_reconciliation(
                session_id=session_id,
                roll_count=len(approved),
                total_meters=total,
                reconciled_by=reviewer_id,
            )

            now = timezone.now()
            session.status = SessionStatus.RECONCILED
            session.reconciled_at = now
            session.reviewed_by = reviewer_id
            session.reviewed_at = now
            session.save(update_fields=["status", "reconciled_at", "reviewed_by", "reviewed_at", "updated_at"])
    except (LedgerWriteError, DatabaseError) as exc:
        logger.error("Reconciliation of session %s failed: %s", session.session_number, exc)
        raise ReconciliationFailedError(
            f"Session {session.session_number} could not be reconciled and is unchanged; retry later."
        ) from exc

    logger.info(
        "Session %s reconciled by %s: %d approved roll(s), %s m, %d new ledger transaction(s)",
        session.session_number, reviewer_id, len(approved), total, posted,
    )
    return ReconciliationOutcome(
        session=session, roll_count=len(approved), total_meters=total, transactions_posted=posted,
    )

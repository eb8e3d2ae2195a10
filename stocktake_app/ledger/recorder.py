import logging
from decimal import Decimal
from typing import Tuple

from django.db import DatabaseError, IntegrityError, transaction

from .models import LedgerTransaction, SessionReconciliation, TransactionType


logger = logging.getLogger(__name__)


class LedgerWriteError(Exception):
    """The ledger could not store a transaction or summary."""


def adjustment_key(session_id: int, roll_id: int) -> str:
    return f"stock_take:{session_id}:{roll_id}"


class InventoryLedger:
    """
    Append-only writer for stock adjustments.

    Both writes are keyed (adjustment by session + roll, summary by session)
    and return `(record, created)`, so posting the same thing twice returns
    the first record instead of a second movement.
    """

    def record_adjustment(
        self,
        *,
        session_id: int,
        roll_id: int,
        quality: str,
        color: str,
        lot_number: str,
        meters: Decimal,
        created_by: str = "",
    ) -> Tuple[LedgerTransaction, bool]:
        key = adjustment_key(session_id, roll_id)
        defaults = {
            "transaction_type": TransactionType.STOCK_ADJUSTMENT,
            "source_session_id": session_id,
            "source_roll_id": roll_id,
            "quality": quality or "",
            "color": color or "",
            "lot_number": lot_number or "",
            "meters": meters,
            "created_by": created_by,
        }
        try:
            with transaction.atomic():
                record, created = LedgerTransaction.objects.get_or_create(idempotency_key=key, defaults=defaults)
        except IntegrityError:
            # Lost a race with a concurrent poster of the same key.
            record, created = LedgerTransaction.objects.get(idempotency_key=key), False
        except DatabaseError as exc:
            raise LedgerWriteError(f"Could not post adjustment {key}: {exc}") from exc
        if not created:
            logger.info("Ledger adjustment %s already posted; skipping", key)
        return record, created

    def record_session_reconciliation(
        self,
        *,
        session_id: int,
        roll_count: int,
        total_meters: Decimal,
        reconciled_by: str = "",
    ) -> Tuple[SessionReconciliation, bool]:
        try:
            with transaction.atomic():
                return SessionReconciliation.objects.get_or_create(
                    session_id=session_id,
                    defaults={
                        "roll_count": roll_count,
                        "total_meters": total_meters,
                        "reconciled_by": reconciled_by,
                    },
                )
        except IntegrityError:
            return SessionReconciliation.objects.get(session_id=session_id), False
        except DatabaseError as exc:
            raise LedgerWriteError(f"Could not record reconciliation for session {session_id}: {exc}") from exc

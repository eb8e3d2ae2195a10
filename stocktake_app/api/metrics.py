import logging
from decimal import Decimal
from typing import Any, Optional

from django.http import HttpResponse
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, generate_latest


logger = logging.getLogger(__name__)


# Counters
ROLLS_INGESTED_TOTAL = Counter(
    "stocktake_rolls_ingested_total",
    "Rolls captured into a session, by OCR confidence level",
    ["confidence_level"],
)
REVIEW_ACTIONS_TOTAL = Counter(
    "stocktake_review_actions_total", "Single-roll review actions", ["action"]
)
BULK_APPROVED_ROLLS_TOTAL = Counter(
    "stocktake_bulk_approved_rolls_total", "Rolls approved through bulk approve"
)
OCR_RERUN_ITEMS_TOTAL = Counter(
    "stocktake_ocr_rerun_items_total", "Rolls processed by OCR reruns, by outcome", ["outcome"]
)
RECONCILIATIONS_TOTAL = Counter(
    "stocktake_reconciliations_total", "Sessions reconciled into the inventory ledger"
)
LEDGER_TRANSACTIONS_TOTAL = Counter(
    "stocktake_ledger_transactions_total", "Stock adjustment transactions posted"
)
METERS_RECONCILED_TOTAL = Counter(
    "stocktake_meters_reconciled_total", "Meters of fabric posted by reconciliations"
)

# Gauges (last observed values)
OCR_RERUN_PROGRESS = Gauge(
    "stocktake_ocr_rerun_progress_ratio",
    "Fraction of the latest OCR rerun job that has been processed",
    ["job_id"],
)
OCR_PROCESSING_MS = Gauge(
    "stocktake_ocr_processing_ms", "OCR time (ms) of the last capture"
)


def _safe_float(value: Optional[Any]) -> Optional[float]:
    try:
        return float(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def record_roll_ingested(confidence_level: Optional[str], processing_ms: Optional[float] = None) -> None:
    ROLLS_INGESTED_TOTAL.labels(confidence_level=str(confidence_level or "none")).inc()
    ms = _safe_float(processing_ms)
    if ms is not None:
        OCR_PROCESSING_MS.set(ms)


def record_review_action(action: str) -> None:
    REVIEW_ACTIONS_TOTAL.labels(action=str(action)).inc()


def record_bulk_approve(approved: int) -> None:
    if approved > 0:
        BULK_APPROVED_ROLLS_TOTAL.inc(approved)


def record_rerun_progress(job, roll_id: Optional[int], ok: bool) -> None:
    """Progress callback for rerun jobs; roll_id is None once the job has finished."""
    if roll_id is not None:
        OCR_RERUN_ITEMS_TOTAL.labels(outcome="success" if ok else "failure").inc()
    total = job.total or 0
    OCR_RERUN_PROGRESS.labels(job_id=str(job.id)).set(job.current / total if total else 1.0)


def safe_record_rerun_progress(job, roll_id: Optional[int], ok: bool) -> None:
    try:
        record_rerun_progress(job, roll_id, ok)
    except Exception:
        logger.exception("Failed to record OCR rerun metrics for job %s", getattr(job, "id", None))


def record_reconciliation(transactions_posted: int, total_meters: Decimal) -> None:
    RECONCILIATIONS_TOTAL.inc()
    if transactions_posted > 0:
        LEDGER_TRANSACTIONS_TOTAL.inc(transactions_posted)
    meters = _safe_float(total_meters)
    if meters is not None and meters > 0:
        METERS_RECONCILED_TOTAL.inc(meters)


def metrics_view(request):
    """Prometheus text exposition of the default registry."""
    return HttpResponse(generate_latest(), content_type=CONTENT_TYPE_LATEST)

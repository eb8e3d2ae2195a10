import logging
import threading
from datetime import timedelta
from typing import Callable, List, Optional

from django.db import DatabaseError, connection, transaction
from django.db.models import Q
from django.utils import timezone

from label_ocr import LabelOCREngine, OCRFailure
from label_ocr.utils.image_preprocessor import LabelImagePreprocessor

from counts.conf import stocktake_setting
from counts.models import (
    ACTIVE_RERUN_STATUSES,
    REVIEWABLE_SESSION_STATUSES,
    ConfidenceLevel,
    CountRoll,
    CountSession,
    OcrRerunJob,
    RerunJobStatus,
)
from .errors import InvalidStateError, PhotoUnavailableError, RerunInProgressError
from .ingest import apply_ocr_result
from .ocr import build_ocr_engine, build_preprocessor, recognize_photo_bytes
from .photos import read_photo, resolve_original_path
from .sessions import refresh_session_counters


logger = logging.getLogger(__name__)

ProgressCallback = Callable[[OcrRerunJob, Optional[int], bool], None]

# Per-item failures that are counted and skipped instead of aborting the batch.
ITEM_FAILURES = (PhotoUnavailableError, OCRFailure, DatabaseError, CountRoll.DoesNotExist)


def rerun_candidates(session_id: int) -> List[int]:
    """Ids of photographed rolls without a high confidence reading, in capture order."""
    return list(
        CountRoll.objects.filter(session_id=session_id)
        .exclude(photo_path="")
        .filter(
            Q(ocr_confidence_level__in=[ConfidenceLevel.LOW, ConfidenceLevel.MEDIUM])
            | Q(ocr_confidence_level__isnull=True)
        )
        .order_by("capture_sequence", "id")
        .values_list("id", flat=True)
    )


def _rerun_one(
    roll_id: int,
    engine: LabelOCREngine,
    preprocessor: Optional[LabelImagePreprocessor],
) -> CountRoll:
    """
    Fetch the full-resolution photo, read it, and persist the new OCR fields.

    Nothing is written unless the read succeeds, so a failed item keeps its
    previous OCR values.
    """
    roll = CountRoll.objects.get(id=roll_id)
    data = read_photo(resolve_original_path(roll.photo_path))
    result = recognize_photo_bytes(data, engine, preprocessor)
    apply_ocr_result(roll, result)
    # Savepoint, so a failed write leaves an enclosing transaction usable.
    with transaction.atomic():
        roll.save(update_fields=[
            "ocr_quality",
            "ocr_color",
            "ocr_lot_number",
            "ocr_meters",
            "ocr_raw_text",
            "ocr_confidence_score",
            "ocr_confidence_level",
            "is_not_label_warning",
            "ocr_status",
            "ocr_processed_at",
            "updated_at",
        ])
    return roll


def rerun_roll_ocr(
    roll_id: int,
    engine: Optional[LabelOCREngine] = None,
    preprocessor: Optional[LabelImagePreprocessor] = None,
) -> CountRoll:
    """Single-roll rerun. Failures propagate to the caller."""
    roll = CountRoll.objects.select_related("session").get(id=roll_id)
    if roll.session.status not in REVIEWABLE_SESSION_STATUSES:
        raise InvalidStateError(f"Session {roll.session.session_number} is {roll.session.status}.")
    owns_engine = engine is None
    engine = engine or build_ocr_engine()
    if preprocessor is None:
        preprocessor = build_preprocessor()
    try:
        roll = _rerun_one(roll_id, engine, preprocessor)
    finally:
        if owns_engine:
            engine.release()
    refresh_session_counters(roll.session_id)
    logger.info("Reran OCR for roll %s: level=%s", roll_id, roll.ocr_confidence_level)
    return roll


def create_rerun_job(session_id: int, requested_by: str = "") -> OcrRerunJob:
    """Snapshot the candidate rolls into a queued job. One active job per session."""
    with transaction.atomic():
        session = CountSession.objects.select_for_update().get(id=session_id)
        if session.status not in REVIEWABLE_SESSION_STATUSES:
            raise InvalidStateError(f"Session {session.session_number} is {session.status}.")
        if OcrRerunJob.objects.filter(session_id=session_id, status__in=ACTIVE_RERUN_STATUSES).exists():
            raise RerunInProgressError(f"An OCR rerun is already running for session {session.session_number}.")
        roll_ids = rerun_candidates(session_id)
        job = OcrRerunJob.objects.create(
            session=session,
            requested_by=requested_by,
            roll_ids=roll_ids,
            total=len(roll_ids),
        )
    logger.info("Created OCR rerun job %s for session %s (%d roll(s))", job.id, session.session_number, job.total)
    return job


def _cancel_requested(job_id: int) -> bool:
    return OcrRerunJob.objects.filter(id=job_id, cancel_requested=True).exists()


def claim_rerun_job(job_id: int) -> bool:
    """
    Make this process the job's only runner.

    A queued job is claimed outright. A running job is taken over only when
    its heartbeat is missing or older than OCR_RERUN_STALE_SECONDS, i.e. its
    runner died. Both are conditional updates, so two claimants never both win.
    """
    now = timezone.now()
    claimed = OcrRerunJob.objects.filter(id=job_id, status=RerunJobStatus.QUEUED).update(
        status=RerunJobStatus.RUNNING, started_at=now, heartbeat_at=now,
    )
    if claimed:
        return True
    stale_before = now - timedelta(seconds=stocktake_setting("OCR_RERUN_STALE_SECONDS"))
    return bool(
        OcrRerunJob.objects.filter(id=job_id, status=RerunJobStatus.RUNNING)
        .filter(Q(heartbeat_at__isnull=True) | Q(heartbeat_at__lt=stale_before))
        .update(heartbeat_at=now)
    )


def run_rerun_job(
    job_id: int,
    engine: Optional[LabelOCREngine] = None,
    preprocessor: Optional[LabelImagePreprocessor] = None,
    on_progress: Optional[ProgressCallback] = None,
) -> OcrRerunJob:
    """
    Process a rerun job one roll at a time, in capture order.

    The job resumes from `current`, so calling this again for an interrupted
    job continues where it stopped. A job whose runner is still alive is
    returned untouched. Cancellation is honoured between items. Progress and
    the heartbeat are saved after every item and the OCR engine is released
    at the end, whatever the outcome.
    """
    if not claim_rerun_job(job_id):
        job = OcrRerunJob.objects.get(id=job_id)
        if job.is_active:
            logger.info("OCR rerun job %s already has a live runner; not starting another", job_id)
        return job
    job = OcrRerunJob.objects.get(id=job_id)

    owns_engine = engine is None
    try:
        if preprocessor is None:
            preprocessor = build_preprocessor()
        if engine is None:
            engine = build_ocr_engine()
        for index in range(job.current, job.total):
            if _cancel_requested(job.id):
                job.status = RerunJobStatus.CANCELLED
                logger.info("OCR rerun job %s cancelled at %d/%d", job.id, job.current, job.total)
                break
            roll_id = job.roll_ids[index]
            ok = True
            try:
                _rerun_one(roll_id, engine, preprocessor)
                job.success_count += 1
            except ITEM_FAILURES as exc:
                ok = False
                job.failure_count += 1
                job.failures = list(job.failures) + [{"roll_id": roll_id, "error": str(exc)}]
                logger.warning("OCR rerun job %s: roll %s failed: %s", job.id, roll_id, exc)
            job.current = index + 1
            job.heartbeat_at = timezone.now()
            job.save(update_fields=["current", "success_count", "failure_count", "failures", "heartbeat_at"])
            if on_progress is not None:
                on_progress(job, roll_id, ok)
        else:
            job.status = RerunJobStatus.COMPLETED
    except Exception as exc:
        job.status = RerunJobStatus.FAILED
        job.last_error = str(exc)
        logger.exception("OCR rerun job %s failed", job.id)
    finally:
        if owns_engine and engine is not None:
            engine.release()
        job.finished_at = timezone.now()
        job.save(update_fields=["status", "last_error", "finished_at"])
        refresh_session_counters(job.session_id)

    if on_progress is not None:
        on_progress(job, None, job.status == RerunJobStatus.COMPLETED)
    logger.info(
        "OCR rerun job %s %s: %d ok, %d failed of %d",
        job.id, job.status, job.success_count, job.failure_count, job.total,
    )
    return job


def _run_in_thread(job_id: int, on_progress: Optional[ProgressCallback]) -> None:
    try:
        run_rerun_job(job_id, on_progress=on_progress)
    finally:
        connection.close()


def launch_rerun_job(job: OcrRerunJob, on_progress: Optional[ProgressCallback] = None) -> OcrRerunJob:
    """Run the job on a background thread when OCR_RERUN_ASYNC is set, else inline."""
    if not stocktake_setting("OCR_RERUN_ASYNC"):
        return run_rerun_job(job.id, on_progress=on_progress)
    thread = threading.Thread(
        target=_run_in_thread, args=(job.id, on_progress), name=f"ocr-rerun-{job.id}", daemon=True,
    )
    transaction.on_commit(thread.start)
    return job


def cancel_rerun_job(job_id: int) -> OcrRerunJob:
    """Ask a job to stop. A queued job is cancelled at once; a running one stops at the next item."""
    with transaction.atomic():
        job = OcrRerunJob.objects.select_for_update().get(id=job_id)
        if not job.is_active:
            return job
        job.cancel_requested = True
        fields = ["cancel_requested"]
        if job.status == RerunJobStatus.QUEUED:
            job.status = RerunJobStatus.CANCELLED
            job.finished_at = timezone.now()
            fields += ["status", "finished_at"]
        job.save(update_fields=fields)
    logger.info("Cancel requested for OCR rerun job %s", job_id)
    return job

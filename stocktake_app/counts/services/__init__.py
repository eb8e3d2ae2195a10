"""
Stock-take reconciliation engine.

Views and commands call these functions; they own every state transition on
sessions, rolls and rerun jobs.
"""
from .confidence import classify_confidence
from .duplicates import find_possible_duplicate
from .errors import (
    ConflictError,
    InvalidStateError,
    NotReadyError,
    PhotoUnavailableError,
    PreconditionError,
    ReconciliationFailedError,
    RerunInProgressError,
    RollNotPendingError,
    StockTakeError,
)
from .ingest import CounterEntry, ingest_roll
from .reconciliation import ReconciliationOutcome, complete_review
from .rerun import (
    cancel_rerun_job,
    claim_rerun_job,
    create_rerun_job,
    launch_rerun_job,
    rerun_candidates,
    rerun_roll_ocr,
    run_rerun_job,
)
from .sessions import (
    can_complete,
    cancel_session,
    end_session,
    flag_idle_sessions,
    list_sessions,
    refresh_session_counters,
    start_or_resume_session,
)
from .triage import (
    ReviewQuery,
    RollFilter,
    approve_roll,
    bulk_approve,
    edit_roll,
    reject_roll,
    request_recount,
    review_page,
    select_ready_for_approval,
    toggle_select_all,
)

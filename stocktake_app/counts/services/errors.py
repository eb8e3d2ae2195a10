class StockTakeError(Exception):
    """Base class for stock-take engine errors. `code` is a stable machine-readable tag."""

    code = "stocktake_error"


class InvalidStateError(StockTakeError):
    """The session or roll is in a state that does not allow the operation."""

    code = "invalid_state"


class PreconditionError(StockTakeError):
    code = "precondition_failed"


class RollNotPendingError(PreconditionError):
    code = "roll_not_pending"

    def __init__(self, roll_id, status):
        self.roll_id = roll_id
        self.status = status
        super().__init__(f"Roll {roll_id} is {status}; only rolls pending review can be decided.")


class NotReadyError(PreconditionError):
    """The session still has pending rolls (or no rolls at all) and cannot be reconciled."""

    code = "not_ready"


class ConflictError(StockTakeError):
    """A concurrent writer won a race we could not recover from."""

    code = "conflict"


class RerunInProgressError(InvalidStateError):
    code = "rerun_in_progress"


class PhotoUnavailableError(StockTakeError):
    code = "photo_unavailable"


class ReconciliationFailedError(StockTakeError):
    """Ledger posting failed; the session was left reviewable so the commit can be retried."""

    code = "reconciliation_failed"

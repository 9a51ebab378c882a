"""
Domain exceptions for the treasury core.

Services raise these; the handler registered in ``app.main`` turns any
``TreasuryError`` into a JSON response using ``status_code`` and ``code``.
"""


class TreasuryError(Exception):
    """Base exception for treasury service errors."""
    status_code = 400
    code = "treasury_error"
    default_detail = "Treasury operation failed."

    def __init__(self, detail: str = None):
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


class ValidationError(TreasuryError):
    """Missing or malformed input."""
    status_code = 400
    code = "validation_error"
    default_detail = "Invalid input."


class NotFound(TreasuryError):
    """Record, template or member not found."""
    status_code = 404
    code = "not_found"
    default_detail = "Not found."


class DuplicateRecord(TreasuryError):
    """A payment record already exists for this member and month."""
    status_code = 409
    code = "duplicate_record"
    default_detail = "Payment record already exists for this month."


class DuplicateActiveTemplate(TreasuryError):
    """An active monthly template already exists for this month."""
    status_code = 409
    code = "duplicate_active_template"
    default_detail = "An active monthly record already exists for this month."


class InvalidStateTransition(TreasuryError):
    """Operation is not legal from the record's current status."""
    status_code = 400
    code = "invalid_state_transition"
    default_detail = "Operation not allowed in the current payment status."


class AlreadyVerified(InvalidStateTransition):
    """Payment is already officially Paid."""
    code = "already_verified"
    default_detail = "Payment already verified."


class AlreadyPending(InvalidStateTransition):
    """A resubmission is already waiting for the treasurer."""
    code = "already_pending"
    default_detail = "A resubmission is already awaiting treasurer review."


class NotConfirmed(TreasuryError):
    """Treasurer tried to verify before the member confirmed payment."""
    status_code = 400
    code = "not_confirmed"
    default_detail = "Member has not confirmed this payment."


class InsufficientBalance(TreasuryError):
    """Wallet debit exceeds the current balance."""
    status_code = 400
    code = "insufficient_balance"
    default_detail = "Insufficient balance."


class Unauthorized(TreasuryError):
    """Actor does not own the record or lacks the role."""
    status_code = 403
    code = "unauthorized"
    default_detail = "Unauthorized."


class ConcurrentUpdate(TreasuryError):
    """Optimistic lock retries exhausted."""
    status_code = 409
    code = "concurrent_update"
    default_detail = "The record was modified concurrently. Please retry."

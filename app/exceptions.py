"""
exceptions.py — Domain error taxonomy

Services raise these; main.py maps them to structured JSON responses.
All are recoverable by the caller (retry later, request a new code,
re-read state). Auth errors carry a precise `reason` for operators but
are rendered to callers with one vague message.
"""


class CondoError(Exception):
    """Base error for the assistance core."""

    status_code = 400

    def __init__(self, message: str = ""):
        super().__init__(message or self.__class__.__doc__ or self.__class__.__name__)
        self.message = str(self.args[0])


# ── Authentication ───────────────────────────────────────────────────


class AuthError(CondoError):
    """Access code rejected."""

    status_code = 401
    public_message = "Invalid or expired access code"


class RateLimited(AuthError):
    """Too many failed attempts from this address."""

    status_code = 429
    public_message = "Too many attempts, try again later"


class InvalidCode(AuthError):
    """Unknown or revoked access code."""


class CodeExpired(AuthError):
    """Access code expired beyond its grace period."""


class SupplierInactive(AuthError):
    """Access code belongs to an inactive supplier."""


# ── Workflow ─────────────────────────────────────────────────────────


class NotFound(CondoError):
    """Record not found."""

    status_code = 404


class WorkflowError(CondoError):
    """Workflow operation refused."""

    status_code = 409


class InvalidTransition(WorkflowError):
    """Event not allowed from the current status."""

    def __init__(self, message: str = "", *, current_status: str | None = None):
        super().__init__(message)
        self.current_status = current_status


class QuotationStateConflict(InvalidTransition):
    """Quotation is not in a state that allows this action."""


class NotAssignedSupplier(WorkflowError):
    """Supplier is not assigned to this assistance."""

    status_code = 403


class ScheduleExhausted(WorkflowError):
    """Follow-up schedule has used all of its attempts."""


class InvalidUpload(CondoError):
    """File type not allowed for its category, or file too large."""

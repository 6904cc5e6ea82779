"""
constants.py — Closed status and event vocabularies

Every status column and every workflow event is one of these enums.
Columns store the enum's string value; services compare against the
enum members, never against literal strings.

Called by: models, services, schemas, routers
"""

import enum


class Priority(str, enum.Enum):
    NORMAL = "normal"
    URGENT = "urgent"
    CRITICAL = "critical"


class AssistanceStatus(str, enum.Enum):
    PENDING = "pending"
    AWAITING_QUOTATION = "awaiting_quotation"
    QUOTATION_RECEIVED = "quotation_received"
    QUOTATION_APPROVED = "quotation_approved"
    QUOTATION_REJECTED = "quotation_rejected"
    ACCEPTED = "accepted"
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    AWAITING_VALIDATION = "awaiting_validation"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset({AssistanceStatus.COMPLETED, AssistanceStatus.CANCELLED})
OPEN_STATUSES = frozenset(s for s in AssistanceStatus if s not in TERMINAL_STATUSES)


class WorkflowEvent(str, enum.Enum):
    """Intent of a caller, shared by the portal entry points and the state machine."""

    ACCEPT = "accept"
    DECLINE = "decline"
    REQUEST_QUOTATION = "request_quotation"
    SUBMIT_QUOTATION = "submit_quotation"
    APPROVE_QUOTATION = "approve_quotation"
    REJECT_QUOTATION = "reject_quotation"
    SCHEDULE = "schedule"
    START = "start"
    COMPLETE = "complete"
    VALIDATE = "validate"
    CANCEL = "cancel"


class ActorType(str, enum.Enum):
    ADMIN = "admin"
    SUPPLIER = "supplier"
    SYSTEM = "system"


class QuotationStatus(str, enum.Enum):
    PENDING = "pending"
    SUBMITTED = "submitted"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXPIRED = "expired"


OPEN_QUOTATION_STATUSES = frozenset({QuotationStatus.PENDING, QuotationStatus.SUBMITTED})


class ResponseType(str, enum.Enum):
    ACCEPTED = "accepted"
    DECLINED = "declined"


class FollowUpType(str, enum.Enum):
    RESPONSE = "response"
    QUOTATION = "quotation"
    WORK_REMINDER = "work_reminder"


class FollowUpStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SENT = "sent"
    EXHAUSTED = "exhausted"
    CANCELLED = "cancelled"


ACTIVE_FOLLOW_UP_STATUSES = frozenset({FollowUpStatus.PENDING, FollowUpStatus.PROCESSING})


class NotificationStatus(str, enum.Enum):
    QUEUED = "queued"
    SENT = "sent"
    FAILED = "failed"


class AttemptOutcome(str, enum.Enum):
    SUCCESS = "success"
    INVALID = "invalid"
    EXPIRED = "expired"
    REVOKED = "revoked"
    INACTIVE_SUPPLIER = "inactive_supplier"
    RATE_LIMITED = "rate_limited"


# Outcomes that count toward the per-IP failure threshold. Rate-limited
# attempts never reach the code store, so they do not extend a block.
COUNTED_FAILURES = frozenset({
    AttemptOutcome.INVALID,
    AttemptOutcome.EXPIRED,
    AttemptOutcome.REVOKED,
    AttemptOutcome.INACTIVE_SUPPLIER,
})


class SecurityEventType(str, enum.Enum):
    BRUTE_FORCE_BLOCKED = "magic_code_brute_force_blocked"
    INVALID_CODE = "invalid_magic_code_attempt"
    REVOKED_CODE = "revoked_magic_code_attempt"
    INACTIVE_SUPPLIER = "inactive_supplier_access_attempt"
    EXCESSIVE_USAGE = "excessive_magic_code_usage"
    AUTO_RENEWED = "magic_code_auto_renewed"
    EXPIRED_GRACE_PERIOD = "expired_magic_code_grace_period"
    EXPIRED_REJECTED = "expired_magic_code_rejected"
    CODE_ISSUED = "magic_code_issued"
    CODES_REVOKED = "magic_codes_revoked"


class Severity(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class NotificationTemplate(str, enum.Enum):
    MAGIC_CODE = "magic_code"
    RESPONSE_REMINDER = "response_reminder"
    QUOTATION_REMINDER = "quotation_reminder"
    WORK_REMINDER = "work_reminder"
    FOLLOW_UP_EXHAUSTED = "follow_up_exhausted"
    SLA_ESCALATION = "sla_escalation"
    STATUS_CHANGED = "status_changed"
    SUPPLIER_MESSAGE = "supplier_message"
    ADMIN_MESSAGE = "admin_message"

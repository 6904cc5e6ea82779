"""
quotations.py — Quotation sub-workflow

Quotation records and their own small lifecycle:
pending → approved | rejected | expired. The assistance-level effect of
submitting, approving or rejecting a quotation is applied through
workflow.apply_event; this module owns the quotation rows themselves.

Business Rules:
- Amount must be > 0
- Expiry is lazy: a pending/submitted quotation whose validity window has
  elapsed reads as "expired" (effective_status) and is persisted as such
  the next time it is loaded through expire_if_lapsed
- Only pending/submitted, unexpired quotations can be approved
- Rejection also accepts a lapsed quotation (read as or stored as
  expired), so the assistance can loop back to awaiting_quotation
- At most one approved quotation per assistance (checked here, enforced
  again by the uq_quotations_one_approved partial index)
- Approving one quotation does not touch its siblings

Called by: services/workflow.py, services/portal_service.py, routers/admin.py
Depends on: models (Quotation), constants
"""

import logging
from datetime import datetime, timedelta
from decimal import Decimal

from sqlalchemy import update
from sqlalchemy.orm import Session

from ..config import settings
from ..constants import OPEN_QUOTATION_STATUSES, QuotationStatus, WorkflowEvent
from ..exceptions import NotFound, QuotationStateConflict, WorkflowError
from ..models import Quotation
from ..utils import utc, utcnow

log = logging.getLogger("condo.quotations")

_OPEN = [s.value for s in OPEN_QUOTATION_STATUSES]


def effective_status(quotation: Quotation, now: datetime | None = None) -> QuotationStatus:
    """Stored status, except open quotations past their validity window read as expired."""
    status = QuotationStatus(quotation.status)
    if status not in OPEN_QUOTATION_STATUSES:
        return status
    submitted = utc(quotation.submitted_at or quotation.created_at)
    if submitted is None:
        return status
    days = quotation.validity_days or settings.quotation_validity_days
    if (now or utcnow()) > submitted + timedelta(days=days):
        return QuotationStatus.EXPIRED
    return status


def expire_if_lapsed(db: Session, quotation: Quotation, now: datetime | None = None) -> Quotation:
    """Persist the lazy expiry, if any. Commits only when something changed."""
    now = now or utcnow()
    if quotation.status in _OPEN and effective_status(quotation, now) == QuotationStatus.EXPIRED:
        result = db.execute(
            update(Quotation)
            .where(Quotation.id == quotation.id, Quotation.status.in_(_OPEN))
            .values(status=QuotationStatus.EXPIRED.value, expired_at=now)
            .execution_options(synchronize_session=False)
        )
        db.commit()
        db.refresh(quotation)
        if result.rowcount:
            log.info(f"Quotation {quotation.id} expired (validity {quotation.validity_days}d)")
    return quotation


def get_quotation(db: Session, quotation_id: int, now: datetime | None = None) -> Quotation:
    quotation = db.get(Quotation, quotation_id)
    if not quotation:
        raise NotFound(f"Quotation {quotation_id} not found")
    return expire_if_lapsed(db, quotation, now)


def list_quotations(db: Session, assistance_id: int, now: datetime | None = None) -> list[Quotation]:
    quotations = (
        db.query(Quotation)
        .filter(Quotation.assistance_id == assistance_id)
        .order_by(Quotation.submitted_at.desc(), Quotation.id.desc())
        .all()
    )
    return [expire_if_lapsed(db, q, now) for q in quotations]


def has_approved_quotation(db: Session, assistance_id: int, exclude_id: int | None = None) -> bool:
    q = db.query(Quotation.id).filter(
        Quotation.assistance_id == assistance_id,
        Quotation.status == QuotationStatus.APPROVED.value,
    )
    if exclude_id is not None:
        q = q.filter(Quotation.id != exclude_id)
    return q.first() is not None


# ── Record-level steps (run inside a workflow transition) ────────────


def create_quotation(
    db: Session,
    *,
    assistance_id: int,
    supplier_id: int,
    amount,
    description: str | None = None,
    notes: str | None = None,
    validity_days: int | None = None,
    now: datetime,
) -> Quotation:
    amount = Decimal(str(amount)) if amount is not None else None
    if amount is None or amount <= 0:
        raise WorkflowError("Quotation amount must be greater than zero")
    quotation = Quotation(
        assistance_id=assistance_id,
        supplier_id=supplier_id,
        amount=amount,
        description=description,
        notes=notes,
        validity_days=validity_days or settings.quotation_validity_days,
        status=QuotationStatus.PENDING.value,
        submitted_at=now,
        created_at=now,
    )
    db.add(quotation)
    db.flush()
    return quotation


def load_decidable(
    db: Session, assistance_id: int, quotation_id, now: datetime, *, allow_lapsed: bool = False
) -> Quotation:
    """Fetch a quotation that an admin may approve (or, with allow_lapsed, reject) right now."""
    if quotation_id is None:
        raise QuotationStateConflict("quotation_id is required")
    quotation = db.get(Quotation, quotation_id)
    if not quotation or quotation.assistance_id != assistance_id:
        raise NotFound(f"Quotation {quotation_id} not found for assistance {assistance_id}")
    status = effective_status(quotation, now)
    if allow_lapsed and status == QuotationStatus.EXPIRED:
        return quotation
    if status not in OPEN_QUOTATION_STATUSES:
        raise QuotationStateConflict(f"Quotation {quotation_id} is {status.value}")
    return quotation


def _decide(db: Session, quotation: Quotation, values: dict, from_statuses: list[str] = _OPEN) -> None:
    result = db.execute(
        update(Quotation)
        .where(Quotation.id == quotation.id, Quotation.status.in_(from_statuses))
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise QuotationStateConflict(f"Quotation {quotation.id} was decided concurrently")
    db.refresh(quotation)


def mark_approved(db: Session, quotation: Quotation, approved_by_id: int | None, now: datetime) -> None:
    if has_approved_quotation(db, quotation.assistance_id, exclude_id=quotation.id):
        raise QuotationStateConflict(
            f"Assistance {quotation.assistance_id} already has an approved quotation"
        )
    _decide(
        db,
        quotation,
        {"status": QuotationStatus.APPROVED.value, "approved_at": now, "approved_by_id": approved_by_id},
    )


def mark_rejected(db: Session, quotation: Quotation, reason: str | None, now: datetime) -> None:
    values = {"status": QuotationStatus.REJECTED.value, "rejected_at": now, "rejection_reason": reason}
    if effective_status(quotation, now) == QuotationStatus.EXPIRED and quotation.expired_at is None:
        values["expired_at"] = now
    _decide(db, quotation, values, _OPEN + [QuotationStatus.EXPIRED.value])


# ── Entry points ─────────────────────────────────────────────────────


def submit_quotation(
    db: Session,
    assistance_id: int,
    supplier_id: int,
    amount,
    *,
    description: str | None = None,
    notes: str | None = None,
    validity_days: int | None = None,
    now: datetime | None = None,
) -> Quotation:
    """Supplier submits a quotation: awaiting_quotation → quotation_received."""
    from .workflow import Actor, apply_event

    apply_event(
        db, assistance_id, WorkflowEvent.SUBMIT_QUOTATION, Actor.supplier(supplier_id),
        notes=notes, now=now, amount=amount, description=description,
        validity_days=validity_days,
    )
    return (
        db.query(Quotation)
        .filter(Quotation.assistance_id == assistance_id)
        .order_by(Quotation.id.desc())
        .first()
    )


def approve_quotation(
    db: Session, quotation_id: int, admin_id: int | None, *, notes: str | None = None, now: datetime | None = None
) -> Quotation:
    """Admin approves: quotation → approved, assistance quotation_received → accepted."""
    from .workflow import Actor, apply_event

    quotation = db.get(Quotation, quotation_id)
    if not quotation:
        raise NotFound(f"Quotation {quotation_id} not found")
    apply_event(
        db, quotation.assistance_id, WorkflowEvent.APPROVE_QUOTATION, Actor.admin(admin_id),
        notes=notes, now=now, quotation_id=quotation_id,
    )
    db.refresh(quotation)
    return quotation


def reject_quotation(
    db: Session,
    quotation_id: int,
    admin_id: int | None,
    *,
    reason: str | None = None,
    now: datetime | None = None,
) -> Quotation:
    """Admin rejects: quotation → rejected, assistance back to awaiting_quotation."""
    from .workflow import Actor, apply_event

    quotation = db.get(Quotation, quotation_id)
    if not quotation:
        raise NotFound(f"Quotation {quotation_id} not found")
    apply_event(
        db, quotation.assistance_id, WorkflowEvent.REJECT_QUOTATION, Actor.admin(admin_id),
        notes=reason, now=now, quotation_id=quotation_id, reason=reason,
    )
    db.refresh(quotation)
    return quotation

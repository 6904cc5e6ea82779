"""
assistances.py — Assistance creation, lookup, deletion and message thread

Admin-side record management around the workflow. Status is never set
here beyond the initial "pending".

Business Rules:
- assistance_number is the next integer after the current maximum
- response_deadline defaults from priority (RESPONSE_SLA_HOURS)
- Creating an assistance with an assigned supplier does not send a code;
  that is an explicit admin action (access_codes.issue_access_code)
- An assistance with quotations, responses, messages or activity cannot
  be deleted unless cascade=True
- Admin replies land in communication_logs and notify the assigned supplier

Called by: routers/admin.py
Depends on: models, services/notifier.py
"""

import logging
from datetime import datetime, timedelta

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..constants import ActorType, AssistanceStatus, NotificationTemplate, Priority
from ..exceptions import NotFound, WorkflowError
from ..models import (
    AccessCode,
    ActivityLog,
    Assistance,
    Building,
    CommunicationLog,
    FollowUpSchedule,
    InterventionType,
    Notification,
    Quotation,
    Supplier,
    SupplierResponse,
)
from ..utils import utcnow
from .notifier import Notifier, OutboxNotifier, dispatch

log = logging.getLogger("condo.assistances")

RESPONSE_SLA_HOURS = {Priority.CRITICAL: 4, Priority.URGENT: 24, Priority.NORMAL: 72}

# Rows that block a plain delete, in the order a cascade removes them
_DEPENDENTS = (
    Quotation,
    SupplierResponse,
    CommunicationLog,
    ActivityLog,
)


def get_assistance(db: Session, assistance_id: int) -> Assistance:
    assistance = db.get(Assistance, assistance_id)
    if not assistance:
        raise NotFound(f"Assistance {assistance_id} not found")
    return assistance


def create_assistance(
    db: Session,
    *,
    title: str,
    building_id: int,
    intervention_type_id: int,
    priority: Priority | str = Priority.NORMAL,
    description: str | None = None,
    assigned_supplier_id: int | None = None,
    requires_quotation: bool = False,
    requires_validation: bool = False,
    response_deadline: datetime | None = None,
    admin_notes: str | None = None,
    created_by_id: int | None = None,
    now: datetime | None = None,
) -> Assistance:
    now = now or utcnow()
    priority = Priority(priority)
    if not db.get(Building, building_id):
        raise NotFound(f"Building {building_id} not found")
    if not db.get(InterventionType, intervention_type_id):
        raise NotFound(f"Intervention type {intervention_type_id} not found")
    if assigned_supplier_id is not None:
        supplier = db.get(Supplier, assigned_supplier_id)
        if not supplier:
            raise NotFound(f"Supplier {assigned_supplier_id} not found")
        if not supplier.is_active:
            raise WorkflowError(f"Supplier {assigned_supplier_id} is inactive")

    next_number = (db.query(func.max(Assistance.assistance_number)).scalar() or 0) + 1
    assistance = Assistance(
        assistance_number=next_number,
        title=title.strip(),
        description=description,
        building_id=building_id,
        intervention_type_id=intervention_type_id,
        assigned_supplier_id=assigned_supplier_id,
        priority=priority.value,
        status=AssistanceStatus.PENDING.value,
        requires_quotation=requires_quotation,
        requires_validation=requires_validation,
        response_deadline=response_deadline or now + timedelta(hours=RESPONSE_SLA_HOURS[priority]),
        admin_notes=admin_notes,
        created_by_id=created_by_id,
        created_at=now,
        updated_at=now,
    )
    db.add(assistance)
    db.commit()
    db.refresh(assistance)
    log.info(f"Assistance #{assistance.assistance_number} created ({priority.value})")
    return assistance


def list_assistances(
    db: Session,
    *,
    status: str | None = None,
    supplier_id: int | None = None,
    limit: int = 100,
    offset: int = 0,
) -> tuple[list[Assistance], int]:
    q = db.query(Assistance)
    if status:
        q = q.filter(Assistance.status == status)
    if supplier_id:
        q = q.filter(Assistance.assigned_supplier_id == supplier_id)
    total = q.count()
    items = q.order_by(Assistance.created_at.desc(), Assistance.id.desc()).offset(offset).limit(limit).all()
    return items, total


def delete_assistance(db: Session, assistance_id: int, *, cascade: bool = False) -> None:
    """Hard delete. Refuses while dependent records exist unless cascade is set."""
    assistance = get_assistance(db, assistance_id)
    counts = {
        model.__tablename__: db.query(model).filter(model.assistance_id == assistance_id).count()
        for model in _DEPENDENTS
    }
    blocking = {name: n for name, n in counts.items() if n}
    if blocking and not cascade:
        raise WorkflowError(
            f"Assistance {assistance_id} has dependent records ({blocking}); delete with cascade"
        )

    for model in (*_DEPENDENTS, Notification, FollowUpSchedule):
        db.query(model).filter(model.assistance_id == assistance_id).delete(synchronize_session=False)
    db.query(AccessCode).filter(AccessCode.assistance_id == assistance_id).update(
        {AccessCode.assistance_id: None}, synchronize_session=False
    )
    db.delete(assistance)
    db.commit()
    log.warning(f"Assistance {assistance_id} deleted (cascade={cascade}, removed={blocking})")


# ── Communication log ───────────────────────────────────────────────────


def list_messages(db: Session, assistance_id: int) -> list[CommunicationLog]:
    get_assistance(db, assistance_id)
    return (
        db.query(CommunicationLog)
        .filter(CommunicationLog.assistance_id == assistance_id)
        .order_by(CommunicationLog.created_at.asc(), CommunicationLog.id.asc())
        .all()
    )


def add_admin_message(
    db: Session,
    assistance_id: int,
    admin_id: int | None,
    message: str,
    *,
    message_type: str = "general",
    notifier: Notifier | None = None,
    now: datetime | None = None,
) -> CommunicationLog:
    """Admin reply on an assistance thread, forwarded to the assigned supplier."""
    now = now or utcnow()
    assistance = get_assistance(db, assistance_id)
    message = (message or "").strip()
    if not message:
        raise WorkflowError("Message cannot be empty")

    entry = CommunicationLog(
        assistance_id=assistance.id,
        sender_type=ActorType.ADMIN.value,
        sender_id=admin_id,
        message=message,
        message_type=message_type or "general",
        created_at=now,
    )
    db.add(entry)
    db.flush()

    supplier = db.get(Supplier, assistance.assigned_supplier_id) if assistance.assigned_supplier_id else None
    dispatch(
        notifier or OutboxNotifier(db),
        supplier.email if supplier else None,
        NotificationTemplate.ADMIN_MESSAGE,
        {
            "assistance_id": assistance.id,
            "assistance_number": assistance.assistance_number,
            "title": assistance.title,
            "message": message,
            "message_type": entry.message_type,
        },
    )
    db.commit()
    log.info(f"Admin {admin_id} replied on assistance {assistance.id}")
    return entry

"""
portal_service.py — Supplier portal entry points

Every function takes the raw magic code and re-runs validate() before
touching anything. There is no token or cookie: the code is the whole
credential on every request.

Business Rules:
- validate() first, then scope: the assistance must be assigned to the
  authenticated supplier, and a code bound to an assistance only reaches
  that assistance (NotAssignedSupplier otherwise)
- State changes go through workflow.apply_event with a supplier Actor
- Messages are stored in communications_log and forwarded to admins
- Uploads are checked against the per-category content types and the
  10MB cap, handed to the injected FileStore and recorded in activity_log

Called by: routers/portal.py
Depends on: services/magic_code_auth.py, services/workflow.py, services/quotations.py
"""

import logging
import re
from datetime import datetime
from typing import Protocol

from sqlalchemy.orm import Session

from ..constants import OPEN_STATUSES, ActorType, NotificationTemplate, WorkflowEvent
from ..exceptions import InvalidUpload, NotAssignedSupplier, NotFound, WorkflowError
from ..models import ActivityLog, Assistance, CommunicationLog, Quotation
from ..utils import utcnow
from . import quotations as quotation_service
from .magic_code_auth import SupplierSession, validate
from .notifier import Notifier, OutboxNotifier, admin_recipients, dispatch
from .workflow import Actor, apply_event

log = logging.getLogger("condo.portal")


def authenticate(
    db: Session, code: str, ip: str | None, user_agent: str | None = None, *, now: datetime | None = None
) -> SupplierSession:
    return validate(db, code, ip, user_agent, now=now)


def _scoped(
    db: Session, code: str, ip: str | None, user_agent: str | None, assistance_id: int, now: datetime | None
) -> tuple[SupplierSession, Assistance]:
    session = validate(db, code, ip, user_agent, now=now)
    assistance = db.get(Assistance, assistance_id)
    if not assistance:
        raise NotFound(f"Assistance {assistance_id} not found")
    if assistance.assigned_supplier_id != session.supplier.id:
        raise NotAssignedSupplier(
            f"Supplier {session.supplier.id} is not assigned to assistance {assistance_id}"
        )
    if session.assistance_id is not None and session.assistance_id != assistance.id:
        raise NotAssignedSupplier(f"Access code is bound to assistance {session.assistance_id}")
    return session, assistance


def list_supplier_assistances(
    db: Session,
    code: str,
    ip: str | None,
    user_agent: str | None = None,
    *,
    include_closed: bool = False,
    now: datetime | None = None,
) -> tuple[SupplierSession, list[Assistance]]:
    """Assistances visible to the code: the bound one, or all assigned to the supplier."""
    session = validate(db, code, ip, user_agent, now=now)
    q = db.query(Assistance).filter(Assistance.assigned_supplier_id == session.supplier.id)
    if session.assistance_id is not None:
        q = q.filter(Assistance.id == session.assistance_id)
    if not include_closed:
        q = q.filter(Assistance.status.in_([s.value for s in OPEN_STATUSES]))
    return session, q.order_by(Assistance.created_at.desc(), Assistance.id.desc()).all()


def _transition(
    db, code, ip, user_agent, assistance_id, event: WorkflowEvent, *, notes=None, now=None, **payload
) -> Assistance:
    session, assistance = _scoped(db, code, ip, user_agent, assistance_id, now)
    return apply_event(
        db, assistance.id, event, Actor.supplier(session.supplier.id), notes=notes, now=now, **payload
    )


def accept(
    db: Session,
    code: str,
    ip: str | None,
    user_agent: str | None,
    assistance_id: int,
    *,
    notes: str | None = None,
    scheduled_start_date: datetime | None = None,
    scheduled_end_date: datetime | None = None,
    estimated_duration_hours: float | None = None,
    now: datetime | None = None,
) -> Assistance:
    """Accept an assignment. A proposed start date makes it land on scheduled."""
    return _transition(
        db, code, ip, user_agent, assistance_id, WorkflowEvent.ACCEPT, notes=notes, now=now,
        scheduled_start_date=scheduled_start_date, scheduled_end_date=scheduled_end_date,
        estimated_duration_hours=estimated_duration_hours,
    )


def decline(
    db: Session, code: str, ip: str | None, user_agent: str | None, assistance_id: int,
    *, reason: str, notes: str | None = None, now: datetime | None = None,
) -> Assistance:
    return _transition(
        db, code, ip, user_agent, assistance_id, WorkflowEvent.DECLINE, notes=notes, now=now, reason=reason
    )


def schedule(
    db: Session, code: str, ip: str | None, user_agent: str | None, assistance_id: int,
    *, scheduled_start_date: datetime, scheduled_end_date: datetime | None = None,
    notes: str | None = None, now: datetime | None = None,
) -> Assistance:
    return _transition(
        db, code, ip, user_agent, assistance_id, WorkflowEvent.SCHEDULE, notes=notes, now=now,
        scheduled_start_date=scheduled_start_date, scheduled_end_date=scheduled_end_date,
    )


def start_work(
    db: Session, code: str, ip: str | None, user_agent: str | None, assistance_id: int,
    *, notes: str | None = None, now: datetime | None = None,
) -> Assistance:
    return _transition(db, code, ip, user_agent, assistance_id, WorkflowEvent.START, notes=notes, now=now)


def complete_work(
    db: Session, code: str, ip: str | None, user_agent: str | None, assistance_id: int,
    *, notes: str | None = None, final_cost=None, now: datetime | None = None,
) -> Assistance:
    return _transition(
        db, code, ip, user_agent, assistance_id, WorkflowEvent.COMPLETE, notes=notes, now=now,
        final_cost=final_cost,
    )


def cancel(
    db: Session, code: str, ip: str | None, user_agent: str | None, assistance_id: int,
    *, reason: str | None = None, now: datetime | None = None,
) -> Assistance:
    return _transition(
        db, code, ip, user_agent, assistance_id, WorkflowEvent.CANCEL, notes=reason, now=now, reason=reason
    )


def submit_quotation(
    db: Session,
    code: str,
    ip: str | None,
    user_agent: str | None,
    assistance_id: int,
    *,
    amount,
    description: str | None = None,
    notes: str | None = None,
    validity_days: int | None = None,
    now: datetime | None = None,
) -> Quotation:
    session, assistance = _scoped(db, code, ip, user_agent, assistance_id, now)
    return quotation_service.submit_quotation(
        db, assistance.id, session.supplier.id, amount,
        description=description, notes=notes, validity_days=validity_days, now=now,
    )


def send_message(
    db: Session,
    code: str,
    ip: str | None,
    user_agent: str | None,
    assistance_id: int,
    *,
    message: str,
    message_type: str = "general",
    notifier: Notifier | None = None,
    now: datetime | None = None,
) -> CommunicationLog:
    """Store a supplier message on the assistance and forward it to admins."""
    session, assistance = _scoped(db, code, ip, user_agent, assistance_id, now)
    message = (message or "").strip()
    if not message:
        raise WorkflowError("Message cannot be empty")

    now = now or utcnow()
    entry = CommunicationLog(
        assistance_id=assistance.id,
        sender_type=ActorType.SUPPLIER.value,
        sender_id=session.supplier.id,
        message=message,
        message_type=message_type or "general",
        created_at=now,
    )
    db.add(entry)
    db.flush()

    notifier = notifier or OutboxNotifier(db)
    payload = {
        "assistance_id": assistance.id,
        "assistance_number": assistance.assistance_number,
        "supplier_name": session.supplier.name,
        "message": message,
        "message_type": entry.message_type,
    }
    for email in admin_recipients(db):
        dispatch(notifier, email, NotificationTemplate.SUPPLIER_MESSAGE, payload)
    db.commit()
    log.info(f"Supplier {session.supplier.id} sent a message on assistance {assistance.id}")
    return entry


# ── File uploads ─────────────────────────────────────────────────────

ALLOWED_UPLOAD_TYPES = {
    "quotation": frozenset({"application/pdf"}),
    "photo": frozenset({"image/jpeg", "image/png", "image/webp"}),
    "document": frozenset({"application/pdf", "image/jpeg", "image/png"}),
}
MAX_UPLOAD_BYTES = 10 * 1024 * 1024


class FileStore(Protocol):
    """Blob storage for supplier files. Lives outside the core."""

    def put(self, path: str, data: bytes, content_type: str) -> None:
        ...


def _safe_filename(filename: str) -> str:
    name = re.sub(r"[^A-Za-z0-9._-]", "_", (filename or "").strip())[-100:]
    return name.lstrip(".") or "file"


def upload_file(
    db: Session,
    code: str,
    ip: str | None,
    user_agent: str | None,
    assistance_id: int,
    *,
    category: str,
    filename: str,
    content_type: str,
    data: bytes,
    store: FileStore,
    now: datetime | None = None,
) -> ActivityLog:
    """Hand a supplier file to the store and record it on the assistance."""
    session, assistance = _scoped(db, code, ip, user_agent, assistance_id, now)
    if content_type not in ALLOWED_UPLOAD_TYPES.get(category, ()):
        raise InvalidUpload(f"Invalid file type {content_type} for {category}")
    if not data:
        raise InvalidUpload("File is empty")
    if len(data) > MAX_UPLOAD_BYTES:
        raise InvalidUpload("File too large, maximum size is 10MB")

    now = now or utcnow()
    safe_name = _safe_filename(filename)
    path = f"{category}/{session.supplier.id}/{assistance.id}/{int(now.timestamp() * 1000)}_{safe_name}"
    store.put(path, data, content_type)

    entry = ActivityLog(
        assistance_id=assistance.id,
        actor_type=ActorType.SUPPLIER.value,
        actor_id=session.supplier.id,
        action="file_uploaded",
        from_status=assistance.status,
        to_status=assistance.status,
        notes=f"File uploaded: {safe_name}",
        details={"category": category, "content_type": content_type, "path": path, "size": len(data)},
        created_at=now,
    )
    db.add(entry)
    db.commit()
    log.info(f"Supplier {session.supplier.id} uploaded {category} file to assistance {assistance.id}")
    return entry

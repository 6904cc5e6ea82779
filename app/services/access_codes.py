"""
access_codes.py — Access code store

Issues, looks up and revokes supplier magic codes. Codes are multi-use
until expires_at; each successful use extends the session window (see
magic_code_auth.py) but never expires_at.

Business Rules:
- Codes are uppercase, drawn from an alphabet without 0/O/1/I
- Codes are case-insensitive on input (normalize_code)
- Issuing a new code revokes older live codes only when revoke_existing
  is true (defaults to settings.revoke_codes_on_issue)
- Revocation sets is_revoked; codes are never deleted
- Issuing a code for a pending assistance arms its response follow-up

Called by: routers/admin.py, services/magic_code_auth.py
Depends on: models, services/security_log.py, services/follow_ups.py, services/notifier.py
"""

import logging
import secrets
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from ..config import settings
from ..constants import (
    AssistanceStatus,
    FollowUpType,
    NotificationTemplate,
    SecurityEventType,
    Severity,
)
from ..exceptions import NotAssignedSupplier, NotFound, WorkflowError
from ..logging_config import mask_code
from ..models import AccessCode, Assistance, Supplier
from ..utils import utcnow
from .follow_ups import schedule_follow_up
from .notifier import Notifier, OutboxNotifier, dispatch
from .security_log import log_security_event

log = logging.getLogger("condo.access_codes")

CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"


def generate_code(length: int | None = None) -> str:
    length = length or settings.magic_code_length
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))


def normalize_code(raw: str | None) -> str:
    return (raw or "").strip().upper()


def find_code(db: Session, code: str) -> AccessCode | None:
    code = normalize_code(code)
    if not code:
        return None
    return db.query(AccessCode).filter(AccessCode.code == code).first()


def _unique_code(db: Session) -> str:
    for _ in range(5):
        candidate = generate_code()
        if not db.query(AccessCode.id).filter(AccessCode.code == candidate).first():
            return candidate
    raise WorkflowError("Could not generate a unique access code")


def revoke_supplier_codes(
    db: Session,
    supplier_id: int,
    *,
    now: datetime | None = None,
    commit: bool = True,
) -> int:
    """Revoke every live (unexpired, unrevoked) code for a supplier. Returns count."""
    now = now or utcnow()
    q = db.query(AccessCode).filter(
        AccessCode.supplier_id == supplier_id,
        AccessCode.is_revoked.is_(False),
        AccessCode.expires_at > now,
    )
    codes = q.all()
    for c in codes:
        c.is_revoked = True
        c.revoked_at = now
    if codes:
        log_security_event(
            db,
            SecurityEventType.CODES_REVOKED,
            Severity.LOW,
            supplier_id=supplier_id,
            details={"revoked": len(codes)},
            now=now,
        )
        log.info(f"Revoked {len(codes)} access code(s) for supplier {supplier_id}")
    if commit:
        db.commit()
    return len(codes)


def issue_access_code(
    db: Session,
    supplier_id: int,
    assistance_id: int | None = None,
    *,
    revoke_existing: bool | None = None,
    notifier: Notifier | None = None,
    now: datetime | None = None,
) -> AccessCode:
    """Admin "send code": create a code, optionally revoke older ones, email it."""
    now = now or utcnow()
    supplier = db.get(Supplier, supplier_id)
    if not supplier:
        raise NotFound(f"Supplier {supplier_id} not found")
    if not supplier.is_active:
        raise WorkflowError("Cannot issue an access code to an inactive supplier")

    assistance = None
    if assistance_id is not None:
        assistance = db.get(Assistance, assistance_id)
        if not assistance:
            raise NotFound(f"Assistance {assistance_id} not found")
        if assistance.assigned_supplier_id != supplier.id:
            raise NotAssignedSupplier(
                f"Supplier {supplier.id} is not assigned to assistance {assistance_id}"
            )

    if revoke_existing is None:
        revoke_existing = settings.revoke_codes_on_issue
    if revoke_existing:
        revoke_supplier_codes(db, supplier.id, now=now, commit=False)

    access_code = AccessCode(
        supplier_id=supplier.id,
        code=_unique_code(db),
        assistance_id=assistance_id,
        expires_at=now + timedelta(days=settings.magic_code_ttl_days),
        created_at=now,
    )
    db.add(access_code)
    db.flush()

    log_security_event(
        db,
        SecurityEventType.CODE_ISSUED,
        Severity.LOW,
        supplier_id=supplier.id,
        details={
            "code_prefix": mask_code(access_code.code),
            "assistance_id": assistance_id,
            "revoked_previous": bool(revoke_existing),
        },
        now=now,
    )

    notifier = notifier or OutboxNotifier(db)
    dispatch(
        notifier,
        supplier.email,
        NotificationTemplate.MAGIC_CODE,
        {
            "supplier_name": supplier.name,
            "magic_code": access_code.code,
            "expires_at": access_code.expires_at.isoformat(),
            "portal_url": f"{settings.app_url}/supplier-portal?code={access_code.code}",
            "assistance_id": assistance_id,
        },
    )

    if assistance is not None and assistance.status == AssistanceStatus.PENDING.value:
        schedule_follow_up(db, assistance, FollowUpType.RESPONSE, now=now, commit=False)

    db.commit()
    log.info(
        f"Access code {mask_code(access_code.code)} issued to supplier {supplier.id}"
        + (f" for assistance {assistance_id}" if assistance_id else "")
    )
    return access_code

"""
admin.py — Admin Assistance, Quotation & Access Code Router

Administrator side of the workflow. The admin session is established by
the external identity provider; every route requires an admin user.

Business Rules:
- All status changes go through services/workflow.py (Actor.admin)
- Quotation approval/rejection act on one quotation; siblings untouched
- Issuing a code revokes older codes only when revoke_existing is true
  (or settings.revoke_codes_on_issue when omitted)
- Hard delete refuses while dependent records exist unless ?cascade=true

Called by: main.py (router mount)
Depends on: services/assistances.py, services/workflow.py,
            services/quotations.py, services/access_codes.py
"""

from fastapi import APIRouter, Depends
from loguru import logger
from sqlalchemy.orm import Session

from ..constants import ActorType, WorkflowEvent
from ..database import get_db
from ..dependencies import require_admin
from ..models import ActivityLog, User
from ..schemas.assistances import (
    AccessCodeIssue,
    AdminCancel,
    AdminMessage,
    AdminNotes,
    AssistanceCreate,
    QuotationRejection,
    QuotationRequest,
    assistance_out,
    message_out,
    quotation_out,
)
from ..services import assistances as assistance_service
from ..services import quotations as quotation_service
from ..services.access_codes import issue_access_code, revoke_supplier_codes
from ..services.workflow import Actor, allowed_events, apply_event

router = APIRouter(tags=["admin"])


def _detail(db: Session, a) -> dict:
    out = assistance_out(a)
    out["allowed_actions"] = [e.value for e in allowed_events(a.status, ActorType.ADMIN)]
    out["activity"] = [
        {
            "action": log.action,
            "actor_type": log.actor_type,
            "actor_id": log.actor_id,
            "from_status": log.from_status,
            "to_status": log.to_status,
            "notes": log.notes,
            "created_at": log.created_at.isoformat() if log.created_at else None,
        }
        for log in db.query(ActivityLog)
        .filter(ActivityLog.assistance_id == a.id)
        .order_by(ActivityLog.created_at.asc(), ActivityLog.id.asc())
        .all()
    ]
    return out


# ── Assistances ─────────────────────────────────────────────────────────


@router.post("/api/assistances")
async def create_assistance(
    payload: AssistanceCreate, user: User = Depends(require_admin), db: Session = Depends(get_db)
):
    a = assistance_service.create_assistance(db, created_by_id=user.id, **payload.model_dump())
    return assistance_out(a)


@router.get("/api/assistances")
async def list_assistances(
    status: str | None = None,
    supplier_id: int | None = None,
    limit: int = 100,
    offset: int = 0,
    user: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    items, total = assistance_service.list_assistances(
        db, status=status, supplier_id=supplier_id, limit=min(limit, 500), offset=offset
    )
    return {"total": total, "limit": limit, "offset": offset, "items": [assistance_out(a) for a in items]}


@router.get("/api/assistances/{assistance_id}")
async def get_assistance(assistance_id: int, user: User = Depends(require_admin), db: Session = Depends(get_db)):
    return _detail(db, assistance_service.get_assistance(db, assistance_id))


@router.delete("/api/assistances/{assistance_id}")
async def delete_assistance(
    assistance_id: int, cascade: bool = False, user: User = Depends(require_admin), db: Session = Depends(get_db)
):
    assistance_service.delete_assistance(db, assistance_id, cascade=cascade)
    logger.info("Assistance {} deleted by {}", assistance_id, user.email)
    return {"ok": True}


@router.post("/api/assistances/{assistance_id}/request-quotation")
async def request_quotation(
    assistance_id: int, payload: QuotationRequest, user: User = Depends(require_admin), db: Session = Depends(get_db)
):
    a = apply_event(
        db, assistance_id, WorkflowEvent.REQUEST_QUOTATION, Actor.admin(user.id),
        notes=payload.notes, deadline=payload.deadline,
    )
    return _detail(db, a)


@router.post("/api/assistances/{assistance_id}/validate")
async def validate_assistance(
    assistance_id: int, payload: AdminNotes, user: User = Depends(require_admin), db: Session = Depends(get_db)
):
    a = apply_event(db, assistance_id, WorkflowEvent.VALIDATE, Actor.admin(user.id), notes=payload.notes)
    return _detail(db, a)


@router.post("/api/assistances/{assistance_id}/cancel")
async def cancel_assistance(
    assistance_id: int, payload: AdminCancel, user: User = Depends(require_admin), db: Session = Depends(get_db)
):
    a = apply_event(
        db, assistance_id, WorkflowEvent.CANCEL, Actor.admin(user.id), notes=payload.reason, reason=payload.reason
    )
    return _detail(db, a)


# ── Quotations ──────────────────────────────────────────────────────────


@router.get("/api/assistances/{assistance_id}/quotations")
async def list_quotations(assistance_id: int, user: User = Depends(require_admin), db: Session = Depends(get_db)):
    assistance_service.get_assistance(db, assistance_id)
    return [
        quotation_out(q, quotation_service.effective_status(q))
        for q in quotation_service.list_quotations(db, assistance_id)
    ]


@router.put("/api/quotations/{quotation_id}/approve")
async def approve_quotation(
    quotation_id: int, payload: AdminNotes, user: User = Depends(require_admin), db: Session = Depends(get_db)
):
    q = quotation_service.approve_quotation(db, quotation_id, user.id, notes=payload.notes)
    return quotation_out(q)


@router.put("/api/quotations/{quotation_id}/reject")
async def reject_quotation(
    quotation_id: int, payload: QuotationRejection, user: User = Depends(require_admin), db: Session = Depends(get_db)
):
    q = quotation_service.reject_quotation(db, quotation_id, user.id, reason=payload.reason)
    return quotation_out(q)


# ── Messages ────────────────────────────────────────────────────────────


@router.get("/api/assistances/{assistance_id}/messages")
async def list_messages(assistance_id: int, user: User = Depends(require_admin), db: Session = Depends(get_db)):
    return [message_out(m) for m in assistance_service.list_messages(db, assistance_id)]


@router.post("/api/assistances/{assistance_id}/messages")
async def reply_message(
    assistance_id: int, payload: AdminMessage, user: User = Depends(require_admin), db: Session = Depends(get_db)
):
    entry = assistance_service.add_admin_message(
        db, assistance_id, user.id, payload.message, message_type=payload.message_type
    )
    return message_out(entry)


# ── Access codes ────────────────────────────────────────────────────────


@router.post("/api/suppliers/{supplier_id}/access-codes")
async def send_access_code(
    supplier_id: int, payload: AccessCodeIssue, user: User = Depends(require_admin), db: Session = Depends(get_db)
):
    code = issue_access_code(
        db, supplier_id, payload.assistance_id, revoke_existing=payload.revoke_existing
    )
    logger.info("Access code issued to supplier {} by {}", supplier_id, user.email)
    # The code itself goes to the supplier by email only
    return {
        "id": code.id,
        "supplier_id": code.supplier_id,
        "assistance_id": code.assistance_id,
        "expires_at": code.expires_at.isoformat(),
    }


@router.post("/api/suppliers/{supplier_id}/access-codes/revoke")
async def revoke_access_codes(supplier_id: int, user: User = Depends(require_admin), db: Session = Depends(get_db)):
    revoked = revoke_supplier_codes(db, supplier_id)
    logger.info("{} access code(s) revoked for supplier {} by {}", revoked, supplier_id, user.email)
    return {"revoked": revoked}

"""
portal.py — Supplier Portal Router

Public endpoints reached through the magic-code link
(/supplier-portal?code=...). No session, no cookie: each request carries
the code in the body or query string and is re-validated.

Business Rules:
- Every endpoint re-runs validate() through portal_service
- Auth failures return one vague 401 (429 when rate limited); the precise
  reason is only in security_events
- Workflow errors are precise (409 / 403)

Called by: main.py (router mount)
Depends on: services/portal_service.py, services/workflow.py, schemas/portal.py
"""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from ..constants import ActorType
from ..database import get_db
from ..dependencies import client_ip, user_agent
from ..rate_limit import limiter
from ..schemas.assistances import portal_assistance_out, quotation_out
from ..schemas.portal import (
    AcceptRequest,
    CompleteRequest,
    DeclineRequest,
    MessageRequest,
    PortalCancelRequest,
    PortalRequest,
    PortalSessionRequest,
    QuotationSubmit,
    ScheduleRequest,
    WorkNotesRequest,
)
from ..services import portal_service
from ..services.quotations import effective_status
from ..services.workflow import allowed_events

router = APIRouter(prefix="/api/portal", tags=["portal"])


def _code(request: Request, payload: PortalRequest | None = None) -> str:
    if payload is not None and payload.code:
        return payload.code
    return request.query_params.get("code", "")


def _meta(request: Request) -> tuple[str, str | None]:
    return client_ip(request), user_agent(request)


def _assistance(a) -> dict:
    return portal_assistance_out(a, allowed_events(a.status, ActorType.SUPPLIER))


@router.post("/session")
@limiter.limit("30/minute")
async def open_session(request: Request, payload: PortalSessionRequest, db: Session = Depends(get_db)):
    """Validate a code and return who the supplier is and until when the session runs."""
    ip, ua = _meta(request)
    session = portal_service.authenticate(db, _code(request, payload), ip, ua)
    return {
        "supplier": {"id": session.supplier.id, "name": session.supplier.name},
        "assistance_id": session.assistance_id,
        "session_expires_at": session.session_expires_at.isoformat(),
        "in_grace_period": session.in_grace_period,
    }


@router.get("/assistances")
async def list_assistances(request: Request, include_closed: bool = False, db: Session = Depends(get_db)):
    ip, ua = _meta(request)
    session, items = portal_service.list_supplier_assistances(
        db, _code(request), ip, ua, include_closed=include_closed
    )
    return {
        "supplier_id": session.supplier.id,
        "session_expires_at": session.session_expires_at.isoformat(),
        "items": [_assistance(a) for a in items],
    }


@router.post("/assistances/{assistance_id}/accept")
async def accept(assistance_id: int, payload: AcceptRequest, request: Request, db: Session = Depends(get_db)):
    ip, ua = _meta(request)
    a = portal_service.accept(
        db, _code(request, payload), ip, ua, assistance_id,
        notes=payload.notes,
        scheduled_start_date=payload.scheduled_start_date,
        scheduled_end_date=payload.scheduled_end_date,
        estimated_duration_hours=payload.estimated_duration_hours,
    )
    return _assistance(a)


@router.post("/assistances/{assistance_id}/decline")
async def decline(assistance_id: int, payload: DeclineRequest, request: Request, db: Session = Depends(get_db)):
    ip, ua = _meta(request)
    a = portal_service.decline(
        db, _code(request, payload), ip, ua, assistance_id, reason=payload.reason, notes=payload.notes
    )
    return _assistance(a)


@router.post("/assistances/{assistance_id}/schedule")
async def schedule(assistance_id: int, payload: ScheduleRequest, request: Request, db: Session = Depends(get_db)):
    ip, ua = _meta(request)
    a = portal_service.schedule(
        db, _code(request, payload), ip, ua, assistance_id,
        scheduled_start_date=payload.scheduled_start_date,
        scheduled_end_date=payload.scheduled_end_date,
        notes=payload.notes,
    )
    return _assistance(a)


@router.post("/assistances/{assistance_id}/start")
async def start(assistance_id: int, payload: WorkNotesRequest, request: Request, db: Session = Depends(get_db)):
    ip, ua = _meta(request)
    a = portal_service.start_work(db, _code(request, payload), ip, ua, assistance_id, notes=payload.notes)
    return _assistance(a)


@router.post("/assistances/{assistance_id}/complete")
async def complete(assistance_id: int, payload: CompleteRequest, request: Request, db: Session = Depends(get_db)):
    ip, ua = _meta(request)
    a = portal_service.complete_work(
        db, _code(request, payload), ip, ua, assistance_id, notes=payload.notes, final_cost=payload.final_cost
    )
    return _assistance(a)


@router.post("/assistances/{assistance_id}/cancel")
async def cancel(assistance_id: int, payload: PortalCancelRequest, request: Request, db: Session = Depends(get_db)):
    ip, ua = _meta(request)
    a = portal_service.cancel(db, _code(request, payload), ip, ua, assistance_id, reason=payload.reason)
    return _assistance(a)


@router.post("/assistances/{assistance_id}/quotations")
async def submit_quotation(
    assistance_id: int, payload: QuotationSubmit, request: Request, db: Session = Depends(get_db)
):
    ip, ua = _meta(request)
    q = portal_service.submit_quotation(
        db, _code(request, payload), ip, ua, assistance_id,
        amount=payload.amount,
        description=payload.description,
        notes=payload.notes,
        validity_days=payload.validity_days,
    )
    return quotation_out(q, effective_status(q))


@router.post("/assistances/{assistance_id}/messages")
async def send_message(assistance_id: int, payload: MessageRequest, request: Request, db: Session = Depends(get_db)):
    ip, ua = _meta(request)
    entry = portal_service.send_message(
        db, _code(request, payload), ip, ua, assistance_id,
        message=payload.message, message_type=payload.message_type,
    )
    return {
        "id": entry.id,
        "assistance_id": entry.assistance_id,
        "message": entry.message,
        "message_type": entry.message_type,
        "created_at": entry.created_at.isoformat() if entry.created_at else None,
    }

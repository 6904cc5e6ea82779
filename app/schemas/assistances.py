"""
schemas/assistances.py — Admin request models and response serializers

Request bodies for the admin assistance, quotation and access-code
endpoints, plus the dict serializers shared by the admin and portal
routers.

Business Rules:
- Title must not be blank
- Priority is one of normal | urgent | critical
- Serializers emit ISO-8601 strings for datetimes and strings for money

Called by: routers/admin.py, routers/portal.py
Depends on: pydantic, constants
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field, field_validator

from ..constants import Priority


class AssistanceCreate(BaseModel):
    title: str
    building_id: int
    intervention_type_id: int
    priority: Priority = Priority.NORMAL
    description: str | None = None
    assigned_supplier_id: int | None = None
    requires_quotation: bool = False
    requires_validation: bool = False
    response_deadline: datetime | None = None
    admin_notes: str | None = None

    @field_validator("title")
    @classmethod
    def title_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Title must not be blank")
        return v


class QuotationRequest(BaseModel):
    """Admin asks the assigned supplier for a quotation."""
    deadline: datetime | None = None
    notes: str | None = None


class AdminNotes(BaseModel):
    notes: str | None = None


class AdminCancel(BaseModel):
    reason: str | None = None


class QuotationRejection(BaseModel):
    reason: str | None = None


class AccessCodeIssue(BaseModel):
    assistance_id: int | None = None
    revoke_existing: bool | None = None


class AdminMessage(BaseModel):
    message: str = Field(min_length=1, max_length=5000)
    message_type: str = "general"


# ── Serializers ─────────────────────────────────────────────────────────


def _iso(dt: datetime | None) -> str | None:
    return dt.isoformat() if dt else None


def _money(value) -> str | None:
    return str(value) if value is not None else None


def assistance_out(a) -> dict:
    return {
        "id": a.id,
        "assistance_number": a.assistance_number,
        "title": a.title,
        "description": a.description,
        "building_id": a.building_id,
        "building_name": a.building.name if a.building else None,
        "intervention_type_id": a.intervention_type_id,
        "assigned_supplier_id": a.assigned_supplier_id,
        "priority": a.priority,
        "status": a.status,
        "requires_quotation": a.requires_quotation,
        "quotation_requested_at": _iso(a.quotation_requested_at),
        "quotation_deadline": _iso(a.quotation_deadline),
        "requires_validation": a.requires_validation,
        "scheduled_start_date": _iso(a.scheduled_start_date),
        "scheduled_end_date": _iso(a.scheduled_end_date),
        "actual_start_date": _iso(a.actual_start_date),
        "actual_end_date": _iso(a.actual_end_date),
        "completed_date": _iso(a.completed_date),
        "response_deadline": _iso(a.response_deadline),
        "escalated_at": _iso(a.escalated_at),
        "validated_at": _iso(a.validated_at),
        "cancelled_at": _iso(a.cancelled_at),
        "cancellation_reason": a.cancellation_reason,
        "supplier_notes": a.supplier_notes,
        "estimated_cost": _money(a.estimated_cost),
        "final_cost": _money(a.final_cost),
        "created_at": _iso(a.created_at),
    }


def portal_assistance_out(a, allowed: list) -> dict:
    """What a supplier sees: no admin notes, plus the actions open to them."""
    return {
        "id": a.id,
        "assistance_number": a.assistance_number,
        "title": a.title,
        "description": a.description,
        "building_name": a.building.name if a.building else None,
        "building_address": a.building.address if a.building else None,
        "priority": a.priority,
        "status": a.status,
        "requires_quotation": a.requires_quotation,
        "quotation_deadline": _iso(a.quotation_deadline),
        "scheduled_start_date": _iso(a.scheduled_start_date),
        "scheduled_end_date": _iso(a.scheduled_end_date),
        "response_deadline": _iso(a.response_deadline),
        "allowed_actions": [e.value for e in allowed],
    }


def quotation_out(q, effective_status=None) -> dict:
    return {
        "id": q.id,
        "assistance_id": q.assistance_id,
        "supplier_id": q.supplier_id,
        "amount": _money(q.amount),
        "description": q.description,
        "notes": q.notes,
        "validity_days": q.validity_days,
        "status": (effective_status.value if effective_status else q.status),
        "submitted_at": _iso(q.submitted_at),
        "approved_at": _iso(q.approved_at),
        "rejected_at": _iso(q.rejected_at),
        "rejection_reason": q.rejection_reason,
    }


def follow_up_out(f) -> dict:
    return {
        "id": f.id,
        "assistance_id": f.assistance_id,
        "supplier_id": f.supplier_id,
        "follow_up_type": f.follow_up_type,
        "priority": f.priority,
        "status": f.status,
        "scheduled_for": _iso(f.scheduled_for),
        "next_attempt_at": _iso(f.next_attempt_at),
        "sent_at": _iso(f.sent_at),
        "attempt_count": f.attempt_count,
        "max_attempts": f.max_attempts,
        "last_error": f.last_error,
    }


def security_event_out(e) -> dict:
    return {
        "id": e.id,
        "event_type": e.event_type,
        "severity": e.severity,
        "ip_address": e.ip_address,
        "user_agent": e.user_agent,
        "supplier_id": e.supplier_id,
        "details": e.details or {},
        "created_at": _iso(e.created_at),
    }


def message_out(m) -> dict:
    return {
        "id": m.id,
        "assistance_id": m.assistance_id,
        "sender_type": m.sender_type,
        "sender_id": m.sender_id,
        "message": m.message,
        "message_type": m.message_type,
        "created_at": _iso(m.created_at),
    }

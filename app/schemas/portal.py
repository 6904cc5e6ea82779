"""
schemas/portal.py — Pydantic models for supplier portal endpoints

Every body carries the magic code (it may also come as ?code=). The code
is the entire credential; nothing else identifies the supplier.

Business Rules:
- Codes are stripped; case is normalized by the authenticator
- Decline requires a non-blank reason
- Quotation amount must be > 0
- Messages are 1..5000 characters

Called by: routers/portal.py
Depends on: pydantic
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field, field_validator


class PortalRequest(BaseModel):
    """Base for portal bodies: optional code (falls back to the query string)."""
    code: str | None = None

    @field_validator("code")
    @classmethod
    def strip_code(cls, v: str | None) -> str | None:
        return v.strip() if v else v


class PortalSessionRequest(PortalRequest):
    pass


class AcceptRequest(PortalRequest):
    notes: str | None = None
    scheduled_start_date: datetime | None = None
    scheduled_end_date: datetime | None = None
    estimated_duration_hours: float | None = Field(default=None, ge=0)


class DeclineRequest(PortalRequest):
    reason: str
    notes: str | None = None

    @field_validator("reason")
    @classmethod
    def reason_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("A decline reason is required")
        return v


class ScheduleRequest(PortalRequest):
    scheduled_start_date: datetime
    scheduled_end_date: datetime | None = None
    notes: str | None = None


class WorkNotesRequest(PortalRequest):
    notes: str | None = None


class CompleteRequest(PortalRequest):
    notes: str | None = None
    final_cost: Decimal | None = Field(default=None, ge=0)


class PortalCancelRequest(PortalRequest):
    reason: str | None = None


class QuotationSubmit(PortalRequest):
    amount: Decimal = Field(gt=0)
    description: str | None = None
    notes: str | None = None
    validity_days: int | None = Field(default=None, ge=1, le=365)


class MessageRequest(PortalRequest):
    message: str = Field(min_length=1, max_length=5000)
    message_type: str = "general"

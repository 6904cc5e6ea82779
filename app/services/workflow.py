"""
workflow.py — Assistance workflow state machine

The only code path that changes Assistance.status. Admin routes, the
supplier portal and the quotation entry points all funnel through
apply_event().

Business Rules:
- TRANSITIONS is exhaustive: an (status, event) pair not in it raises
  InvalidTransition; completed and cancelled have no outgoing events
- CANCEL is allowed from every non-terminal status
- Suppliers may only act on assistances assigned to them
- REQUEST_QUOTATION only once per request cycle (pending/accepted with no
  outstanding request, or again after a rejection)
- START is refused while requires_quotation is set and no quotation is
  approved
- COMPLETE lands on awaiting_validation when requires_validation is set
- APPROVE_QUOTATION passes through quotation_approved (logged) and stores
  accepted
- REJECT_QUOTATION also takes a quotation whose validity has lapsed, so a
  stale quotation_received assistance can go back to awaiting_quotation
- The status change is a conditional UPDATE on the status read at the
  start of the call; a concurrent writer makes it fail with
  InvalidTransition and the caller must re-read
- Every transition writes one ActivityLog row per status step and
  notifies the other party (best-effort)

Called by: services/portal_service.py, services/quotations.py, routers/admin.py
Depends on: models, services/quotations.py, services/follow_ups.py, services/notifier.py
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation

from sqlalchemy import update
from sqlalchemy.orm import Session

from ..config import settings
from ..constants import (
    TERMINAL_STATUSES,
    ActorType,
    AssistanceStatus,
    FollowUpType,
    NotificationTemplate,
    QuotationStatus,
    ResponseType,
    WorkflowEvent,
)
from ..exceptions import (
    InvalidTransition,
    NotAssignedSupplier,
    NotFound,
    QuotationStateConflict,
)
from ..models import ActivityLog, Assistance, Supplier, SupplierResponse
from ..utils import utc, utcnow
from . import quotations as quotation_records
from .follow_ups import cancel_follow_ups, schedule_follow_up
from .notifier import Notifier, OutboxNotifier, admin_recipients, dispatch

log = logging.getLogger("condo.workflow")

S = AssistanceStatus
E = WorkflowEvent


@dataclass(frozen=True)
class Actor:
    type: ActorType
    id: int | None = None

    @classmethod
    def admin(cls, user_id: int | None) -> "Actor":
        return cls(ActorType.ADMIN, user_id)

    @classmethod
    def supplier(cls, supplier_id: int) -> "Actor":
        return cls(ActorType.SUPPLIER, supplier_id)

    @classmethod
    def system(cls) -> "Actor":
        return cls(ActorType.SYSTEM, None)


# (from, event) → to. COMPLETE and ACCEPT targets are refined in _target().
TRANSITIONS: dict[tuple[AssistanceStatus, WorkflowEvent], AssistanceStatus] = {
    (S.PENDING, E.ACCEPT): S.ACCEPTED,
    (S.PENDING, E.DECLINE): S.CANCELLED,
    (S.PENDING, E.REQUEST_QUOTATION): S.AWAITING_QUOTATION,
    (S.ACCEPTED, E.REQUEST_QUOTATION): S.AWAITING_QUOTATION,
    (S.QUOTATION_REJECTED, E.REQUEST_QUOTATION): S.AWAITING_QUOTATION,
    (S.AWAITING_QUOTATION, E.SUBMIT_QUOTATION): S.QUOTATION_RECEIVED,
    (S.QUOTATION_RECEIVED, E.APPROVE_QUOTATION): S.ACCEPTED,
    (S.QUOTATION_RECEIVED, E.REJECT_QUOTATION): S.AWAITING_QUOTATION,
    (S.QUOTATION_APPROVED, E.ACCEPT): S.ACCEPTED,
    (S.ACCEPTED, E.SCHEDULE): S.SCHEDULED,
    (S.SCHEDULED, E.SCHEDULE): S.SCHEDULED,
    (S.ACCEPTED, E.START): S.IN_PROGRESS,
    (S.SCHEDULED, E.START): S.IN_PROGRESS,
    (S.IN_PROGRESS, E.COMPLETE): S.COMPLETED,
    (S.AWAITING_VALIDATION, E.VALIDATE): S.COMPLETED,
}
for _status in S:
    if _status not in TERMINAL_STATUSES:
        TRANSITIONS[(_status, E.CANCEL)] = S.CANCELLED

SUPPLIER_EVENTS = frozenset({
    E.ACCEPT, E.DECLINE, E.SUBMIT_QUOTATION, E.SCHEDULE, E.START, E.COMPLETE, E.CANCEL,
})
ADMIN_EVENTS = frozenset({
    E.REQUEST_QUOTATION, E.APPROVE_QUOTATION, E.REJECT_QUOTATION, E.VALIDATE, E.CANCEL,
})


def is_terminal(status) -> bool:
    return AssistanceStatus(status) in TERMINAL_STATUSES


def allowed_events(status, actor_type: ActorType | None = None) -> list[WorkflowEvent]:
    """Events that have a transition out of `status`, optionally filtered by actor."""
    status = AssistanceStatus(status)
    events = [event for (src, event) in TRANSITIONS if src == status]
    if actor_type == ActorType.SUPPLIER:
        events = [e for e in events if e in SUPPLIER_EVENTS]
    elif actor_type == ActorType.ADMIN:
        events = [e for e in events if e in ADMIN_EVENTS]
    return sorted(set(events), key=lambda e: list(WorkflowEvent).index(e))


def _check_actor(assistance: Assistance, event: WorkflowEvent, actor: Actor) -> None:
    if actor.type == ActorType.SUPPLIER:
        if event not in SUPPLIER_EVENTS:
            raise InvalidTransition(f"Suppliers cannot {event.value}", current_status=assistance.status)
        if assistance.assigned_supplier_id is None or assistance.assigned_supplier_id != actor.id:
            raise NotAssignedSupplier(
                f"Supplier {actor.id} is not assigned to assistance {assistance.id}"
            )
    elif actor.type == ActorType.ADMIN and event not in ADMIN_EVENTS:
        raise InvalidTransition(f"Administrators cannot {event.value}", current_status=assistance.status)


def _target(assistance: Assistance, current: AssistanceStatus, event: WorkflowEvent, payload: dict) -> AssistanceStatus:
    target = TRANSITIONS.get((current, event))
    if target is None:
        raise InvalidTransition(
            f"Cannot {event.value} assistance {assistance.id} in status {current.value}",
            current_status=current.value,
        )
    if event == E.COMPLETE and assistance.requires_validation:
        return S.AWAITING_VALIDATION
    if event == E.ACCEPT and payload.get("scheduled_start_date"):
        return S.SCHEDULED
    return target


def _schedule_dates(payload: dict) -> tuple[datetime | None, datetime | None]:
    start = utc(payload.get("scheduled_start_date"))
    end = utc(payload.get("scheduled_end_date"))
    if start and end and end < start:
        raise InvalidTransition("scheduled_end_date must not be before scheduled_start_date")
    return start, end


# ── Guards (read-only, evaluated before the status write) ────────────


def _guard(db: Session, assistance: Assistance, current: AssistanceStatus, event: WorkflowEvent, payload: dict, now: datetime):
    if event == E.DECLINE and not (payload.get("reason") or "").strip():
        raise InvalidTransition("A reason is required to decline an assistance", current_status=current.value)

    if event == E.SUBMIT_QUOTATION:
        try:
            amount = Decimal(str(payload.get("amount")))
        except InvalidOperation:
            amount = None
        if amount is None or not amount.is_finite() or amount <= 0:
            raise InvalidTransition("Quotation amount must be greater than zero", current_status=current.value)

    if event == E.REQUEST_QUOTATION and current != S.QUOTATION_REJECTED:
        if assistance.quotation_requested_at is not None:
            raise InvalidTransition(
                f"Quotation already requested for assistance {assistance.id}",
                current_status=current.value,
            )

    if event == E.SCHEDULE:
        start, _ = _schedule_dates(payload)
        if start is None:
            raise InvalidTransition("scheduled_start_date is required", current_status=current.value)

    if event == E.ACCEPT:
        _schedule_dates(payload)

    if event == E.START and assistance.requires_quotation:
        if not quotation_records.has_approved_quotation(db, assistance.id):
            raise QuotationStateConflict(
                f"Assistance {assistance.id} requires an approved quotation before work starts",
                current_status=current.value,
            )

    if event in (E.APPROVE_QUOTATION, E.REJECT_QUOTATION):
        quotation_records.load_decidable(
            db, assistance.id, payload.get("quotation_id"), now, allow_lapsed=event == E.REJECT_QUOTATION
        )


# ── Effects (run after the status write, same transaction) ───────────


def _log(db, assistance, actor, action, from_status, to_status, notes, details, now):
    db.add(
        ActivityLog(
            assistance_id=assistance.id,
            actor_type=actor.type.value,
            actor_id=actor.id,
            action=action,
            from_status=from_status,
            to_status=to_status,
            notes=notes,
            details=details,
            created_at=now,
        )
    )


def _record_response(db, assistance, actor, response_type: ResponseType, payload, notes, now):
    start, end = _schedule_dates(payload)
    db.add(
        SupplierResponse(
            assistance_id=assistance.id,
            supplier_id=actor.id,
            response_type=response_type.value,
            decline_reason=payload.get("reason") if response_type == ResponseType.DECLINED else None,
            notes=notes,
            scheduled_start_date=start,
            scheduled_end_date=end,
            estimated_duration_hours=payload.get("estimated_duration_hours"),
            response_date=now,
        )
    )


def _apply_effects(db, assistance, event, target, actor, payload, notes, now) -> dict:
    details: dict = {}

    if event == E.ACCEPT:
        if actor.type == ActorType.SUPPLIER:
            _record_response(db, assistance, actor, ResponseType.ACCEPTED, payload, notes, now)
        start, end = _schedule_dates(payload)
        if start:
            assistance.scheduled_start_date = start
            assistance.scheduled_end_date = end
        cancel_follow_ups(db, assistance.id, [FollowUpType.RESPONSE], now=now)
        if target == S.SCHEDULED:
            schedule_follow_up(db, assistance, FollowUpType.WORK_REMINDER, now=now, commit=False)

    elif event == E.DECLINE:
        reason = payload["reason"].strip()
        if actor.type == ActorType.SUPPLIER:
            _record_response(db, assistance, actor, ResponseType.DECLINED, payload, notes, now)
        assistance.cancelled_at = now
        assistance.cancellation_reason = reason
        details["reason"] = reason

    elif event == E.REQUEST_QUOTATION:
        deadline = utc(payload.get("deadline")) or now + timedelta(days=settings.quotation_deadline_days)
        assistance.requires_quotation = True
        assistance.quotation_requested_at = now
        assistance.quotation_deadline = deadline
        assistance.quotation_follow_up_count = 0
        cancel_follow_ups(db, assistance.id, [FollowUpType.RESPONSE], now=now)
        schedule_follow_up(db, assistance, FollowUpType.QUOTATION, now=now, commit=False)
        details["quotation_deadline"] = deadline.isoformat()

    elif event == E.SUBMIT_QUOTATION:
        quotation = quotation_records.create_quotation(
            db,
            assistance_id=assistance.id,
            supplier_id=actor.id,
            amount=payload.get("amount"),
            description=payload.get("description"),
            notes=notes,
            validity_days=payload.get("validity_days"),
            now=now,
        )
        cancel_follow_ups(db, assistance.id, [FollowUpType.QUOTATION], now=now)
        details.update({"quotation_id": quotation.id, "amount": str(quotation.amount)})

    elif event == E.APPROVE_QUOTATION:
        quotation = quotation_records.load_decidable(db, assistance.id, payload.get("quotation_id"), now)
        quotation_records.mark_approved(db, quotation, actor.id, now)
        details.update({"quotation_id": quotation.id, "amount": str(quotation.amount)})

    elif event == E.REJECT_QUOTATION:
        quotation = quotation_records.load_decidable(
            db, assistance.id, payload.get("quotation_id"), now, allow_lapsed=True
        )
        lapsed = quotation_records.effective_status(quotation, now) == QuotationStatus.EXPIRED
        quotation_records.mark_rejected(db, quotation, payload.get("reason"), now)
        if lapsed:
            details["lapsed"] = True
        assistance.quotation_deadline = now + timedelta(days=settings.quotation_deadline_days)
        schedule_follow_up(db, assistance, FollowUpType.QUOTATION, now=now, commit=False)
        details["quotation_id"] = quotation.id

    elif event == E.SCHEDULE:
        start, end = _schedule_dates(payload)
        assistance.scheduled_start_date = start
        assistance.scheduled_end_date = end
        schedule_follow_up(db, assistance, FollowUpType.WORK_REMINDER, now=now, commit=False)
        details["scheduled_start_date"] = start.isoformat()

    elif event == E.START:
        assistance.actual_start_date = now
        cancel_follow_ups(db, assistance.id, [FollowUpType.WORK_REMINDER], now=now)

    elif event == E.COMPLETE:
        assistance.actual_end_date = now
        assistance.completed_date = now
        if payload.get("final_cost") is not None:
            assistance.final_cost = payload["final_cost"]

    elif event == E.VALIDATE:
        assistance.validated_at = now
        assistance.validated_by_id = actor.id

    elif event == E.CANCEL:
        assistance.cancelled_at = now
        assistance.cancellation_reason = payload.get("reason") or notes

    if target in TERMINAL_STATUSES:
        cancel_follow_ups(db, assistance.id, now=now)
    return details


def _notify(db, notifier: Notifier, assistance, event, from_status, target, actor, notes):
    payload = {
        "assistance_id": assistance.id,
        "assistance_number": assistance.assistance_number,
        "title": assistance.title,
        "event": event.value,
        "from_status": from_status,
        "to_status": target.value,
        "actor_type": actor.type.value,
        "notes": notes,
    }
    if event == E.REQUEST_QUOTATION and assistance.quotation_deadline:
        payload["quotation_deadline"] = assistance.quotation_deadline.isoformat()

    if actor.type == ActorType.SUPPLIER:
        for email in admin_recipients(db):
            dispatch(notifier, email, NotificationTemplate.STATUS_CHANGED, payload)
    elif assistance.assigned_supplier_id:
        supplier = db.get(Supplier, assistance.assigned_supplier_id)
        dispatch(notifier, supplier.email if supplier else None, NotificationTemplate.STATUS_CHANGED, payload)


# ── Entry point ──────────────────────────────────────────────────────


def apply_event(
    db: Session,
    assistance_id: int,
    event: WorkflowEvent | str,
    actor: Actor,
    *,
    notes: str | None = None,
    now: datetime | None = None,
    notifier: Notifier | None = None,
    **payload,
) -> Assistance:
    """Apply one workflow event and commit. Raises InvalidTransition on any guard failure.

    Payload keys by event: ACCEPT/SCHEDULE scheduled_start_date,
    scheduled_end_date; DECLINE/CANCEL reason; REQUEST_QUOTATION deadline;
    SUBMIT_QUOTATION amount, description, validity_days;
    APPROVE/REJECT_QUOTATION quotation_id (+ reason); COMPLETE final_cost.
    """
    now = now or utcnow()
    event = WorkflowEvent(event)
    assistance = db.get(Assistance, assistance_id)
    if not assistance:
        raise NotFound(f"Assistance {assistance_id} not found")

    current = AssistanceStatus(assistance.status)
    _check_actor(assistance, event, actor)
    target = _target(assistance, current, event, payload)
    _guard(db, assistance, current, event, payload, now)

    # Check-then-set against the status we read; a concurrent writer wins
    result = db.execute(
        update(Assistance)
        .where(Assistance.id == assistance.id, Assistance.status == current.value)
        .values(status=target.value, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        raise InvalidTransition(
            f"Assistance {assistance_id} changed concurrently; re-read its status",
            current_status=None,
        )
    assistance.status = target.value
    assistance.updated_at = now

    try:
        details = _apply_effects(db, assistance, event, target, actor, payload, notes, now)
        if notes:
            if actor.type == ActorType.SUPPLIER:
                assistance.supplier_notes = notes
            else:
                assistance.admin_notes = notes

        if event == E.APPROVE_QUOTATION:
            _log(db, assistance, actor, event.value, current.value, S.QUOTATION_APPROVED.value, notes, details, now)
            _log(db, assistance, actor, E.ACCEPT.value, S.QUOTATION_APPROVED.value, target.value, None, details, now)
        else:
            _log(db, assistance, actor, event.value, current.value, target.value, notes, details, now)

        _notify(db, notifier or OutboxNotifier(db), assistance, event, current.value, target, actor, notes)
        db.commit()
    except Exception:
        db.rollback()
        raise

    log.info(
        f"Assistance {assistance.id}: {current.value} → {target.value} "
        f"({event.value} by {actor.type.value} {actor.id})"
    )
    return assistance

"""
follow_ups.py — Follow-up cadence and the pending-reminder sweep

Computes when the next reminder for an assistance is due and processes
due reminders. The sweep is driven externally (scheduler.py or the admin
"process now" endpoint) and keeps no state between invocations: all
coordination happens through follow_up_schedules rows.

Business Rules:
- Cadence is priority-driven: critical < urgent < normal. Attempt n
  (0-based count of reminders already sent) is due base * (n + 1) hours
  after the previous send
- Response and quotation reminders escalate: once max_attempts reminders
  have gone out and the need still holds, the next sweep marks the
  schedule exhausted and notifies admins. Work reminders are one-shot
  and end as "sent"
- A due schedule whose triggering condition no longer holds (e.g. the
  assistance left awaiting_quotation) is cancelled, not sent
- Each row is claimed with a conditional UPDATE pending → processing
  before anything is emitted; a sweep that loses the claim skips the row,
  so concurrent or repeated sweeps emit each reminder exactly once
- A claim is a lease: a row left in processing for longer than
  follow_up_claim_lease_minutes (crashed worker) is claimable again, by
  the same conditional UPDATE, and re-arming takes it over as well
- Notification dispatch is fire-and-forget (logged, not retried here)
- One active (pending/processing) schedule per (assistance, type);
  scheduling again re-arms the existing row

Called by: scheduler.py, routers/monitoring.py, services/workflow.py,
           services/access_codes.py
Depends on: models, constants, services/notifier.py
"""

import logging
from datetime import datetime, timedelta

from sqlalchemy import and_, func, or_, update
from sqlalchemy.orm import Session

from ..config import settings
from ..constants import (
    ActorType,
    AssistanceStatus,
    FollowUpStatus,
    FollowUpType,
    NotificationTemplate,
    Priority,
)
from ..exceptions import ScheduleExhausted
from ..models import ActivityLog, Assistance, FollowUpSchedule, Supplier
from ..utils import utc, utcnow
from .notifier import Notifier, OutboxNotifier, admin_recipients, dispatch

log = logging.getLogger("condo.follow_ups")


# Hours between reminders, indexed by type then priority
CADENCE_HOURS = {
    FollowUpType.RESPONSE: {Priority.CRITICAL: 2, Priority.URGENT: 6, Priority.NORMAL: 24},
    FollowUpType.QUOTATION: {Priority.CRITICAL: 4, Priority.URGENT: 12, Priority.NORMAL: 48},
    FollowUpType.WORK_REMINDER: {Priority.CRITICAL: 12, Priority.URGENT: 24, Priority.NORMAL: 24},
}

MAX_ATTEMPTS = {
    FollowUpType.RESPONSE: 3,
    FollowUpType.QUOTATION: 3,
    FollowUpType.WORK_REMINDER: 1,
}

ESCALATING_TYPES = frozenset({FollowUpType.RESPONSE, FollowUpType.QUOTATION})

# The reminder is only still needed while the assistance sits in one of these
TRIGGER_STATUSES = {
    FollowUpType.RESPONSE: {AssistanceStatus.PENDING.value},
    FollowUpType.QUOTATION: {AssistanceStatus.AWAITING_QUOTATION.value},
    FollowUpType.WORK_REMINDER: {AssistanceStatus.ACCEPTED.value, AssistanceStatus.SCHEDULED.value},
}

TEMPLATES = {
    FollowUpType.RESPONSE: NotificationTemplate.RESPONSE_REMINDER,
    FollowUpType.QUOTATION: NotificationTemplate.QUOTATION_REMINDER,
    FollowUpType.WORK_REMINDER: NotificationTemplate.WORK_REMINDER,
}


def _priority(value) -> Priority:
    try:
        return Priority(value)
    except ValueError:
        return Priority.NORMAL


# ── Cadence ──────────────────────────────────────────────────────────


def calculate_next_follow_up(
    attempt_count: int,
    base_date: datetime,
    follow_up_type: FollowUpType | str,
    priority: Priority | str,
) -> datetime:
    """Return when the next reminder (or the exhaustion check) is due.

    Raises ScheduleExhausted when attempt_count is past max_attempts.
    """
    follow_up_type = FollowUpType(follow_up_type)
    if attempt_count < 0:
        raise ValueError("attempt_count must be >= 0")
    if attempt_count > MAX_ATTEMPTS[follow_up_type]:
        raise ScheduleExhausted(
            f"{follow_up_type.value} follow-up exhausted after {MAX_ATTEMPTS[follow_up_type]} attempts"
        )
    hours = CADENCE_HOURS[follow_up_type][_priority(priority)] * (attempt_count + 1)
    return utc(base_date) + timedelta(hours=hours)


def _first_attempt_at(assistance: Assistance, follow_up_type: FollowUpType, now: datetime) -> datetime:
    if follow_up_type == FollowUpType.WORK_REMINDER and assistance.scheduled_start_date:
        # Remind one cadence step before the planned start, never in the past
        lead = timedelta(hours=CADENCE_HOURS[follow_up_type][_priority(assistance.priority)])
        return max(now, utc(assistance.scheduled_start_date) - lead)
    return calculate_next_follow_up(0, now, follow_up_type, assistance.priority)


# ── Scheduling ───────────────────────────────────────────────────────


def schedule_follow_up(
    db: Session,
    assistance: Assistance,
    follow_up_type: FollowUpType,
    *,
    now: datetime | None = None,
    commit: bool = True,
) -> FollowUpSchedule:
    """Create the active schedule for (assistance, type), or re-arm the existing one."""
    now = now or utcnow()
    first_at = _first_attempt_at(assistance, follow_up_type, now)

    schedule = (
        db.query(FollowUpSchedule)
        .filter(
            FollowUpSchedule.assistance_id == assistance.id,
            FollowUpSchedule.follow_up_type == follow_up_type.value,
            FollowUpSchedule.status.in_([FollowUpStatus.PENDING.value, FollowUpStatus.PROCESSING.value]),
        )
        .populate_existing()
        .first()
    )
    if (
        schedule is not None
        and schedule.status == FollowUpStatus.PROCESSING.value
        and not _claim_is_stale(schedule, now)
    ):
        log.info(f"Follow-up {schedule.id} is being processed, not re-armed")
        return schedule

    if schedule is None:
        schedule = FollowUpSchedule(
            assistance_id=assistance.id,
            follow_up_type=follow_up_type.value,
            created_at=now,
        )
        db.add(schedule)

    schedule.supplier_id = assistance.assigned_supplier_id
    schedule.priority = _priority(assistance.priority).value
    schedule.scheduled_for = first_at
    schedule.next_attempt_at = first_at
    schedule.attempt_count = 0
    schedule.max_attempts = MAX_ATTEMPTS[follow_up_type]
    schedule.sent_at = None
    schedule.last_error = None
    schedule.claimed_at = None
    schedule.status = FollowUpStatus.PENDING.value
    schedule.updated_at = now
    db.flush()

    if commit:
        db.commit()
    log.info(
        f"Follow-up {follow_up_type.value} armed for assistance {assistance.id} at {first_at.isoformat()}"
    )
    return schedule


def cancel_follow_ups(
    db: Session,
    assistance_id: int,
    types: list[FollowUpType] | None = None,
    *,
    now: datetime | None = None,
) -> int:
    """Cancel pending schedules for an assistance. Rows being processed are left to the sweep."""
    stmt = update(FollowUpSchedule).where(
        FollowUpSchedule.assistance_id == assistance_id,
        FollowUpSchedule.status == FollowUpStatus.PENDING.value,
    )
    if types:
        stmt = stmt.where(FollowUpSchedule.follow_up_type.in_([t.value for t in types]))
    result = db.execute(
        stmt.values(status=FollowUpStatus.CANCELLED.value, updated_at=now or utcnow())
        .execution_options(synchronize_session="fetch")
    )
    return result.rowcount or 0


# ── Sweep ────────────────────────────────────────────────────────────


def _lease_cutoff(now: datetime) -> datetime:
    return now - timedelta(minutes=settings.follow_up_claim_lease_minutes)


def _claim_is_stale(schedule: FollowUpSchedule, now: datetime) -> bool:
    claimed_at = utc(schedule.claimed_at)
    return claimed_at is None or claimed_at < _lease_cutoff(now)


def _claimable(now: datetime):
    """Due pending rows, plus processing rows whose claim lease has lapsed."""
    cutoff = _lease_cutoff(now)
    return or_(
        and_(
            FollowUpSchedule.status == FollowUpStatus.PENDING.value,
            FollowUpSchedule.next_attempt_at <= now,
        ),
        and_(
            FollowUpSchedule.status == FollowUpStatus.PROCESSING.value,
            or_(FollowUpSchedule.claimed_at.is_(None), FollowUpSchedule.claimed_at < cutoff),
        ),
    )


def _claim(db: Session, schedule_id: int, now: datetime) -> bool:
    """Conditionally move a claimable schedule to processing. True if this caller won."""
    result = db.execute(
        update(FollowUpSchedule)
        .where(FollowUpSchedule.id == schedule_id, _claimable(now))
        .values(status=FollowUpStatus.PROCESSING.value, claimed_at=now, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return result.rowcount == 1


def _release(db: Session, schedule_id: int, error: str, now: datetime) -> None:
    db.execute(
        update(FollowUpSchedule)
        .where(
            FollowUpSchedule.id == schedule_id,
            FollowUpSchedule.status == FollowUpStatus.PROCESSING.value,
            FollowUpSchedule.claimed_at == now,
        )
        .values(status=FollowUpStatus.PENDING.value, last_error=error[:1000], updated_at=now)
        .execution_options(synchronize_session=False)
    )
    db.commit()


def _reminder_payload(schedule: FollowUpSchedule, assistance: Assistance) -> dict:
    return {
        "assistance_id": assistance.id,
        "follow_up_id": schedule.id,
        "assistance_number": assistance.assistance_number,
        "title": assistance.title,
        "building": assistance.building.name if assistance.building else None,
        "priority": assistance.priority,
        "status": assistance.status,
        "attempt": schedule.attempt_count + 1,
        "max_attempts": schedule.max_attempts,
        "quotation_deadline": (
            assistance.quotation_deadline.isoformat() if assistance.quotation_deadline else None
        ),
        "scheduled_start_date": (
            assistance.scheduled_start_date.isoformat() if assistance.scheduled_start_date else None
        ),
    }


def _exhaust(db: Session, schedule: FollowUpSchedule, assistance: Assistance, notifier: Notifier, now: datetime):
    schedule.status = FollowUpStatus.EXHAUSTED.value
    schedule.updated_at = now
    db.add(
        ActivityLog(
            assistance_id=assistance.id,
            actor_type=ActorType.SYSTEM.value,
            action="follow_up_exhausted",
            from_status=assistance.status,
            to_status=assistance.status,
            details={
                "follow_up_id": schedule.id,
                "follow_up_type": schedule.follow_up_type,
                "attempts": schedule.attempt_count,
            },
            created_at=now,
        )
    )
    payload = _reminder_payload(schedule, assistance)
    payload["supplier_id"] = schedule.supplier_id
    for email in admin_recipients(db):
        dispatch(notifier, email, NotificationTemplate.FOLLOW_UP_EXHAUSTED, payload)
    log.warning(
        f"Follow-up {schedule.id} ({schedule.follow_up_type}) exhausted for assistance {assistance.id}"
    )


def _process_claimed(
    db: Session, schedule: FollowUpSchedule, notifier: Notifier, now: datetime
) -> str:
    follow_up_type = FollowUpType(schedule.follow_up_type)
    assistance = schedule.assistance

    if assistance is None or assistance.status not in TRIGGER_STATUSES[follow_up_type]:
        schedule.status = FollowUpStatus.CANCELLED.value
        schedule.updated_at = now
        db.commit()
        return "cancelled"

    if schedule.attempt_count >= schedule.max_attempts:
        if follow_up_type in ESCALATING_TYPES:
            _exhaust(db, schedule, assistance, notifier, now)
            db.commit()
            return "exhausted"
        schedule.status = FollowUpStatus.SENT.value
        db.commit()
        return "sent"

    supplier_id = schedule.supplier_id or assistance.assigned_supplier_id
    supplier = db.get(Supplier, supplier_id) if supplier_id else None
    dispatch(
        notifier,
        supplier.email if supplier else None,
        TEMPLATES[follow_up_type],
        _reminder_payload(schedule, assistance),
    )

    schedule.attempt_count += 1
    schedule.sent_at = now
    schedule.priority = _priority(assistance.priority).value
    schedule.updated_at = now
    assistance.last_follow_up_sent = now
    if follow_up_type == FollowUpType.RESPONSE:
        assistance.follow_up_count = (assistance.follow_up_count or 0) + 1
    elif follow_up_type == FollowUpType.QUOTATION:
        assistance.quotation_follow_up_count = (assistance.quotation_follow_up_count or 0) + 1

    if schedule.attempt_count >= schedule.max_attempts and follow_up_type not in ESCALATING_TYPES:
        schedule.status = FollowUpStatus.SENT.value
    else:
        schedule.next_attempt_at = calculate_next_follow_up(
            schedule.attempt_count, now, follow_up_type, schedule.priority
        )
        schedule.status = FollowUpStatus.PENDING.value
    db.commit()
    return "sent"


def process_pending_follow_ups(
    db: Session,
    notifier: Notifier | None = None,
    *,
    now: datetime | None = None,
    limit: int | None = None,
) -> dict:
    """Sweep due follow-up schedules. Safe to run concurrently or repeatedly."""
    now = now or utcnow()
    notifier = notifier or OutboxNotifier(db)
    limit = limit or settings.follow_up_batch_size

    due_ids = [
        row[0]
        for row in db.query(FollowUpSchedule.id)
        .filter(_claimable(now))
        .order_by(FollowUpSchedule.next_attempt_at.asc(), FollowUpSchedule.id.asc())
        .limit(limit)
        .all()
    ]

    result = {"due": len(due_ids), "sent": 0, "cancelled": 0, "exhausted": 0, "skipped": 0, "errors": 0}
    for schedule_id in due_ids:
        if not _claim(db, schedule_id, now):
            result["skipped"] += 1
            continue
        schedule = db.get(FollowUpSchedule, schedule_id)
        db.refresh(schedule)
        try:
            outcome = _process_claimed(db, schedule, notifier, now)
            result[outcome] += 1
        except Exception as e:
            log.error(f"Follow-up {schedule_id} failed: {e}")
            db.rollback()
            _release(db, schedule_id, str(e), now)
            result["errors"] += 1

    if due_ids:
        log.info(f"Follow-up sweep complete: {result}")
    return result


# ── Read side ────────────────────────────────────────────────────────


def list_follow_ups(
    db: Session,
    *,
    status: str | None = None,
    follow_up_type: str | None = None,
    priority: str | None = None,
    limit: int = 200,
) -> list[FollowUpSchedule]:
    q = db.query(FollowUpSchedule).order_by(FollowUpSchedule.next_attempt_at.asc())
    if status:
        q = q.filter(FollowUpSchedule.status == status)
    if follow_up_type:
        q = q.filter(FollowUpSchedule.follow_up_type == follow_up_type)
    if priority:
        q = q.filter(FollowUpSchedule.priority == priority)
    return q.limit(limit).all()


def follow_up_stats(db: Session, now: datetime | None = None) -> dict:
    now = now or utcnow()

    def _grouped(column):
        return dict(
            db.query(column, func.count(FollowUpSchedule.id)).group_by(column).all()
        )

    overdue = (
        db.query(func.count(FollowUpSchedule.id))
        .filter(
            FollowUpSchedule.status == FollowUpStatus.PENDING.value,
            FollowUpSchedule.next_attempt_at < now,
        )
        .scalar()
        or 0
    )
    by_status = _grouped(FollowUpSchedule.status)
    return {
        "total": sum(by_status.values()),
        "by_status": by_status,
        "by_type": _grouped(FollowUpSchedule.follow_up_type),
        "by_priority": _grouped(FollowUpSchedule.priority),
        "overdue": overdue,
    }

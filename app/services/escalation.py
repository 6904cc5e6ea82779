"""
escalation.py — SLA escalation of overdue assistances

Open assistances whose response_deadline has passed are flagged once:
escalated_at is set, an ActivityLog "auto_escalated" row is written and
admins are notified. Runs as its own scheduler job, independent of the
follow-up sweep.

Business Rules:
- Only non-terminal assistances with a response_deadline in the past and
  escalated_at still NULL are candidates
- escalated_at is set with a conditional UPDATE (… AND escalated_at IS NULL),
  so two concurrent runs escalate each assistance once
- Escalation never changes status

Called by: scheduler.py
Depends on: models, services/notifier.py
"""

import logging
from datetime import datetime

from sqlalchemy import update
from sqlalchemy.orm import Session

from ..constants import OPEN_STATUSES, ActorType, NotificationTemplate
from ..models import ActivityLog, Assistance
from ..utils import utc, utcnow
from .notifier import Notifier, OutboxNotifier, admin_recipients, dispatch

log = logging.getLogger("condo.escalation")


def escalate_overdue_assistances(
    db: Session, notifier: Notifier | None = None, *, now: datetime | None = None
) -> int:
    """Flag overdue assistances and notify admins. Returns how many were escalated."""
    now = now or utcnow()
    notifier = notifier or OutboxNotifier(db)

    candidates = (
        db.query(Assistance)
        .filter(
            Assistance.status.in_([s.value for s in OPEN_STATUSES]),
            Assistance.response_deadline.isnot(None),
            Assistance.response_deadline < now,
            Assistance.escalated_at.is_(None),
        )
        .order_by(Assistance.response_deadline.asc())
        .all()
    )

    recipients = admin_recipients(db) if candidates else []
    escalated = 0
    for assistance in candidates:
        result = db.execute(
            update(Assistance)
            .where(Assistance.id == assistance.id, Assistance.escalated_at.is_(None))
            .values(escalated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            continue

        hours_overdue = round((now - utc(assistance.response_deadline)).total_seconds() / 3600, 1)
        details = {
            "escalation_reason": "sla_breach",
            "hours_overdue": hours_overdue,
            "priority": assistance.priority,
        }
        db.add(
            ActivityLog(
                assistance_id=assistance.id,
                actor_type=ActorType.SYSTEM.value,
                action="auto_escalated",
                from_status=assistance.status,
                to_status=assistance.status,
                details=details,
                created_at=now,
            )
        )
        payload = {
            "assistance_id": assistance.id,
            "assistance_number": assistance.assistance_number,
            "title": assistance.title,
            "status": assistance.status,
            "response_deadline": utc(assistance.response_deadline).isoformat(),
            **details,
        }
        for email in recipients:
            dispatch(notifier, email, NotificationTemplate.SLA_ESCALATION, payload)
        db.commit()
        escalated += 1
        log.warning(f"Assistance {assistance.id} escalated ({hours_overdue}h past response deadline)")

    return escalated

"""
notifier.py — Notifier boundary

The core decides *that* and *when* a notification is due; rendering and
delivery belong to the external notifier, which drains the
`notifications` outbox.

Business Rules:
- notify() is fire-and-forget: failures are logged, never raised to callers
- OutboxNotifier only adds a row; the caller's transaction commits it
- Recipients without an email address are skipped with a warning

Called by: services/access_codes.py, services/follow_ups.py, services/workflow.py
Depends on: models (Notification)
"""

import logging
from typing import Protocol

from sqlalchemy.orm import Session

from ..config import settings
from ..constants import NotificationStatus
from ..models import Notification, User

log = logging.getLogger("condo.notifier")


class Notifier(Protocol):
    def notify(self, recipient_email: str, template_id: str, payload: dict) -> None:
        ...


class OutboxNotifier:
    """Writes Notification rows into the caller's session."""

    def __init__(self, db: Session):
        self.db = db

    def notify(self, recipient_email: str, template_id: str, payload: dict) -> None:
        self.db.add(
            Notification(
                recipient_email=recipient_email,
                template_id=str(getattr(template_id, "value", template_id)),
                payload=payload,
                status=NotificationStatus.QUEUED.value,
                assistance_id=payload.get("assistance_id"),
                follow_up_id=payload.get("follow_up_id"),
            )
        )


def dispatch(notifier: Notifier, recipient_email: str | None, template_id, payload: dict) -> bool:
    """Best-effort notify. Returns True if the notifier accepted the message."""
    if not recipient_email:
        log.warning(f"Notification {template_id} skipped: no recipient email")
        return False
    try:
        notifier.notify(recipient_email, template_id, payload)
        return True
    except Exception as e:
        log.error(f"Notification {template_id} to {recipient_email} failed: {e}")
        return False


def admin_recipients(db: Session) -> list[str]:
    """Configured admin emails plus active admin users, de-duplicated."""
    emails = [e.strip().lower() for e in settings.admin_emails if e and e.strip()]
    for (email,) in db.query(User.email).filter(User.role == "admin", User.is_active.is_(True)).all():
        if email and email.lower() not in emails:
            emails.append(email.lower())
    return emails

"""
tests/test_escalation.py — Tests for SLA escalation of overdue assistances

Called by: pytest
Depends on: app.services.escalation
"""

from datetime import timedelta

from app.constants import NotificationTemplate
from app.models import ActivityLog, Notification
from app.services.escalation import escalate_overdue_assistances


def test_escalates_overdue_open_assistance(db_session, make_assistance, admin_user, now):
    a = make_assistance(response_deadline=now - timedelta(hours=3))

    assert escalate_overdue_assistances(db_session, now=now) == 1

    db_session.refresh(a)
    assert a.escalated_at == now
    assert a.status == "pending"
    log = db_session.query(ActivityLog).filter_by(action="auto_escalated").one()
    assert log.actor_type == "system"
    assert log.details["hours_overdue"] == 3.0
    n = db_session.query(Notification).one()
    assert n.recipient_email == admin_user.email
    assert n.template_id == NotificationTemplate.SLA_ESCALATION.value


def test_escalates_once(db_session, make_assistance, admin_user, now):
    make_assistance(response_deadline=now - timedelta(hours=1))
    assert escalate_overdue_assistances(db_session, now=now) == 1
    assert escalate_overdue_assistances(db_session, now=now + timedelta(hours=1)) == 0
    assert db_session.query(Notification).count() == 1


def test_skips_terminal_and_not_yet_due(db_session, make_assistance, now):
    make_assistance(status="completed", response_deadline=now - timedelta(days=1))
    make_assistance(status="cancelled", response_deadline=now - timedelta(days=1))
    make_assistance(response_deadline=now + timedelta(hours=1))
    make_assistance(response_deadline=None)

    assert escalate_overdue_assistances(db_session, now=now) == 0

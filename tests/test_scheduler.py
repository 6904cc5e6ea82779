"""
test_scheduler.py — Tests for APScheduler background jobs

Covers: configure_scheduler registration and feature flags,
and the two job functions (_job_follow_up_sweep, _job_sla_escalation).

All jobs use SessionLocal() internally, so we patch app.database.SessionLocal
to return the test DB session with close() disabled.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy.orm import Session

from app.constants import FollowUpType
from app.models import Notification
from app.scheduler import _job_follow_up_sweep, _job_sla_escalation, configure_scheduler, scheduler
from app.services.follow_ups import schedule_follow_up

# ── Fixtures ───────────────────────────────────────────────────────────


@pytest.fixture()
def scheduler_db(db_session: Session):
    """Patch SessionLocal so scheduler jobs use the test DB."""
    original_close = db_session.close
    db_session.close = lambda: None
    with patch("app.database.SessionLocal", return_value=db_session):
        yield db_session
    db_session.close = original_close


@pytest.fixture(autouse=True)
def _clear_scheduler_jobs():
    """Remove all jobs before/after each test to prevent leakage."""
    for job in scheduler.get_jobs():
        job.remove()
    yield
    for job in scheduler.get_jobs():
        job.remove()


# ── configure_scheduler() ──────────────────────────────────────────────


def _mock_settings(**overrides):
    defaults = dict(
        follow_up_enabled=True,
        follow_up_sweep_interval_min=15,
        escalation_enabled=True,
        escalation_interval_min=60,
    )
    defaults.update(overrides)
    mock = MagicMock()
    for k, v in defaults.items():
        setattr(mock, k, v)
    return mock


def test_configure_scheduler_registers_jobs():
    with patch("app.config.settings", _mock_settings()):
        configure_scheduler()

    job_ids = {j.id for j in scheduler.get_jobs()}
    assert job_ids == {"follow_up_sweep", "sla_escalation"}


def test_configure_scheduler_flags_off():
    with patch("app.config.settings", _mock_settings(follow_up_enabled=False, escalation_enabled=False)):
        configure_scheduler()
    assert scheduler.get_jobs() == []


def test_configure_scheduler_interval():
    with patch("app.config.settings", _mock_settings(follow_up_sweep_interval_min=5)):
        configure_scheduler()
    job = scheduler.get_job("follow_up_sweep")
    assert job.trigger.interval == timedelta(minutes=5)
    assert job.max_instances == 1


# ── Jobs ───────────────────────────────────────────────────────────────


def test_job_follow_up_sweep_sends_due(scheduler_db, assistance):
    past = datetime.now(timezone.utc) - timedelta(days=3)
    schedule_follow_up(scheduler_db, assistance, FollowUpType.RESPONSE, now=past)

    asyncio.run(_job_follow_up_sweep())

    assert scheduler_db.query(Notification).count() == 1


def test_job_follow_up_sweep_error_is_logged(scheduler_db):
    with patch("app.services.follow_ups.process_pending_follow_ups", side_effect=RuntimeError("db gone")):
        asyncio.run(_job_follow_up_sweep())  # must not raise


def test_job_sla_escalation(scheduler_db, make_assistance, admin_user):
    a = make_assistance(response_deadline=datetime.now(timezone.utc) - timedelta(hours=2))

    asyncio.run(_job_sla_escalation())

    scheduler_db.refresh(a)
    assert a.escalated_at is not None


def test_job_sla_escalation_error_is_logged(scheduler_db):
    with patch("app.services.escalation.escalate_overdue_assistances", side_effect=RuntimeError("db gone")):
        asyncio.run(_job_sla_escalation())

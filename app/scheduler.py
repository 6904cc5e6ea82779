"""Background scheduler: periodic follow-up and SLA jobs.

APScheduler AsyncIOScheduler started from the app lifespan. Each job opens
its own SessionLocal() and closes it; nothing is kept in memory between
runs, so a second app instance (or an external cron hitting
POST /api/follow-ups/process) is safe:
  - follow_up_sweep: due reminders, every follow_up_sweep_interval_min
  - sla_escalation: overdue assistances, every escalation_interval_min
"""

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

log = logging.getLogger(__name__)

scheduler = AsyncIOScheduler(timezone="UTC")


def configure_scheduler():
    """Register jobs according to current settings. Call before scheduler.start()."""
    from .config import settings

    if settings.follow_up_enabled:
        scheduler.add_job(
            _job_follow_up_sweep,
            IntervalTrigger(minutes=settings.follow_up_sweep_interval_min),
            id="follow_up_sweep",
            name="Process due follow-up reminders",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
    if settings.escalation_enabled:
        scheduler.add_job(
            _job_sla_escalation,
            IntervalTrigger(minutes=settings.escalation_interval_min),
            id="sla_escalation",
            name="Escalate assistances past their response deadline",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
    log.info(f"Scheduler configured with jobs: {[j.id for j in scheduler.get_jobs()]}")


# ── Jobs ───────────────────────────────────────────────────────────────


async def _job_follow_up_sweep():
    """Claim and process due follow-up schedules."""
    from .database import SessionLocal
    from .services.follow_ups import process_pending_follow_ups

    db = SessionLocal()
    try:
        result = process_pending_follow_ups(db)
        if result["due"]:
            log.info(f"Follow-up sweep: {result}")
    except Exception as e:
        log.error(f"Follow-up sweep error: {e}")
        db.rollback()
    finally:
        db.close()


async def _job_sla_escalation():
    """Flag assistances whose response deadline has passed."""
    from .database import SessionLocal
    from .services.escalation import escalate_overdue_assistances

    db = SessionLocal()
    try:
        count = escalate_overdue_assistances(db)
        if count:
            log.info(f"SLA escalation: {count} assistance(s) escalated")
    except Exception as e:
        log.error(f"SLA escalation error: {e}")
        db.rollback()
    finally:
        db.close()
